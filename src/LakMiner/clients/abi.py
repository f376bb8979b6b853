"""Minimal ABI helpers for the mining contract's static-typed functions."""
from typing import List

from ..core.hashing import address_to_bytes, keccak256, uint256_to_bytes

WORD_HEX = 64


def selector(signature: str) -> bytes:
    """First four bytes of keccak256 of the canonical signature, e.g. 'mine(uint256,uint256)'."""
    return keccak256(signature.encode("ascii"))[:4]


def encode_call(signature: str, *args) -> str:
    """Encode a call whose arguments are all uint256 or address (one static word each)."""
    data = selector(signature)
    for arg in args:
        if isinstance(arg, str):
            data += address_to_bytes(arg).rjust(32, b"\x00")
        else:
            data += uint256_to_bytes(arg)
    return "0x" + data.hex()


def split_words(result: str) -> List[str]:
    body = result[2:] if result[:2].lower() == "0x" else result
    if not body or len(body) % WORD_HEX != 0:
        raise ValueError(f"Malformed ABI return data: {result!r}")
    return [body[i:i + WORD_HEX] for i in range(0, len(body), WORD_HEX)]


def decode_uint(result: str, index: int = 0) -> int:
    return int(split_words(result)[index], 16)


def decode_bytes32(result: str, index: int = 0) -> str:
    return "0x" + split_words(result)[index].lower()


def decode_bool(result: str, index: int = 0) -> bool:
    return decode_uint(result, index) != 0
