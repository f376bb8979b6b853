"""
Local proof-of-work verification.

Mirrors the contract's `keccak256(abi.encodePacked(lastHash, msg.sender, nonce, timestamp))`
check so a nonce found here is accepted on-chain.
"""
from typing import Tuple, Union

from Crypto.Hash import keccak

HASH_BYTES = 32
ADDRESS_BYTES = 20
UINT256_BYTES = 32
UINT256_MAX = 2**256 - 1

BytesLike = Union[bytes, bytearray, str]


def keccak256(data: bytes) -> bytes:
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def _hex_to_bytes(value: str) -> bytes:
    value = value.strip()
    if value[:2].lower() == "0x":
        value = value[2:]
    if len(value) % 2 != 0:
        value = "0" + value
    return bytes.fromhex(value)


def hash_to_bytes(value: BytesLike) -> bytes:
    """Normalise a bytes32 value (raw bytes or hex string) to exactly 32 bytes, left-padded."""
    raw = _hex_to_bytes(value) if isinstance(value, str) else bytes(value)
    if len(raw) > HASH_BYTES:
        raise ValueError(f"bytes32 value too long: {len(raw)} bytes")
    return raw.rjust(HASH_BYTES, b"\x00")


def address_to_bytes(address: BytesLike) -> bytes:
    raw = _hex_to_bytes(address) if isinstance(address, str) else bytes(address)
    if len(raw) != ADDRESS_BYTES:
        raise ValueError(f"Address must be {ADDRESS_BYTES} bytes, got {len(raw)}")
    return raw


def uint256_to_bytes(value: int) -> bytes:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"uint256 must be an int, got {type(value).__name__}")
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"Value out of uint256 range: {value}")
    return value.to_bytes(UINT256_BYTES, "big")


def encode_packed(last_hash: BytesLike, miner_address: BytesLike, nonce: int, timestamp: int) -> bytes:
    """bytes32 || address || uint256 || uint256, no delimiters, big-endian."""
    return (
        hash_to_bytes(last_hash)
        + address_to_bytes(miner_address)
        + uint256_to_bytes(nonce)
        + uint256_to_bytes(timestamp)
    )


def check_hash(
    last_hash: BytesLike, miner_address: BytesLike, nonce: int, timestamp: int, difficulty: int
) -> Tuple[str, bool]:
    """Return (0x-prefixed hash, hash < difficulty)."""
    digest = keccak256(encode_packed(last_hash, miner_address, nonce, timestamp))
    return "0x" + digest.hex(), int.from_bytes(digest, "big") < int(difficulty)


class HashValidator:
    """
    check_hash() bound to one (lastHash, miner, timestamp, difficulty) tuple.

    The fixed prefix and suffix are encoded once so the per-nonce cost is a
    single 32-byte conversion plus the Keccak call.
    """

    def __init__(self, last_hash: BytesLike, miner_address: BytesLike, timestamp: int, difficulty: int):
        self.prefix = hash_to_bytes(last_hash) + address_to_bytes(miner_address)
        self.suffix = uint256_to_bytes(timestamp)
        self.difficulty = int(difficulty)

    def digest(self, nonce: int) -> bytes:
        return keccak256(self.prefix + uint256_to_bytes(nonce) + self.suffix)

    def validate(self, nonce: int) -> Tuple[str, bool]:
        digest = self.digest(nonce)
        return "0x" + digest.hex(), int.from_bytes(digest, "big") < self.difficulty

    def is_valid(self, nonce: int) -> bool:
        return int.from_bytes(self.digest(nonce), "big") < self.difficulty
