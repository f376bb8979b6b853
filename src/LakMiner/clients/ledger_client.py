import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import requests
from eth_account import Account
from eth_utils import to_checksum_address

from . import abi

TRANSIENT_HTTP_STATUS = {429, 502, 503, 504}

MINE = "mine(uint256,uint256)"
CHECK_HASH = "checkHash(uint256,uint256)"
EFFECTIVE_DIFFICULTY = "getEffectiveDifficulty(uint256)"
LAST_HASH = "lastHash()"
DIFFICULTY_PERCENT = "getDifficultyPercent()"
BASE_DIFFICULTY_PERCENT = "getBaseDifficultyPercent()"
TIME_SINCE_LAST_MINE = "getTimeSinceLastMine()"
REMAINING_SUPPLY = "remainingSupply()"
TOTAL_MINES = "totalMines()"
MINER_STATS = "minerStats(address)"
BALANCE_OF = "balanceOf(address)"


class LedgerError(RuntimeError):
    pass


class TransientLedgerError(LedgerError):
    """Connectivity failure; the same request may succeed if repeated."""


class RPCError(LedgerError):
    def __init__(self, code: Optional[int], message: str):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class ConfirmationTimeout(LedgerError):
    pass


@dataclass(frozen=True)
class GasParams:
    gas_limit: int
    max_priority_fee_wei: int
    max_fee_wei: int


@dataclass(frozen=True)
class TxReceipt:
    tx_hash: str
    success: bool
    block_number: Optional[int] = None
    gas_used: Optional[int] = None


class LedgerClient:
    """
    JSON-RPC access to the chain and the mining contract.

    Only the mining control flow uses an instance; worker processes never see it.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        private_key: Optional[str] = None,
        timeout: int = 15,
        confirmation_timeout: float = 120,
        poll_interval: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        self.rpc_url = rpc_url
        self.contract_address = to_checksum_address(contract_address)
        self.timeout = timeout
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.session = session or requests.Session()
        self.account = Account.from_key(private_key) if private_key else None
        self.logger = logging.getLogger("LakMiner.ledger")
        self._ids = itertools.count(1)
        self._chain_id: Optional[int] = None

    @property
    def address(self) -> str:
        if self.account is None:
            raise LedgerError("No signing key configured")
        return self.account.address

    def _rpc(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            r = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientLedgerError(f"{method}: could not reach {self.rpc_url}: {e}") from e
        if r.status_code in TRANSIENT_HTTP_STATUS:
            raise TransientLedgerError(f"{method}: HTTP {r.status_code} from {self.rpc_url}")
        try:
            r.raise_for_status()
            data = r.json()
        except requests.RequestException as e:
            raise LedgerError(f"{method}: {e}") from e
        except ValueError as e:
            raise LedgerError(f"{method}: invalid JSON response: {e}") from e
        if not isinstance(data, dict):
            raise LedgerError(f"{method}: invalid JSON-RPC response: {data!r}")
        error = data.get("error")
        if error:
            if not isinstance(error, dict):
                raise RPCError(None, str(error))
            raise RPCError(error.get("code"), error.get("message", str(error)))
        return data.get("result")

    def connect(self, max_retries: int = 3, retry_delay: float = 2) -> int:
        """Check the endpoint answers; returns the chain id. Raises after max_retries failures."""
        last_error = None
        for attempt in range(max_retries):
            try:
                return self.chain_id()
            except TransientLedgerError as e:
                last_error = e
                if attempt < max_retries - 1:
                    self.logger.warning(f"Failed to reach {self.rpc_url} (attempt {attempt + 1}/{max_retries}): {e}. Retrying in {retry_delay}s...")
                    time.sleep(retry_delay)
                else:
                    self.logger.error(f"Failed to reach {self.rpc_url} after {max_retries} attempts: {e}")
        raise last_error

    # Chain reads

    def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(self._rpc("eth_chainId", []), 16)
        return self._chain_id

    def get_balance(self, address: str) -> int:
        return int(self._rpc("eth_getBalance", [address, "latest"]), 16)

    def get_block_timestamp(self) -> int:
        block = self._rpc("eth_getBlockByNumber", ["latest", False])
        if not block or "timestamp" not in block:
            raise LedgerError("Latest block has no timestamp")
        return int(block["timestamp"], 16)

    # Contract reads

    def call(self, signature: str, *args) -> str:
        tx = {"to": self.contract_address, "data": abi.encode_call(signature, *args)}
        if self.account is not None:
            # checkHash hashes msg.sender, so reads go out from the miner address
            tx["from"] = self.account.address
        return self._rpc("eth_call", [tx, "latest"])

    def last_hash(self) -> str:
        return abi.decode_bytes32(self.call(LAST_HASH))

    def effective_difficulty(self, timestamp: int) -> int:
        return abi.decode_uint(self.call(EFFECTIVE_DIFFICULTY, timestamp))

    def time_since_last_mine(self) -> int:
        return abi.decode_uint(self.call(TIME_SINCE_LAST_MINE))

    def check_hash(self, nonce: int, timestamp: int) -> Tuple[str, bool]:
        result = self.call(CHECK_HASH, nonce, timestamp)
        return abi.decode_bytes32(result, 0), abi.decode_bool(result, 1)

    def difficulty_percent(self) -> int:
        return abi.decode_uint(self.call(DIFFICULTY_PERCENT))

    def base_difficulty_percent(self) -> int:
        return abi.decode_uint(self.call(BASE_DIFFICULTY_PERCENT))

    def remaining_supply(self) -> int:
        return abi.decode_uint(self.call(REMAINING_SUPPLY))

    def total_mines(self) -> int:
        return abi.decode_uint(self.call(TOTAL_MINES))

    def miner_stats(self, address: str) -> int:
        return abi.decode_uint(self.call(MINER_STATS, address))

    def token_balance(self, address: str) -> int:
        return abi.decode_uint(self.call(BALANCE_OF, address))

    # Writes

    def submit_mine(self, nonce: int, timestamp: int, gas: GasParams) -> str:
        """Sign and broadcast mine(nonce, timestamp). Returns the transaction hash."""
        tx = {
            "type": 2,
            "chainId": self.chain_id(),
            "nonce": int(self._rpc("eth_getTransactionCount", [self.address, "pending"]), 16),
            "to": self.contract_address,
            "value": 0,
            "data": abi.encode_call(MINE, nonce, timestamp),
            "gas": gas.gas_limit,
            "maxPriorityFeePerGas": gas.max_priority_fee_wei,
            "maxFeePerGas": gas.max_fee_wei,
        }
        signed = self.account.sign_transaction(tx)
        raw = signed.raw_transaction.hex()
        if not raw.startswith("0x"):
            raw = "0x" + raw
        tx_hash = self._rpc("eth_sendRawTransaction", [raw])
        self.logger.debug(f"Broadcast mine(nonce={nonce}, timestamp={timestamp}) as {tx_hash}")
        return tx_hash

    def wait_for_confirmation(self, tx_hash: str) -> TxReceipt:
        """Poll for the receipt until it appears or confirmation_timeout elapses."""
        deadline = time.monotonic() + self.confirmation_timeout
        while True:
            receipt = self._rpc("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                return TxReceipt(
                    tx_hash=tx_hash,
                    success=int(receipt.get("status") or "0x0", 16) == 1,
                    block_number=int(receipt["blockNumber"], 16) if receipt.get("blockNumber") else None,
                    gas_used=int(receipt["gasUsed"], 16) if receipt.get("gasUsed") else None,
                )
            if time.monotonic() >= deadline:
                raise ConfirmationTimeout(f"No receipt for {tx_hash} after {self.confirmation_timeout}s")
            time.sleep(self.poll_interval)

    def close(self):
        """Close the HTTP session"""
        try:
            self.session.close()
        except requests.RequestException as e:
            self.logger.debug(f"Error closing session: {e}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
