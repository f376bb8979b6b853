"""Per-round difficulty state read from the contract."""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from .hashing import UINT256_MAX, hash_to_bytes


@dataclass(frozen=True)
class DifficultySnapshot:
    last_hash: str
    effective_difficulty: int
    time_since_last_event: int

    def __post_init__(self):
        # Store the hash in canonical 0x + 64 hex form
        object.__setattr__(self, "last_hash", "0x" + hash_to_bytes(self.last_hash).hex())
        if not 0 <= self.effective_difficulty <= UINT256_MAX:
            raise ValueError(f"effective_difficulty out of uint256 range: {self.effective_difficulty}")
        if self.time_since_last_event < 0:
            raise ValueError(f"time_since_last_event must be >= 0: {self.time_since_last_event}")


def fetch_snapshot(ledger, timestamp: int) -> DifficultySnapshot:
    """
    Read lastHash, getEffectiveDifficulty(timestamp) and getTimeSinceLastMine()
    concurrently and combine them into one snapshot. Any failed read fails the
    whole fetch; no partial snapshot is ever returned.
    """
    with ThreadPoolExecutor(max_workers=3, thread_name_prefix="snapshot") as pool:
        last_hash = pool.submit(ledger.last_hash)
        difficulty = pool.submit(ledger.effective_difficulty, timestamp)
        since_last = pool.submit(ledger.time_since_last_mine)
        return DifficultySnapshot(
            last_hash=last_hash.result(),
            effective_difficulty=int(difficulty.result()),
            time_since_last_event=int(since_last.result()),
        )
