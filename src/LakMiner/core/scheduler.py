"""
Parallel nonce search.

Each round splits a contiguous block of ``worker_count * batch_size`` nonces into
``worker_count`` equal sub-ranges, runs them on a process pool, and waits for all
of them before deciding whether to advance. The deadline is only checked between
rounds, so a search can overrun it by at most one round.
"""
import logging
import secrets
import signal
import time
from concurrent.futures import Executor, ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import psutil

from .events import MiningObserver
from .hashing import UINT256_MAX, HashValidator
from .snapshot import DifficultySnapshot

NONCE_SPACE = UINT256_MAX + 1
# Random start offsets are drawn below this bound so the cursor never nears 2**256
START_OFFSET_SPACE = 2**128


def default_worker_count() -> int:
    return max(2, psutil.cpu_count(logical=True) or 2)


def random_start_nonce() -> int:
    return secrets.randbelow(START_OFFSET_SPACE)


def _ignore_interrupts():
    # Ctrl-C is handled by the control flow, which lets the current round finish
    signal.signal(signal.SIGINT, signal.SIG_IGN)


@dataclass(frozen=True)
class SearchTask:
    range_start: int
    range_end: int
    snapshot: DifficultySnapshot
    miner_address: str
    timestamp: int

    def __post_init__(self):
        if not 0 <= self.range_start <= self.range_end <= NONCE_SPACE:
            raise ValueError(f"Invalid nonce range [{self.range_start}, {self.range_end})")


@dataclass(frozen=True)
class SearchResult:
    found: bool
    nonce: Optional[int]
    attempts: int


def search_range(task: SearchTask) -> SearchResult:
    """Scan [range_start, range_end) in order and stop at the first valid nonce."""
    validator = HashValidator(
        task.snapshot.last_hash,
        task.miner_address,
        task.timestamp,
        task.snapshot.effective_difficulty,
    )
    attempts = 0
    for nonce in range(task.range_start, task.range_end):
        attempts += 1
        if validator.is_valid(nonce):
            return SearchResult(True, nonce, attempts)
    return SearchResult(False, None, attempts)


def partition_range(start: int, worker_count: int, batch_size: int) -> List[Tuple[int, int]]:
    """Disjoint, contiguous, equal sub-ranges whose union is [start, start + worker_count * batch_size)."""
    if worker_count < 1 or batch_size < 1:
        raise ValueError("worker_count and batch_size must be positive")
    if start < 0 or start + worker_count * batch_size > NONCE_SPACE:
        raise ValueError(f"Block starting at {start} does not fit in the uint256 nonce space")
    return [
        (start + i * batch_size, start + (i + 1) * batch_size)
        for i in range(worker_count)
    ]


class NonceSearchScheduler:
    def __init__(
        self,
        worker_count: Optional[int] = None,
        batch_size: int = 100_000,
        round_pause: float = 0.1,
        executor: Optional[Executor] = None,
        start_nonce: Optional[int] = None,
        stats=None,
        observer: Optional[MiningObserver] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.worker_count = worker_count or default_worker_count()
        self.batch_size = batch_size
        self.round_pause = round_pause
        self.cursor = random_start_nonce() if start_nonce is None else start_nonce
        self.stats = stats
        self.observer = observer or MiningObserver()
        self.log = logger or logging.getLogger("LakMiner.scheduler")
        self._clock = clock
        self._sleep = sleep
        self._executor = executor
        self._owns_executor = executor is None
        self.rounds_run = 0

    @property
    def block_size(self) -> int:
        return self.worker_count * self.batch_size

    def _get_executor(self) -> Executor:
        if self._executor is None:
            self.log.debug(f"Starting process pool with {self.worker_count} workers")
            self._executor = ProcessPoolExecutor(max_workers=self.worker_count, initializer=_ignore_interrupts)
        return self._executor

    def _reset_executor(self) -> None:
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def _advance(self) -> None:
        self.cursor += self.block_size
        if self.cursor + self.block_size > NONCE_SPACE:
            self.log.warning("Nonce cursor reached the end of the uint256 space, wrapping to 0")
            self.cursor = 0

    def run_round(self, snapshot: DifficultySnapshot, miner_address: str, timestamp: int) -> List[SearchResult]:
        """Dispatch one round and block until every worker has reported."""
        tasks = [
            SearchTask(start, end, snapshot, miner_address, timestamp)
            for start, end in partition_range(self.cursor, self.worker_count, self.batch_size)
        ]
        executor = self._get_executor()
        try:
            futures = [executor.submit(search_range, task) for task in tasks]
            results = [f.result() for f in futures]
        except BrokenProcessPool:
            # A dead worker breaks the pool for good; the next round starts a fresh one
            self.log.error("Worker process died, discarding the process pool")
            self._reset_executor()
            raise
        self.rounds_run += 1
        self._advance()
        return results

    def search(
        self,
        snapshot: DifficultySnapshot,
        miner_address: str,
        timestamp: int,
        deadline: float,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> Optional[int]:
        """
        Run rounds until a valid nonce is found, ``deadline`` (on this scheduler's
        clock) has passed, or ``should_stop`` returns True.

        Returns the smallest valid nonce of the first successful round, or None.
        """
        attempts_in_search = 0
        while self._clock() < deadline:
            if should_stop is not None and should_stop():
                self.log.info("Stop requested, ending search")
                return None
            results = self.run_round(snapshot, miner_address, timestamp)
            round_attempts = sum(r.attempts for r in results)
            attempts_in_search += round_attempts
            if self.stats is not None:
                self.stats.record_attempts(round_attempts)
            hits = [r.nonce for r in results if r.found]
            if hits:
                nonce = min(hits)
                self.log.debug(f"Round hit: {len(hits)} worker(s) found a nonce, using {nonce}")
                return nonce
            self.observer.on_search_progress(attempts_in_search)
            self.log.debug(f"Round {self.rounds_run} exhausted ({attempts_in_search} attempts so far)")
            self._sleep(self.round_pause)
        self.log.debug(f"Search deadline reached after {attempts_in_search} attempts")
        return None

    def close(self) -> None:
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
