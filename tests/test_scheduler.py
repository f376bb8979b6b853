"""
Tests for the partitioned nonce search.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures.process import BrokenProcessPool

import psutil
import pytest
from eth_abi.packed import encode_packed as reference_encode_packed
from eth_utils import keccak as reference_keccak

from LakMiner.core import scheduler as scheduler_module
from LakMiner.core.hashing import check_hash
from LakMiner.core.scheduler import (
    NONCE_SPACE,
    START_OFFSET_SPACE,
    NonceSearchScheduler,
    SearchTask,
    partition_range,
    search_range,
)
from LakMiner.core.snapshot import DifficultySnapshot
from LakMiner.core.stats import RoundStatsTracker

LAST_HASH = "0x" + "00" * 31 + "01"
MINER = "0x" + "ab" * 20
TIMESTAMP = 1000


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def make_validator(valid_nonces, seen=None):
    lock = threading.Lock()

    class FakeValidator:
        def __init__(self, last_hash, miner_address, timestamp, difficulty):
            pass

        def is_valid(self, nonce):
            if seen is not None:
                with lock:
                    seen.append(nonce)
            return nonce in valid_nonces

    return FakeValidator


def make_scheduler(workers, batch, start=0, **kwargs):
    return NonceSearchScheduler(
        worker_count=workers,
        batch_size=batch,
        executor=ThreadPoolExecutor(max_workers=workers),
        start_nonce=start,
        **kwargs,
    )


def snapshot(difficulty):
    return DifficultySnapshot(LAST_HASH, difficulty, 0)


class TestPartition:
    """Sub-ranges are disjoint and cover the round's block exactly."""

    @pytest.mark.parametrize("start", [0, 7, 2**200])
    def test_exhaustive_small_grids(self, start):
        for workers in range(1, 5):
            for batch in range(1, 6):
                ranges = partition_range(start, workers, batch)
                assert len(ranges) == workers
                covered = [n for lo, hi in ranges for n in range(lo, hi)]
                assert covered == list(range(start, start + workers * batch))
                assert all(hi - lo == batch for lo, hi in ranges)

    def test_rejects_overflow(self):
        with pytest.raises(ValueError):
            partition_range(NONCE_SPACE - 5, 2, 5)

    def test_rejects_non_positive(self):
        with pytest.raises(ValueError):
            partition_range(0, 0, 10)
        with pytest.raises(ValueError):
            partition_range(0, 2, 0)

    def test_task_range_validation(self):
        with pytest.raises(ValueError):
            SearchTask(10, 5, snapshot(1), MINER, TIMESTAMP)


class TestSearchRange:
    def test_miss_reports_all_attempts(self):
        result = search_range(SearchTask(0, 25, snapshot(0), MINER, TIMESTAMP))
        assert result.found is False
        assert result.nonce is None
        assert result.attempts == 25

    def test_stops_at_first_hit(self, monkeypatch):
        monkeypatch.setattr(scheduler_module, "HashValidator", make_validator({13, 17}))
        result = search_range(SearchTask(10, 30, snapshot(1), MINER, TIMESTAMP))
        assert (result.found, result.nonce, result.attempts) == (True, 13, 4)


class TestSearch:
    def test_scenario_nonce_42(self, monkeypatch):
        """Single worker, batch 50 from 0: the first valid nonce, 42, is returned."""
        monkeypatch.setattr(scheduler_module, "HashValidator", make_validator({42, 45}))
        stats = RoundStatsTracker()
        with make_scheduler(1, 50, stats=stats) as s:
            nonce = s.search(snapshot(1), MINER, TIMESTAMP, deadline=float("inf"))

        assert nonce == 42
        assert stats.snapshot().total_attempts == 43

    @pytest.mark.parametrize("workers,batch", [(1, 256), (4, 64)])
    def test_scenario_first_hit_real_keccak(self, workers, batch):
        """Unpatched hashing: the first nonce under a 1-in-16 target, per an independent encoder."""
        difficulty = 2**252
        expected = next(
            n
            for n in range(256)
            if int.from_bytes(
                reference_keccak(
                    reference_encode_packed(
                        ["bytes32", "address", "uint256", "uint256"],
                        [bytes.fromhex(LAST_HASH[2:]), MINER, n, TIMESTAMP],
                    )
                ),
                "big",
            )
            < difficulty
        )
        with make_scheduler(workers, batch) as s:
            assert s.search(snapshot(difficulty), MINER, TIMESTAMP, deadline=float("inf")) == expected
        assert s.rounds_run == 1

    def test_lowest_nonce_wins_across_workers(self, monkeypatch):
        monkeypatch.setattr(scheduler_module, "HashValidator", make_validator({35, 12, 27}))
        with make_scheduler(4, 10) as s:
            assert s.search(snapshot(1), MINER, TIMESTAMP, deadline=float("inf")) == 12

    def test_all_workers_counted_on_hit(self, monkeypatch):
        monkeypatch.setattr(scheduler_module, "HashValidator", make_validator({3}))
        stats = RoundStatsTracker()
        with make_scheduler(3, 10, stats=stats) as s:
            s.search(snapshot(1), MINER, TIMESTAMP, deadline=float("inf"))
        # worker 0 stops after 4, the other two exhaust their ranges
        assert stats.snapshot().total_attempts == 4 + 10 + 10

    @pytest.mark.parametrize("workers,batch", [(1, 50), (5, 10), (2, 25)])
    def test_real_hashes_find_minimum(self, workers, batch):
        hashes = [int(check_hash(LAST_HASH, MINER, n, TIMESTAMP, 0)[0], 16) for n in range(50)]
        best = min(range(50), key=lambda n: hashes[n])
        with make_scheduler(workers, batch) as s:
            nonce = s.search(snapshot(hashes[best] + 1), MINER, TIMESTAMP, deadline=float("inf"))
        assert nonce == best

    def test_deadline_checked_between_rounds(self):
        clock = FakeClock()
        stats = RoundStatsTracker()
        with make_scheduler(2, 5, round_pause=1.0, clock=clock, sleep=clock.sleep, stats=stats) as s:
            nonce = s.search(snapshot(0), MINER, TIMESTAMP, deadline=3.5)

        assert nonce is None
        assert s.rounds_run == 4
        assert s.cursor == 4 * 10
        assert stats.snapshot().total_attempts == 40
        # overrun is at most one round
        assert clock.now <= 3.5 + 1.0

    def test_expired_deadline_runs_nothing(self):
        clock = FakeClock(now=10.0)
        with make_scheduler(2, 5, clock=clock, sleep=clock.sleep) as s:
            assert s.search(snapshot(2**256 - 1), MINER, TIMESTAMP, deadline=5.0) is None
            assert s.rounds_run == 0

    def test_stop_requested(self):
        with make_scheduler(2, 5) as s:
            assert s.search(snapshot(2**256 - 1), MINER, TIMESTAMP, float("inf"), should_stop=lambda: True) is None
            assert s.rounds_run == 0

    def test_cursor_never_revisits(self, monkeypatch):
        seen = []
        monkeypatch.setattr(scheduler_module, "HashValidator", make_validator(set(), seen))
        clock = FakeClock()
        with make_scheduler(3, 4, start=100, round_pause=1.0, clock=clock, sleep=clock.sleep) as s:
            s.search(snapshot(1), MINER, TIMESTAMP, deadline=2.0)
            s.search(snapshot(1), MINER, TIMESTAMP, deadline=4.0)

        assert sorted(seen) == list(range(100, 100 + 4 * 12))

    def test_progress_reported(self, monkeypatch):
        events = []

        class Observer:
            def on_search_progress(self, attempts):
                events.append(attempts)

        clock = FakeClock()
        with make_scheduler(2, 5, round_pause=1.0, clock=clock, sleep=clock.sleep, observer=Observer()) as s:
            s.search(snapshot(0), MINER, TIMESTAMP, deadline=2.0)
        assert events == [10, 20]

    def test_random_start_offset(self):
        s = NonceSearchScheduler(worker_count=2, batch_size=5, executor=ThreadPoolExecutor(2))
        assert 0 <= s.cursor < START_OFFSET_SPACE
        s.close()

    def test_process_pool(self):
        """Default executor runs the search in worker processes."""
        with NonceSearchScheduler(worker_count=2, batch_size=5, start_nonce=0) as s:
            assert s.search(snapshot(2**256 - 1), MINER, TIMESTAMP, deadline=float("inf")) == 0

    def test_recovers_from_dead_worker(self):
        """Killing the pool's processes fails one search; the next one runs on a new pool."""
        with NonceSearchScheduler(worker_count=2, batch_size=5, start_nonce=0) as s:
            assert s.search(snapshot(2**256 - 1), MINER, TIMESTAMP, deadline=float("inf")) == 0
            workers = [psutil.Process(pid) for pid in s._executor._processes]
            for proc in workers:
                proc.kill()
            psutil.wait_procs(workers, timeout=10)

            with pytest.raises(BrokenProcessPool):
                s.search(snapshot(2**256 - 1), MINER, TIMESTAMP, deadline=float("inf"))
            assert s._executor is None
            # the lost round is not skipped
            assert s.search(snapshot(2**256 - 1), MINER, TIMESTAMP, deadline=float("inf")) == 10

    def test_injected_executor_is_kept_when_broken(self):
        class BrokenExecutor:
            def submit(self, fn, *args):
                raise BrokenProcessPool("worker died")

            def shutdown(self, wait=True, cancel_futures=False):
                raise AssertionError("caller-owned executor must not be shut down")

        executor = BrokenExecutor()
        s = NonceSearchScheduler(worker_count=2, batch_size=5, executor=executor, start_nonce=0)
        with pytest.raises(BrokenProcessPool):
            s.search(snapshot(1), MINER, TIMESTAMP, deadline=float("inf"))
        assert s._executor is executor
        assert s.cursor == 0
