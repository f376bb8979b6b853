"""
Tests for round accounting, time bonus and round state transitions.
"""

import pytest

from LakMiner.core.snapshot import DifficultySnapshot, fetch_snapshot
from LakMiner.core.state import MinerState, MiningRoundState, RoundStatus
from LakMiner.core.stats import RoundStatsTracker, time_bonus_percent


class TestTimeBonus:
    @pytest.mark.parametrize(
        "seconds,percent",
        [(-5, 0), (0, 0), (29, 0), (30, 10), (59, 10), (95, 30), (299, 90), (300, 100), (10_000, 100)],
    )
    def test_buckets(self, seconds, percent):
        assert time_bonus_percent(seconds) == percent


class TestRoundStatsTracker:
    def test_hashrate(self):
        tracker = RoundStatsTracker(clock=lambda: 100.0)
        tracker.record_attempts(300)
        tracker.record_attempts(200)
        assert tracker.hashrate(now=110.0) == 50.0

    def test_hashrate_without_elapsed_time(self):
        tracker = RoundStatsTracker(clock=lambda: 100.0)
        tracker.record_attempts(10)
        assert tracker.hashrate() == 0.0

    def test_counters(self):
        tracker = RoundStatsTracker()
        tracker.record_success()
        tracker.record_success(3)
        tracker.record_failure()
        stats = tracker.snapshot()
        assert (stats.success_count, stats.failure_count, stats.total_reward_units) == (2, 1, 4)

    def test_snapshot_is_copy(self):
        tracker = RoundStatsTracker()
        before = tracker.snapshot()
        tracker.record_attempts(5)
        assert before.total_attempts == 0
        assert tracker.snapshot().total_attempts == 5

    def test_negative_attempts_rejected(self):
        with pytest.raises(ValueError):
            RoundStatsTracker().record_attempts(-1)


class TestRoundState:
    def test_happy_path(self):
        state = MiningRoundState()
        for status in (RoundStatus.SEARCHING, RoundStatus.FOUND, RoundStatus.SUBMITTING, RoundStatus.CONFIRMED):
            state.transition(status)
        assert state.status is RoundStatus.CONFIRMED
        assert state.finished

    def test_timeout(self):
        state = MiningRoundState()
        state.transition(RoundStatus.SEARCHING)
        state.transition(RoundStatus.TIMED_OUT)
        assert state.finished

    def test_failed_from_any_active_status(self):
        for path in ([], [RoundStatus.SEARCHING], [RoundStatus.SEARCHING, RoundStatus.FOUND]):
            state = MiningRoundState()
            for status in path:
                state.transition(status)
            state.transition(RoundStatus.FAILED)
            assert state.status is RoundStatus.FAILED

    def test_no_skipping(self):
        state = MiningRoundState()
        with pytest.raises(ValueError):
            state.transition(RoundStatus.SUBMITTING)

    def test_terminal_is_final(self):
        state = MiningRoundState()
        state.transition(RoundStatus.FAILED)
        with pytest.raises(ValueError):
            state.transition(RoundStatus.SEARCHING)

    def test_shutdown_flag(self):
        state = MinerState()
        assert not state.should_stop()
        state.request_shutdown()
        assert state.should_stop()


class TestSnapshot:
    def test_normalises_hash(self):
        snap = DifficultySnapshot("0x1", 5, 0)
        assert snap.last_hash == "0x" + "00" * 31 + "01"

    def test_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            DifficultySnapshot("0x1", 2**256, 0)
        with pytest.raises(ValueError):
            DifficultySnapshot("0x1", 1, -1)

    def test_immutable(self):
        snap = DifficultySnapshot("0x1", 5, 0)
        with pytest.raises(AttributeError):
            snap.effective_difficulty = 6

    def test_fetch_combines_reads(self):
        class Ledger:
            def __init__(self):
                self.difficulty_timestamps = []

            def last_hash(self):
                return "0x" + "cd" * 32

            def effective_difficulty(self, timestamp):
                self.difficulty_timestamps.append(timestamp)
                return 2**240

            def time_since_last_mine(self):
                return 61

        ledger = Ledger()
        snap = fetch_snapshot(ledger, 1700000000)
        assert snap == DifficultySnapshot("0x" + "cd" * 32, 2**240, 61)
        assert ledger.difficulty_timestamps == [1700000000]

    def test_fetch_fails_as_a_whole(self):
        class Ledger:
            def last_hash(self):
                return "0x01"

            def effective_difficulty(self, timestamp):
                raise RuntimeError("read failed")

            def time_since_last_mine(self):
                return 0

        with pytest.raises(RuntimeError):
            fetch_snapshot(Ledger(), 1)
