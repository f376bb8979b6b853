import logging
import secrets
import time
from typing import Optional

from ..clients.ledger_client import LedgerClient, LedgerError
from ..config import gas_params_from_config, resolve_worker_count
from ..utils.formatting import format_hash_rate, format_token_amount, shorten_hex
from .events import MiningObserver
from .hashing import check_hash
from .scheduler import NonceSearchScheduler
from .snapshot import DifficultySnapshot, fetch_snapshot
from .state import MinerState, MiningRoundState, RoundStatus
from .stats import RoundStatsTracker, time_bonus_percent
from .submission import SubmissionPipeline, SubmissionResult


class Miner:
    def __init__(
        self,
        config: dict,
        ledger: LedgerClient,
        state: MinerState,
        logger: logging.Logger,
        observer: Optional[MiningObserver] = None,
        scheduler: Optional[NonceSearchScheduler] = None,
        stats: Optional[RoundStatsTracker] = None,
    ):
        self.cfg = config
        self.ledger = ledger
        self.state = state
        self.log = logger
        self.observer = observer or MiningObserver()
        self.stats = stats or RoundStatsTracker()

        miner_cfg = self.cfg.get("miner", {})
        self.max_mining_time = float(miner_cfg.get("max_mining_time_secs", 5))
        self.loop_delay = float(miner_cfg.get("loop_delay_secs", 1.0))
        self.scheduler = scheduler or NonceSearchScheduler(
            worker_count=resolve_worker_count(miner_cfg.get("num_workers", 0)),
            batch_size=int(miner_cfg.get("batch_size", 100_000)),
            round_pause=float(miner_cfg.get("round_pause_secs", 0.1)),
            stats=self.stats,
            observer=self.observer,
            logger=logging.getLogger("LakMiner.scheduler"),
        )
        self.pipeline = SubmissionPipeline(
            ledger,
            gas_params_from_config(self.cfg),
            self.stats,
            max_retries=int(miner_cfg.get("max_retries", 3)),
            retry_delay=float(miner_cfg.get("retry_delay_secs", 0.5)),
            reward_per_mine=int(miner_cfg.get("reward_per_mine", 1)),
            observer=self.observer,
            logger=logging.getLogger("LakMiner.submission"),
        )
        self.last_snapshot: Optional[DifficultySnapshot] = None

    def initialize(self) -> None:
        """Check endpoint, wallet and hash encoding. Any exception here is fatal."""
        chain_id = self.ledger.connect()
        address = self.ledger.address
        balance = self.ledger.get_balance(address)
        self.log.info(f"[NETWORK]  Chain ID: {chain_id}")
        self.log.info(f"[WALLET]   {address} | Balance: {format_token_amount(balance)[:6]} MON")
        self.log.info(f"[CONTRACT] {self.ledger.contract_address}")
        self.log.info(
            f"[MINER]    workers={self.scheduler.worker_count}, batch_size={self.scheduler.batch_size}, "
            f"max_mining_time={self.max_mining_time}s"
        )
        self.refresh_contract_stats()
        if self.cfg.get("miner", {}).get("verify_hash_on_start", True):
            self.verify_hash_encoding()

    def refresh_contract_stats(self) -> dict:
        """Read the contract's reporting views. A failed read only costs a warning."""
        address = self.ledger.address
        try:
            overview = {
                "difficulty_percent": self.ledger.difficulty_percent(),
                "base_difficulty_percent": self.ledger.base_difficulty_percent(),
                "remaining_supply": self.ledger.remaining_supply(),
                "total_mines": self.ledger.total_mines(),
                "miner_mines": self.ledger.miner_stats(address),
                "token_balance": self.ledger.token_balance(address),
            }
        except (LedgerError, ValueError) as e:
            self.log.warning(f"Contract stats unavailable: {e}")
            return {}
        self.log.info(
            f"[SUPPLY]   Remaining: {format_token_amount(overview['remaining_supply'])} LAK | "
            f"Total mines: {overview['total_mines']} | "
            f"Difficulty: {overview['difficulty_percent']}% (base {overview['base_difficulty_percent']}%)"
        )
        self.log.info(
            f"[ACCOUNT]  Your mines: {overview['miner_mines']} | "
            f"LAK balance: {format_token_amount(overview['token_balance'])}"
        )
        self.observer.on_contract_stats(overview)
        return overview

    def verify_hash_encoding(self) -> None:
        """Compare the local hash of a random nonce with the contract's checkHash view."""
        timestamp = self.current_timestamp()
        nonce = secrets.randbelow(2**64)
        last_hash = self.ledger.last_hash()
        local_hash, _ = check_hash(last_hash, self.ledger.address, nonce, timestamp, 0)
        remote_hash, _ = self.ledger.check_hash(nonce, timestamp)
        if local_hash.lower() != remote_hash.lower():
            raise LedgerError(
                f"Local hash {local_hash} does not match contract checkHash {remote_hash} "
                f"for nonce {nonce}; refusing to mine"
            )
        self.log.debug(f"Hash encoding verified against contract (nonce={nonce})")

    def current_timestamp(self) -> int:
        try:
            return self.ledger.get_block_timestamp()
        except Exception as e:
            self.log.debug(f"Block timestamp unavailable ({e}), using local clock")
            return int(time.time())

    def _set_status(self, round_state: MiningRoundState, status: RoundStatus, message: str) -> None:
        round_state.transition(status)
        self.observer.on_status(status, message)

    def mine_round(self) -> Optional[SubmissionResult]:
        """One snapshot, one bounded search, at most one submission."""
        round_state = MiningRoundState()
        with self.state._lock:
            self.state.current_round = round_state

        timestamp = self.current_timestamp()
        snapshot = fetch_snapshot(self.ledger, timestamp)
        self.last_snapshot = snapshot
        bonus = time_bonus_percent(snapshot.time_since_last_event)
        self.observer.on_snapshot(snapshot, bonus)
        self.log.debug(
            f"Snapshot: lastHash={shorten_hex(snapshot.last_hash)} difficulty={snapshot.effective_difficulty:#x} "
            f"timeSinceLastMine={snapshot.time_since_last_event}s bonus=+{bonus}%"
        )

        self._set_status(round_state, RoundStatus.SEARCHING, "Starting search")
        deadline = time.monotonic() + self.max_mining_time
        nonce = self.scheduler.search(
            snapshot, self.ledger.address, timestamp, deadline, should_stop=self.state.should_stop
        )
        if nonce is None:
            self._set_status(round_state, RoundStatus.TIMED_OUT, "No nonce found before deadline")
            return None

        round_state.current_nonce = nonce
        self.observer.on_nonce_found(nonce)
        self._set_status(round_state, RoundStatus.FOUND, "Nonce found")
        self.log.info(f"Nonce found: {nonce} (timestamp={timestamp})")

        self._set_status(round_state, RoundStatus.SUBMITTING, "Submitting transaction")
        result = self.pipeline.submit(nonce, timestamp)
        round_state.current_tx_hash = result.tx_hash
        if result.confirmed:
            self._set_status(round_state, RoundStatus.CONFIRMED, "Mine confirmed")
            self.refresh_contract_stats()
        else:
            self._set_status(round_state, RoundStatus.FAILED, f"Submission ended in {result.state.value}")
        return result

    def _report_stats(self) -> None:
        hashrate = self.stats.hashrate()
        self.observer.on_stats(self.stats.snapshot(), hashrate)
        self.log.debug(f"Avg. hashrate: {format_hash_rate(hashrate)}")

    def start(self) -> None:
        """Mine until shutdown is requested. Round errors are logged and never end the loop."""
        with self.state._lock:
            if self.state.running:
                self.log.warning("Miner.start() called multiple times, ignoring duplicate call")
                return
            self.state.running = True
        self.log.info("Starting mining loop")
        try:
            while not self.state.should_stop():
                self._report_stats()
                try:
                    self.mine_round()
                except Exception as e:
                    self.log.error(f"Mining round failed: {e}", exc_info=True)
                    with self.state._lock:
                        round_state = self.state.current_round
                    if not round_state.finished:
                        round_state.transition(RoundStatus.FAILED)
                    self.observer.on_status(RoundStatus.FAILED, f"Error: {e}")
                with self.state._lock:
                    self.state.rounds_completed += 1
                self._report_stats()
                if not self.state.should_stop():
                    time.sleep(self.loop_delay)
        finally:
            with self.state._lock:
                self.state.running = False
            self.log.info("Mining loop stopped")

    def stop(self) -> None:
        self.state.request_shutdown()

    def close(self) -> None:
        self.scheduler.close()
