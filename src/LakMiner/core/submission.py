"""
Submission of a found nonce as a mine(nonce, timestamp) transaction.

    Idle -> Submitting -> AwaitingConfirmation -> Confirmed | RejectedOnChain
                 \\-> Failed

A transient error during an attempt sends the pipeline back to Idle for another
attempt with the same payload, up to ``max_retries`` attempts in total. Duplicate
inclusion is prevented by the contract's own replay protection, not here.
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..clients.ledger_client import GasParams, TransientLedgerError
from .events import MiningObserver

TRANSIENT_ERROR_SIGNATURES = (
    "could not coalesce",
    "connection reset",
    "connection refused",
    "timed out",
    "temporarily unavailable",
)


class SubmissionState(Enum):
    IDLE = "Idle"
    SUBMITTING = "Submitting"
    AWAITING_CONFIRMATION = "AwaitingConfirmation"
    CONFIRMED = "Confirmed"
    REJECTED_ON_CHAIN = "RejectedOnChain"
    FAILED = "Failed"


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, TransientLedgerError):
        return True
    message = str(exc).lower()
    return any(sig in message for sig in TRANSIENT_ERROR_SIGNATURES)


@dataclass
class SubmissionResult:
    state: SubmissionState
    attempts: int
    tx_hash: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def confirmed(self) -> bool:
        return self.state is SubmissionState.CONFIRMED


class SubmissionPipeline:
    def __init__(
        self,
        ledger,
        gas: GasParams,
        stats,
        max_retries: int = 3,
        retry_delay: float = 0.5,
        reward_per_mine: int = 1,
        observer: Optional[MiningObserver] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.ledger = ledger
        self.gas = gas
        self.stats = stats
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.reward_per_mine = reward_per_mine
        self.observer = observer or MiningObserver()
        self.log = logger or logging.getLogger("LakMiner.submission")
        self._sleep = sleep
        self.state = SubmissionState.IDLE

    def _set_state(self, state: SubmissionState, tx_hash: Optional[str], attempt: int) -> None:
        self.state = state
        self.observer.on_submission(state, tx_hash, attempt)

    def submit(self, nonce: int, timestamp: int) -> SubmissionResult:
        """Run the state machine to a terminal state. Counters are updated exactly once."""
        attempt = 0
        tx_hash = None
        while True:
            attempt += 1
            tx_hash = None
            self._set_state(SubmissionState.SUBMITTING, None, attempt)
            try:
                tx_hash = self.ledger.submit_mine(nonce, timestamp, self.gas)
                self._set_state(SubmissionState.AWAITING_CONFIRMATION, tx_hash, attempt)
                receipt = self.ledger.wait_for_confirmation(tx_hash)
            except Exception as e:
                if is_transient_error(e) and attempt < self.max_retries:
                    self.log.warning(f"RPC error, retrying ({attempt}/{self.max_retries}): {e}")
                    self._set_state(SubmissionState.IDLE, tx_hash, attempt)
                    self._sleep(self.retry_delay)
                    continue
                self.stats.record_failure()
                self.log.error(f"Mine failed | Reason: {str(e)[:80]} | Nonce: {nonce}")
                self._set_state(SubmissionState.FAILED, tx_hash, attempt)
                return SubmissionResult(SubmissionState.FAILED, attempt, tx_hash, e)

            if receipt.success:
                self.stats.record_success(self.reward_per_mine)
                self.log.info(f"Mine successful! | Reward: {self.reward_per_mine} LAK | Nonce: {nonce} | TX: {tx_hash}")
                self._set_state(SubmissionState.CONFIRMED, tx_hash, attempt)
                return SubmissionResult(SubmissionState.CONFIRMED, attempt, tx_hash)

            self.stats.record_failure()
            self.log.error(f"Mine failed (status 0) | Nonce: {nonce} | TX: {tx_hash}")
            self._set_state(SubmissionState.REJECTED_ON_CHAIN, tx_hash, attempt)
            return SubmissionResult(SubmissionState.REJECTED_ON_CHAIN, attempt, tx_hash)
