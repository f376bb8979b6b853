import threading
from dataclasses import dataclass , field
from enum import Enum
from typing import Optional


class RoundStatus(Enum) :
    IDLE = "Idle"
    SEARCHING = "Searching"
    FOUND = "Found"
    SUBMITTING = "Submitting"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


TERMINAL_STATUSES = frozenset({RoundStatus.CONFIRMED , RoundStatus.FAILED , RoundStatus.TIMED_OUT})

# Failed is reachable from every non-terminal status (round errors)
_TRANSITIONS = {
    RoundStatus.IDLE : {RoundStatus.SEARCHING} ,
    RoundStatus.SEARCHING : {RoundStatus.FOUND , RoundStatus.TIMED_OUT} ,
    RoundStatus.FOUND : {RoundStatus.SUBMITTING} ,
    RoundStatus.SUBMITTING : {RoundStatus.CONFIRMED} ,
}


@dataclass
class MiningRoundState :
    status: RoundStatus = RoundStatus.IDLE
    current_nonce: Optional[int] = None
    current_tx_hash: Optional[str] = None

    def transition(self , new_status: RoundStatus) -> None :
        if self.status in TERMINAL_STATUSES :
            raise ValueError(f"Round already finished with status {self.status.value}")
        if new_status is RoundStatus.FAILED or new_status in _TRANSITIONS.get(self.status , ()) :
            self.status = new_status
            return
        raise ValueError(f"Invalid round transition {self.status.value} -> {new_status.value}")

    @property
    def finished(self) -> bool :
        return self.status in TERMINAL_STATUSES


@dataclass
class MinerState :
    shutdown_flag: bool = False
    running: bool = False
    rounds_completed: int = 0
    current_round: MiningRoundState = field(default_factory = MiningRoundState)
    _lock: threading.Lock = field(default_factory = threading.Lock , repr = False , compare = False)

    def request_shutdown(self) -> None :
        with self._lock :
            self.shutdown_flag = True

    def should_stop(self) -> bool :
        with self._lock :
            return self.shutdown_flag
