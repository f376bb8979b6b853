"""Status management for the web dashboard."""
import threading
import time
from collections import deque
from typing import Dict

from ..core.events import MiningObserver
from ..utils.formatting import format_duration, format_hash_rate, format_token_amount

STATUS_LOCK = threading.Lock()

STATUS: Dict = {
    "running": False,
    "status": "Initializing...",
    "start_time": None,
    "uptime_seconds": 0,
    "uptime": "0s",
    "wallet_address": None,
    "contract_address": None,
    "successful_mines": 0,
    "failed_mines": 0,
    "total_rewards": 0,
    "total_attempts": 0,
    "hash_rate": 0.0,
    "avg_hashrate": "0 H/s",
    "last_hash": None,
    "effective_difficulty": None,
    "time_bonus": "0%",
    "nonce": None,
    "tx_hash": None,
    "submission_state": None,
    "difficulty_percent": None,
    "base_difficulty_percent": None,
    "remaining_supply": None,
    "total_mines": None,
    "miner_mines": None,
    "token_balance": None,
    "hash_rate_history": deque(maxlen=60),
    "cpu_usage": 0.0,
    "memory_usage": 0.0,
}


def update_status(key: str, value):
    """Update a status value (thread-safe)"""
    with STATUS_LOCK:
        STATUS[key] = value


def get_status() -> Dict:
    """Get current status (thread-safe copy)"""
    with STATUS_LOCK:
        status = STATUS.copy()
        status["hash_rate_history"] = list(STATUS["hash_rate_history"])
        if status["start_time"]:
            status["uptime_seconds"] = int(time.time() - status["start_time"])
        status["uptime"] = format_duration(status["uptime_seconds"])
        return status


class StatusObserver(MiningObserver):
    """Feeds mining events into STATUS for the dashboard."""

    def on_status(self, status, message):
        update_status("status", message)

    def on_snapshot(self, snapshot, time_bonus_percent):
        with STATUS_LOCK:
            STATUS["last_hash"] = snapshot.last_hash
            STATUS["effective_difficulty"] = hex(snapshot.effective_difficulty)
            STATUS["time_bonus"] = f"{time_bonus_percent}%"
            STATUS["nonce"] = None
            STATUS["tx_hash"] = None
            STATUS["submission_state"] = None

    def on_search_progress(self, attempts):
        update_status("status", f"Mining... (Attempts: {attempts / 1000:.1f}k)")

    def on_nonce_found(self, nonce):
        update_status("nonce", str(nonce))

    def on_submission(self, state, tx_hash, attempt):
        with STATUS_LOCK:
            STATUS["submission_state"] = state.value
            if tx_hash:
                STATUS["tx_hash"] = tx_hash

    def on_stats(self, stats, hashrate):
        with STATUS_LOCK:
            STATUS["successful_mines"] = stats.success_count
            STATUS["failed_mines"] = stats.failure_count
            STATUS["total_rewards"] = stats.total_reward_units
            STATUS["total_attempts"] = stats.total_attempts
            STATUS["hash_rate"] = hashrate
            STATUS["avg_hashrate"] = format_hash_rate(hashrate)

    def on_contract_stats(self, overview):
        with STATUS_LOCK:
            STATUS["difficulty_percent"] = f"{overview['difficulty_percent']}%"
            STATUS["base_difficulty_percent"] = f"{overview['base_difficulty_percent']}%"
            STATUS["remaining_supply"] = format_token_amount(overview["remaining_supply"])
            STATUS["total_mines"] = overview["total_mines"]
            STATUS["miner_mines"] = overview["miner_mines"]
            STATUS["token_balance"] = format_token_amount(overview["token_balance"])
