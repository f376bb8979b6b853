"""Observer interface the mining core reports through."""
from typing import Optional


class MiningObserver:
    """No-op base; reporting sinks override the hooks they care about."""

    def on_status(self, status, message: str) -> None:
        pass

    def on_snapshot(self, snapshot, time_bonus_percent: int) -> None:
        pass

    def on_search_progress(self, attempts: int) -> None:
        pass

    def on_nonce_found(self, nonce: int) -> None:
        pass

    def on_submission(self, state, tx_hash: Optional[str], attempt: int) -> None:
        pass

    def on_stats(self, stats, hashrate: float) -> None:
        pass

    def on_contract_stats(self, overview: dict) -> None:
        pass
