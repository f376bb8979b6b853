from .server import set_miner_state, start_web_server
from .status import StatusObserver, get_status, update_status

__all__ = ["start_web_server", "set_miner_state", "StatusObserver", "get_status", "update_status"]
