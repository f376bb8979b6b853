import logging
import os
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(
    level: str = None, log_file: str = None, verbose: bool = False
) -> None:
    """Configure root logging for the application.

    - `level`: string like 'INFO' or 'DEBUG'. If None, will use env LOG_LEVEL or 'INFO'.
    - `log_file`: optional path for an additional rotating log file.
    - `verbose`: if True, forces the LakMiner loggers to DEBUG.
    """
    level = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    level_const = getattr(logging, level, logging.INFO)

    root = logging.getLogger()
    root.setLevel(level_const)

    # Drop file handlers from an earlier call so reconfiguring never duplicates output
    for h in list(root.handlers):
        if isinstance(h, RotatingFileHandler):
            h.close()
            root.removeHandler(h)

    has_stream = any(
        type(h) is logging.StreamHandler for h in root.handlers
    )
    if not has_stream:
        sh = logging.StreamHandler()
        sh.setLevel(level_const)
        sh.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(sh)

    if log_file:
        directory = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(directory, exist_ok=True)
        fh = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
        fh.setLevel(level_const)
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(fh)

    if verbose:
        logging.getLogger("LakMiner").setLevel(logging.DEBUG)
