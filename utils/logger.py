"""Root logging: a daily-rotated file under assets/logs plus the console.

Every module logs through the root logger with a ``[TAG] message`` prefix
(``[AUDIO]``, ``[OVERLAY]``, ``[SCHED]``, ``[SETTINGS]``, ...).
"""
import logging
import os
from logging.handlers import TimedRotatingFileHandler

LOG_DIR = os.path.join("assets", "logs")
LOG_PATH = os.path.join(LOG_DIR, "masjid_display.log")
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
KEEP_DAYS = 14

# third-party loggers that would drown out the scheduler at INFO
QUIET_LOGGERS = ("uvicorn.access", "urllib3")


def setup_logging(level: int = logging.INFO, log_path: str = LOG_PATH, keep_days: int = KEEP_DAYS):
    os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    # re-running setup (tests, --debug restarts) must not stack handlers
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)
    handlers = [
        TimedRotatingFileHandler(log_path, when="midnight", backupCount=keep_days, encoding="utf-8"),
        logging.StreamHandler(),
    ]
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logging.info(f"[LOG] Logging initialized → {log_path} (keeping {keep_days} days)")
