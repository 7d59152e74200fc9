"""
Audio event logger (CSV).
"""

import csv
import threading
import logging
from datetime import datetime
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent
LOG_PATH = BASE_DIR.parent / "assets" / "audio_events.csv"

HEADER = ["timestamp", "event", "trigger", "prayer", "source", "position", "detail"]

_log_lock = threading.Lock()


def _ensure_file_exists(path: Path):
    """Ensure CSV file exists with header."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        with open(path, mode="w", newline="", encoding="utf-8") as f:
            csv.writer(f).writerow(HEADER)
        logging.info(f"[LOG] Created {path.name}")


def log_event(event_type: str,
              trigger: str = "",
              prayer: str = "",
              source: str = None,
              position: float = None,
              detail: str = ""):
    """Append one playback event row. Never raises."""
    path = LOG_PATH
    try:
        with _log_lock:
            _ensure_file_exists(path)
            with open(path, "a", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow([
                    datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
                    event_type,
                    trigger,
                    prayer,
                    source or "",
                    f"{position:.1f}" if position else "",
                    detail,
                ])
    except OSError as e:
        logging.error(f"[LOG] Failed to write audio event: {e}")


def read_events(limit: int = 100) -> list:
    """Most recent ``limit`` rows as dicts, oldest first."""
    path = LOG_PATH
    if not path.exists():
        return []
    with _log_lock:
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
    return rows[-limit:]
