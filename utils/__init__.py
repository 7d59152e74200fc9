"""
Utils Package
-------------
Provides helper modules for configuration loading, the Aladhan API client,
logging setup and the audio event log.
"""

from .config_loader import load_config
from .prayer_api import get_prayer_times
from .event_logger import log_event, read_events

__all__ = ["load_config", "get_prayer_times", "log_event", "read_events"]
