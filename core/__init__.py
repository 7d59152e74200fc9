"""Prayer-time driven audio and overlay scheduling engine."""

from .errors import (
    InvalidSchedule,
    InvalidSettings,
    PlaybackFailure,
    SettingsUnavailable,
)

__all__ = [
    "InvalidSchedule",
    "InvalidSettings",
    "PlaybackFailure",
    "SettingsUnavailable",
]
