"""Failure types shared by the scheduling engine."""


class SettingsUnavailable(Exception):
    """Settings could not be fetched or parsed."""


class InvalidSettings(SettingsUnavailable):
    """A settings field holds a value of the wrong shape."""


class InvalidSchedule(ValueError):
    """A prayer timestamp is missing or malformed."""


class PlaybackFailure(Exception):
    """The audio subsystem could not play a source."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason
