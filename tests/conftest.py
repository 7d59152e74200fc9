from datetime import date, datetime

import pytest

from core.prayer_times import PrayerSchedule
from utils import event_logger

THURSDAY = date(2026, 10, 15)
FRIDAY = date(2026, 10, 16)

DEFAULT_TIMES = {
    "Imsak": "04:20:00",
    "Fajr": "04:30:00",
    "Sunrise": "05:45:00",
    "Dhuhr": "11:50:00",
    "Asr": "15:10:00",
    "Maghrib": "17:50:00",
    "Isha": "19:00:00",
}


class FakeDriver:
    on_failure = None
    on_finished = None

    def __init__(self):
        self.calls = []
        self.current_position = 0.0
        self.closed = False
        self.fail_on_play = None

    def play(self, source):
        if self.fail_on_play:
            raise self.fail_on_play
        self.calls.append(("play", source))

    def pause(self):
        self.calls.append(("pause",))

    def resume(self, source, position):
        self.calls.append(("resume", source, position))

    def stop(self):
        self.calls.append(("stop",))

    def position(self):
        return self.current_position

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def event_log(tmp_path, monkeypatch):
    path = tmp_path / "audio_events.csv"
    monkeypatch.setattr(event_logger, "LOG_PATH", path)
    return path


@pytest.fixture
def driver():
    return FakeDriver()


def at(day, hms):
    return datetime.combine(day, datetime.strptime(hms, "%H:%M:%S").time())


@pytest.fixture
def make_schedule():
    def _make(day=THURSDAY, **overrides):
        times = dict(DEFAULT_TIMES)
        if day.weekday() == 4:
            times["Jumuah"] = times.pop("Dhuhr")
        times.update(overrides)
        return PrayerSchedule(day=day, times={name: at(day, hms) for name, hms in times.items() if hms})
    return _make
