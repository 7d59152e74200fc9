import threading
import time
from datetime import datetime

import pytest

from core.engine import Engine
from core.overlay import OverlayPhase
from core.prayer_times import PrayerTimeCalculator
from core.settings import MemorySettingsStore, Settings


def fake_provider(location, day):
    def t(hm):
        return datetime.combine(day, datetime.strptime(hm, "%H:%M").time())
    return {
        "Fajr": t("04:30"), "Sunrise": t("05:45"), "Dhuhr": t("11:50"),
        "Asr": t("15:10"), "Maghrib": t("17:50"), "Isha": t("19:00"),
    }


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


BEEPS = Settings.from_dict({"audio": {"adhan_beep_url": "adhan.mp3"}})


@pytest.fixture
def clock():
    return Clock(datetime(2026, 10, 15, 4, 0))


@pytest.fixture
def make_engine(driver, clock):
    def _make(snapshot=None, **kwargs):
        store = MemorySettingsStore(snapshot)
        calculator = PrayerTimeCalculator(providers={"local": fake_provider})
        return Engine(store, driver, calculator, clock=clock, **kwargs)
    return _make


def test_no_settings_warns_once_and_stays_silent(make_engine, driver, caplog):
    engine = make_engine()

    assert engine.load_settings() is False
    assert engine.load_settings() is False
    engine.tick(datetime(2026, 10, 15, 4, 30))

    assert caplog.text.count("audio and overlays disabled") == 1
    assert engine.schedule is None
    assert driver.calls == []


def test_settings_update_recomputes_immediately(make_engine):
    engine = make_engine()
    engine.store.update({"offsets": {"fajr": 2}})

    assert engine.settings.offsets.fajr == 2
    assert engine.schedule.get("Fajr") == datetime(2026, 10, 15, 4, 32)


def test_tick_dispatches_adhan_beep(make_engine, driver):
    engine = make_engine(BEEPS)
    engine.load_settings()

    engine.tick(datetime(2026, 10, 15, 4, 29, 59))
    engine.tick(datetime(2026, 10, 15, 4, 30, 2))

    assert driver.calls == [("play", "adhan.mp3"), ("stop",)]


def test_schedule_rolls_over_at_midnight(make_engine, clock):
    engine = make_engine(BEEPS)
    engine.load_settings()
    assert engine.schedule.day.isoformat() == "2026-10-15"

    clock.now = datetime(2026, 10, 16, 0, 0, 1)
    engine.tick()
    engine.wait_for_refresh(timeout=2)

    assert engine.schedule.day.isoformat() == "2026-10-16"
    assert engine.schedule.get("Jumuah") is not None


def test_audio_failure_does_not_stop_overlay(make_engine, monkeypatch):
    engine = make_engine(Settings())
    engine.load_settings()

    def broken(*args):
        raise RuntimeError("driver exploded")

    monkeypatch.setattr(engine.audio, "tick", broken)
    engine.tick(datetime(2026, 10, 15, 4, 30, 10))

    assert engine.overlay.visible.phase == OverlayPhase.ADHAN


def test_overlay_close_callback(make_engine):
    closed = []
    engine = make_engine(Settings(), on_overlay_close=closed.append)
    engine.load_settings()

    engine.tick(datetime(2026, 10, 15, 4, 36, 29))
    engine.tick(datetime(2026, 10, 15, 4, 36, 30))

    assert [s.prayer for s in closed] == ["Fajr"]


def test_snapshot(make_engine, clock):
    engine = make_engine(BEEPS)
    engine.load_settings()
    clock.now = datetime(2026, 10, 15, 4, 29, 59)
    engine.tick()

    snap = engine.snapshot()

    assert snap["settings_loaded"] is True
    assert snap["schedule"]["times"]["Fajr"] == "04:30:00"
    assert snap["next_prayer"] == {"name": "Fajr", "time": "04:30", "countdown": "00:00:01"}
    assert snap["current_prayer"] == "Isha"  # still last night's Isha before Fajr
    assert snap["audio"]["active"]["kind"] == "adhan_beep"
    assert snap["overlay"]["regular"]["phase"] == "pre-adhan"


def test_stop_silences_and_closes_driver(make_engine, driver):
    engine = make_engine(BEEPS)
    engine.load_settings()
    engine.stop()

    assert driver.calls == [("stop",)]
    assert driver.closed is True


def test_start_runs_tick_loop(make_engine, driver, clock):
    clock.now = datetime(2026, 10, 15, 4, 30, 0)
    engine = make_engine(BEEPS, tick_interval=0.05)
    engine.start()
    try:
        deadline = time.monotonic() + 2
        while not driver.calls and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        engine.stop()

    assert driver.calls[0] == ("play", "adhan.mp3")
    assert driver.calls[-1] == ("stop",)
    assert engine._thread is None


class SlowProvider:
    """Blocks like an unreachable HTTP provider until released."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self, location, day):
        if location.latitude != -6.2088:
            self.entered.set()
            self.release.wait(5)
        return fake_provider(location, day)


def test_slow_schedule_fetch_does_not_block_tick(driver, clock):
    provider = SlowProvider()
    calculator = PrayerTimeCalculator(providers={"local": provider})
    engine = Engine(MemorySettingsStore(BEEPS), driver, calculator, clock=clock)
    engine.load_settings()

    pusher = threading.Thread(target=engine.store.update, args=({
        "location": {"latitude": 21.42},
        "audio": {"adhan_beep_url": "adhan.mp3"},
    },))
    pusher.start()
    assert provider.entered.wait(2)

    ticker = threading.Thread(target=engine.tick, args=(datetime(2026, 10, 15, 4, 29, 59),))
    ticker.start()
    ticker.join(1)
    try:
        assert not ticker.is_alive()
        assert driver.calls == [("play", "adhan.mp3")]
    finally:
        provider.release.set()
        pusher.join(2)

    assert engine.settings.location.latitude == 21.42


def test_stale_schedule_is_refreshed_off_the_tick_thread(make_engine, clock):
    engine = make_engine(BEEPS)
    engine.load_settings()

    clock.now = datetime(2026, 10, 16, 0, 0, 1)
    engine.tick()
    refresher = engine._refresh_thread

    assert refresher is not None and refresher is not threading.current_thread()
    engine.wait_for_refresh(timeout=2)
    assert engine.schedule.day.isoformat() == "2026-10-16"
