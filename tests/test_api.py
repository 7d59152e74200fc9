from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from core.engine import Engine
from core.prayer_times import PrayerTimeCalculator
from core.settings import MemorySettingsStore, Settings

NOW = datetime(2026, 10, 15, 4, 26, 0)


def fake_provider(location, day):
    def t(hm):
        return datetime.combine(day, datetime.strptime(hm, "%H:%M").time())
    return {"Fajr": t("04:30"), "Dhuhr": t("11:50"), "Asr": t("15:10"), "Maghrib": t("17:50"), "Isha": t("19:00")}


@pytest.fixture
def engine(driver):
    store = MemorySettingsStore(Settings.from_dict({"tarhim": {"enabled": True, "url": "tarhim.mp3"}}))
    calculator = PrayerTimeCalculator(providers={"local": fake_provider})
    return Engine(store, driver, calculator, clock=lambda: NOW)


@pytest.fixture
def client(engine):
    return TestClient(create_app(engine))


def test_status_before_settings(client):
    body = client.get("/status").json()
    assert body["settings_loaded"] is False
    assert body["schedule"] is None
    assert body["audio"]["active"] is None


def test_schedule_endpoint(client, engine):
    assert client.get("/schedule").json() == {"error": "schedule not loaded"}

    engine.load_settings()
    body = client.get("/schedule").json()
    assert body["day"] == "2026-10-15"
    assert body["is_friday"] is False
    assert body["times"]["Imsak"] == "04:20:00"


def test_status_reports_active_audio(client, engine):
    engine.load_settings()
    engine.tick()

    body = client.get("/status").json()
    assert body["audio"]["active"]["kind"] == "tarhim"
    assert body["next_prayer"]["name"] == "Fajr"
    assert client.get("/status/overlay").json()["regular"]["phase"] == "hidden"


def test_stop_playback(client, engine, driver):
    assert client.post("/control/playback/stop").json()["success"] is False

    engine.load_settings()
    engine.tick()
    assert client.post("/control/playback/stop").json()["success"] is True
    assert driver.calls == [("play", "tarhim.mp3"), ("stop",)]

    # the same Tarhim window is not restarted by the next tick
    engine.tick()
    assert driver.calls[-1] == ("stop",)


def test_events_endpoint(client, engine):
    engine.load_settings()
    engine.tick()

    rows = client.get("/events", params={"limit": 10}).json()
    assert rows[-1]["event"] == "play"
    assert rows[-1]["trigger"] == "tarhim"
    assert rows[-1]["source"] == "tarhim.mp3"


def test_reload_settings(client, engine):
    engine.store._snapshot = None
    assert client.post("/control/settings/reload").json()["success"] is False

    engine.store._snapshot = Settings()
    assert client.post("/control/settings/reload").json()["success"] is True
    assert engine.settings == Settings()
