import logging

import pytest

import main
from utils import event_logger
from utils.logger import setup_logging


@pytest.fixture
def root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_writes_file(tmp_path, root_logging):
    log_path = tmp_path / "logs" / "display.log"
    setup_logging(logging.DEBUG, str(log_path))
    logging.info("[TEST] hello")

    assert root_logging.level == logging.DEBUG
    assert "[TEST] hello" in log_path.read_text(encoding="utf-8")


def test_show_schedule(tmp_path, monkeypatch, capsys, root_logging):
    monkeypatch.chdir(tmp_path)
    config = tmp_path / "config.yml"
    config.write_text("location:\n  latitude: -6.2088\n  longitude: 106.8456\n")

    assert main.main(["--config", str(config), "--show-schedule"]) == 0
    out = capsys.readouterr().out
    assert "Prayer Timings" in out
    assert "Fajr" in out and "Isha" in out


def test_show_schedule_without_config(tmp_path, monkeypatch, root_logging):
    monkeypatch.chdir(tmp_path)
    assert main.main(["--config", "missing.yml", "--show-schedule"]) == 1


def test_event_log_roundtrip(event_log):
    event_logger.log_event("play", "tarhim", "Fajr", "tarhim.mp3")
    event_logger.log_event("pause", "murottal", "Fajr", None, position=12.345)
    event_logger.log_event("failure", "tarhim", "Fajr", "tarhim.mp3", detail="exit 1")

    rows = event_logger.read_events(limit=2)
    assert [r["event"] for r in rows] == ["pause", "failure"]
    assert rows[0]["position"] == "12.3"
    assert rows[1]["detail"] == "exit 1"


def test_event_log_missing_file(event_log):
    assert event_logger.read_events() == []


def test_setup_logging_replaces_handlers_and_quiets_access_log(tmp_path, root_logging):
    setup_logging(logging.INFO, str(tmp_path / "a.log"))
    setup_logging(logging.INFO, str(tmp_path / "b.log"), keep_days=3)

    files = [h for h in root_logging.handlers if hasattr(h, "baseFilename")]
    assert len(files) == 1
    assert files[0].baseFilename.endswith("b.log")
    assert files[0].backupCount == 3
    assert logging.getLogger("uvicorn.access").level == logging.WARNING
