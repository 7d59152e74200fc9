import pytest

from core import playback
from core.errors import PlaybackFailure
from core.playback import FfplayDriver


class FakePopen:
    launched = []

    def __init__(self, args, stdout=None, stderr=None):
        self.args = args
        self.returncode = None
        self.terminated = False
        FakePopen.launched.append(self)

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def wait(self, timeout=None):
        return self.returncode

    def kill(self):
        self.returncode = -9


@pytest.fixture
def popen(monkeypatch):
    FakePopen.launched = []
    monkeypatch.setattr(playback.subprocess, "Popen", FakePopen)
    return FakePopen


@pytest.fixture
def ffplay():
    driver = FfplayDriver()
    driver.failures, driver.finished = [], []
    driver.on_failure = lambda source, reason: driver.failures.append((source, reason))
    driver.on_finished = driver.finished.append
    return driver


def test_play_launches_ffplay(popen, ffplay):
    ffplay._execute("play", "adhan.mp3", 0.0)

    proc = popen.launched[0]
    assert proc.args[0] == "ffplay"
    assert "-nodisp" in proc.args
    assert "-ss" not in proc.args
    assert proc.args[-2:] == ["-i", "adhan.mp3"]
    assert ffplay.is_alive()
    assert ffplay.current_source() == "adhan.mp3"


def test_resume_seeks_to_position(popen, ffplay):
    ffplay.resume("murottal.mp3", 42.0)
    action, source, position = ffplay._commands.get_nowait()
    ffplay._execute(action, source, position)

    args = popen.launched[0].args
    assert args[args.index("-ss") + 1] == "42.0"
    assert ffplay.position() >= 42.0


def test_pause_remembers_position(popen, ffplay):
    ffplay._execute("play", "murottal.mp3", 100.0)
    ffplay._execute("pause", None, 0.0)

    assert popen.launched[0].terminated
    assert ffplay.position() >= 100.0
    assert not ffplay.is_alive()

    ffplay._execute("stop", None, 0.0)
    assert ffplay.position() == 0.0


def test_new_play_replaces_current_clip(popen, ffplay):
    ffplay._execute("play", "tarhim.mp3", 0.0)
    ffplay._execute("play", "adhan.mp3", 0.0)

    assert popen.launched[0].terminated
    assert ffplay.current_source() == "adhan.mp3"
    # intentional stops are not failures
    ffplay._check_exit()
    assert ffplay.failures == []


def test_missing_ffplay_raises_playback_failure(monkeypatch, ffplay):
    def missing(*args, **kwargs):
        raise FileNotFoundError("ffplay")

    monkeypatch.setattr(playback.subprocess, "Popen", missing)
    with pytest.raises(PlaybackFailure) as excinfo:
        ffplay._execute("play", "adhan.mp3", 0.0)
    assert excinfo.value.source == "adhan.mp3"


def test_natural_end_reports_finished(popen, ffplay):
    ffplay._execute("play", "adhan.mp3", 0.0)
    popen.launched[0].returncode = 0
    ffplay._check_exit()

    assert ffplay.finished == ["adhan.mp3"]
    assert ffplay.failures == []
    assert ffplay.current_source() is None


def test_error_exit_reports_failure(popen, ffplay):
    ffplay._execute("play", "broken.mp3", 0.0)
    popen.launched[0].returncode = 1
    ffplay._check_exit()

    assert ffplay.failures == [("broken.mp3", "ffplay exited with code 1")]
    assert ffplay.finished == []


def test_worker_reports_launch_failure(monkeypatch, ffplay):
    def missing(*args, **kwargs):
        raise FileNotFoundError("ffplay")

    monkeypatch.setattr(playback.subprocess, "Popen", missing)
    ffplay.poll_interval = 0.01
    ffplay.start()
    ffplay.play("adhan.mp3")
    ffplay.close()

    assert [source for source, _ in ffplay.failures] == ["adhan.mp3"]
