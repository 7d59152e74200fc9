"""
Playback driver using ffplay.

The scheduler calls ``play``/``pause``/``resume``/``stop`` from its tick and
must never block on the audio subsystem, so every call is queued and run by
a background worker. Outcomes come back through two callbacks:

- ``on_failure(source, reason)`` when ffplay is missing or exits with an error
- ``on_finished(source)`` when a clip reaches its end
"""

from __future__ import annotations
import queue
import subprocess
import threading
import time
import logging
from typing import Callable, Optional

from core.errors import PlaybackFailure

_SHUTDOWN = object()


class PlaybackDriver:
    """What the audio scheduler needs from an audio subsystem."""

    on_failure: Optional[Callable[[str, str], None]] = None
    on_finished: Optional[Callable[[str], None]] = None

    def play(self, source: str) -> None:
        raise NotImplementedError

    def pause(self) -> None:
        raise NotImplementedError

    def resume(self, source: str, position: float) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    def position(self) -> float:
        """Seconds into the current (or paused) clip."""
        return 0.0

    def close(self) -> None:
        pass


class FfplayDriver(PlaybackDriver):
    def __init__(
            self,
            ffplay_path: str = "ffplay",
            base_args: Optional[list[str]] = None,
            poll_interval: float = 0.5,
    ):
        self.ffplay_path = ffplay_path

        self.base_args = base_args or [
            "-loglevel", "error",
            "-autoexit",
            "-vn",
            "-nodisp"
        ]
        self.poll_interval = poll_interval

        self._commands: queue.Queue = queue.Queue()
        self._proc: Optional[subprocess.Popen] = None
        self._lock = threading.RLock()
        self._worker: Optional[threading.Thread] = None
        self._current_source: Optional[str] = None
        self._started_at = 0.0
        self._offset = 0.0
        self._paused_position: Optional[float] = None

    # ------------ public API ------------
    def start(self) -> None:
        if self._worker and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._run_loop, name="PlaybackWorker", daemon=True)
        self._worker.start()
        logging.info("[PLAY] ffplay driver started in background.")

    def play(self, source: str) -> None:
        self._commands.put(("play", source, 0.0))

    def pause(self) -> None:
        self._commands.put(("pause", None, 0.0))

    def resume(self, source: str, position: float) -> None:
        self._commands.put(("play", source, position))

    def stop(self) -> None:
        self._commands.put(("stop", None, 0.0))

    def position(self) -> float:
        with self._lock:
            if self._paused_position is not None:
                return self._paused_position
            if self._proc and self._proc.poll() is None:
                return self._offset + (time.monotonic() - self._started_at)
            return 0.0

    def is_alive(self) -> bool:
        with self._lock:
            return bool(self._proc and self._proc.poll() is None)

    def current_source(self) -> Optional[str]:
        with self._lock:
            return self._current_source

    def close(self) -> None:
        """Stop playback and the worker."""
        self._commands.put((_SHUTDOWN, None, 0.0))
        if self._worker and self._worker.is_alive():
            self._worker.join(timeout=5)
        self._worker = None
        with self._lock:
            self._stop_proc_locked()
        logging.info("[PLAY] ffplay driver closed.")

    # ------------ internals ------------
    def _run_loop(self) -> None:
        while True:
            try:
                action, source, position = self._commands.get(timeout=self.poll_interval)
            except queue.Empty:
                self._check_exit()
                continue

            if action is _SHUTDOWN:
                break

            try:
                self._execute(action, source, position)
            except PlaybackFailure as e:
                self._report_failure(e.source, e.reason)
            except Exception as e:
                logging.error(f"[PLAY] {action} error: {e}", exc_info=True)
                if source:
                    self._report_failure(source, str(e))

            self._check_exit()

    def _execute(self, action: str, source: Optional[str], position: float) -> None:
        with self._lock:
            if action == "play":
                self._start_locked(source, position)
            elif action == "pause":
                if self._proc and self._proc.poll() is None:
                    self._paused_position = self._offset + (time.monotonic() - self._started_at)
                    logging.info(f"[PLAY] Paused at {self._paused_position:.1f}s | url={self._current_source}")
                self._stop_proc_locked()
            elif action == "stop":
                self._paused_position = None
                self._stop_proc_locked()
                self._current_source = None
                logging.info("[PLAY] Playback stopped.")

    def _start_locked(self, source: str, position: float) -> None:
        if not source:
            raise PlaybackFailure("", "empty source")

        self._stop_proc_locked()
        self._paused_position = None

        args = [self.ffplay_path, *self.base_args]
        if position > 0:
            args += ["-ss", f"{position:.1f}"]
        args += ["-i", source]

        try:
            self._proc = subprocess.Popen(
                args,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError:
            raise PlaybackFailure(source, "ffplay not found, install FFmpeg") from None
        except OSError as e:
            raise PlaybackFailure(source, f"launch error: {e}") from e

        self._current_source = source
        self._offset = position
        self._started_at = time.monotonic()
        logging.info(f"[PLAY] Starting playback at {position:.1f}s | url={source}")

    def _check_exit(self) -> None:
        with self._lock:
            proc = self._proc
            if not proc:
                return
            rc = proc.poll()
            if rc is None:
                return
            source = self._current_source
            self._proc = None
            self._current_source = None

        if rc == 0:
            logging.info(f"[PLAY] ffplay exited normally | url={source}")
            if self.on_finished:
                try:
                    self.on_finished(source)
                except Exception as e:
                    logging.error(f"[PLAY] Finished callback error: {e}", exc_info=True)
        else:
            self._report_failure(source, f"ffplay exited with code {rc}")

    def _report_failure(self, source: str, reason: str) -> None:
        logging.warning(f"[PLAY] Playback failure | url={source} | {reason}")
        if self.on_failure:
            try:
                self.on_failure(source, reason)
            except Exception as e:
                logging.error(f"[PLAY] Failure callback error: {e}", exc_info=True)

    def _stop_proc_locked(self) -> None:
        """Terminate ffplay cleanly. Intentional stops are not reported."""
        if self._proc:
            try:
                if self._proc.poll() is None:
                    self._proc.terminate()
                    try:
                        self._proc.wait(timeout=2)
                    except subprocess.TimeoutExpired:
                        self._proc.kill()
            except OSError as e:
                logging.warning(f"[PLAY] Error stopping ffplay: {e}")
            finally:
                self._proc = None
