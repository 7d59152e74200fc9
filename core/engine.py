"""
Engine: one 1 Hz tick shared by the audio scheduler and the overlay state
machine, fed by the settings store.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date, datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.audio_scheduler import AudioScheduler
from core.errors import SettingsUnavailable
from core.overlay import OverlayStateMachine, OverlayStatus
from core.prayer_times import PrayerSchedule, PrayerTimeCalculator, current_prayer, format_hms, next_prayer
from core.settings import Settings, SettingsStore

TICK_SECONDS = 1.0
SCHEDULE_RETRY_SECONDS = 60


class Engine:
    def __init__(
            self,
            store: SettingsStore,
            driver,
            calculator: Optional[PrayerTimeCalculator] = None,
            clock: Optional[Callable[[], datetime]] = None,
            notify: Optional[Callable[[str], None]] = None,
            on_overlay_close: Optional[Callable[[OverlayStatus], None]] = None,
            tick_interval: float = TICK_SECONDS,
    ):
        self.store = store
        self.driver = driver
        self.calculator = calculator or PrayerTimeCalculator()
        self.audio = AudioScheduler(driver, notify=notify)
        self.overlay = OverlayStateMachine(on_close=on_overlay_close)
        self.tick_interval = tick_interval
        self._clock = clock

        self.settings: Optional[Settings] = None
        self.schedule: Optional[PrayerSchedule] = None

        self._lock = threading.RLock()
        self._stop_flag = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._settings_warned = False
        self._last_schedule_attempt: Optional[tuple] = None  # (day, monotonic)
        self._refresh_thread: Optional[threading.Thread] = None

        store.on_settings_changed(self.apply_settings)

    # ---------------- clock ----------------
    def now(self) -> datetime:
        if self._clock:
            return self._clock()
        settings = self.settings
        if settings is not None:
            try:
                return datetime.now(ZoneInfo(settings.location.timezone)).replace(tzinfo=None)
            except (ZoneInfoNotFoundError, ValueError):
                pass
        return datetime.now()

    # ---------------- settings ----------------
    def load_settings(self) -> bool:
        """Pull the current snapshot from the store."""
        try:
            snapshot = self.store.load()
        except SettingsUnavailable as e:
            self._settings_unavailable(e)
            return False
        self.apply_settings(snapshot)
        return True

    def apply_settings(self, snapshot: Settings) -> None:
        """Settings-change handler: take the full snapshot and recompute now.

        The schedule is computed on the caller's thread without holding the
        tick lock, so a slow provider never stalls the tick.
        """
        with self._lock:
            self.settings = snapshot
            self._settings_warned = False
            self._last_schedule_attempt = None
        self._recompute(self.now().date())
        logging.info("[SETTINGS] Snapshot applied")

    def _settings_unavailable(self, error: Exception) -> None:
        if self._settings_warned:
            return
        self._settings_warned = True
        if self.settings is not None:
            logging.warning(f"[SETTINGS] Unavailable ({error}); keeping last-known-good settings")
        else:
            logging.warning(f"[SETTINGS] Unavailable ({error}); audio and overlays disabled")

    def _recompute(self, day: date) -> None:
        with self._lock:
            settings = self.settings
            if settings is None:
                return
            self._last_schedule_attempt = (day, time.monotonic())

        # may block on the network (aladhan); runs outside the lock
        try:
            schedule = self.calculator.calculate(settings, day)
        except Exception as e:
            logging.error(f"[SCHED] Prayer time calculation failed: {e}", exc_info=True)
            return

        with self._lock:
            if self.settings is not settings:
                return  # superseded by a newer snapshot
            if schedule.times:
                self.schedule = schedule
            elif self.schedule is not None:
                logging.warning(f"[SCHED] Keeping schedule for {self.schedule.day}")

    def _refresh_in_background(self, day: date) -> None:
        if self._refresh_thread and self._refresh_thread.is_alive():
            return
        logging.info(f"[SCHED] Computing schedule for {day}")
        self._refresh_thread = threading.Thread(
            target=self._recompute, args=(day,), name="ScheduleRefresh", daemon=True
        )
        self._refresh_thread.start()

    def wait_for_refresh(self, timeout: Optional[float] = None) -> None:
        thread = self._refresh_thread
        if thread is not None:
            thread.join(timeout)

    def _schedule_stale(self, today: date) -> bool:
        if self.settings is None:
            return False
        if self.schedule is not None and self.schedule.day == today:
            return False
        attempt = self._last_schedule_attempt
        if attempt is None or attempt[0] != today:
            return True
        return time.monotonic() - attempt[1] >= SCHEDULE_RETRY_SECONDS

    # ---------------- tick ----------------
    def tick(self, now: Optional[datetime] = None) -> None:
        """Advance both state machines by one tick. Never raises."""
        now = now or self.now()
        with self._lock:
            if self._schedule_stale(now.date()):
                # until the refresh lands the new day has no schedule and stays silent
                self._refresh_in_background(now.date())

            schedule, settings = self.schedule, self.settings
            if schedule is not None and schedule.day != now.date():
                schedule = None

            try:
                self.audio.tick(now, schedule, settings)
            except Exception as e:
                logging.error(f"[AUDIO] Tick failed: {e}", exc_info=True)

            try:
                self.overlay.tick(now, schedule, settings)
            except Exception as e:
                logging.error(f"[OVERLAY] Tick failed: {e}", exc_info=True)

    def _run_loop(self) -> None:
        logging.info("[CORE] Tick loop running")
        while not self._stop_flag.is_set():
            self.tick()
            # align to the next whole second
            self._stop_flag.wait(self.tick_interval - (time.time() % self.tick_interval))

    # ---------------- lifecycle ----------------
    def start(self) -> None:
        self.load_settings()
        self.store.start()
        start_driver = getattr(self.driver, "start", None)
        if start_driver:
            start_driver()

        self._stop_flag.clear()
        self._thread = threading.Thread(target=self._run_loop, name="EngineTick", daemon=True)
        self._thread.start()
        logging.info("[CORE] Engine started")

    def stop(self) -> None:
        self._stop_flag.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=self.tick_interval + 2)
        self._thread = None

        self.store.stop()
        self.audio.shutdown()
        self.driver.close()
        logging.info("[CORE] Engine stopped")

    # ---------------- display projection ----------------
    def snapshot(self) -> dict:
        now = self.now()
        with self._lock:
            schedule, settings = self.schedule, self.settings

        upcoming = None
        current = None
        if schedule is not None:
            include_imsak = bool(settings and settings.ramadan.enabled)
            found = next_prayer(schedule, now, include_imsak)
            if found:
                name, at = found
                upcoming = {"name": name, "time": at.strftime("%H:%M"), "countdown": format_hms(at - now)}
            current = current_prayer(schedule, now, include_imsak)

        return {
            "now": now.isoformat(timespec="seconds"),
            "settings_loaded": settings is not None,
            "schedule": {
                "day": schedule.day.isoformat(),
                "is_friday": schedule.is_friday,
                "times": schedule.as_dict(),
            } if schedule else None,
            "next_prayer": upcoming,
            "current_prayer": current,
            "overlay": self.overlay.snapshot(),
            "audio": self.audio.snapshot(),
        }
