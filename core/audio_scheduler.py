"""
Per-tick audio arbitration.

``evaluate`` is a pure function: given the time, the day's schedule, the
settings and the previous ``PlaybackState`` it returns the next state plus
the commands the playback driver should execute. ``AudioScheduler`` owns
the state and forwards those commands to the injected driver.

Priority, highest first: Imsak beep, Tarhim, Adhan beep, Iqomah beep,
Murottal. Only one trigger is active at a time.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional

from core.prayer_times import ADHAN_PRAYERS, DHUHR, FAJR, IMSAK, ISHA, PrayerSchedule
from core.settings import MUROTTAL_SLOTS, Settings
from utils.event_logger import log_event

logger = logging.getLogger(__name__)

IMSAK_BEEP = "imsak_beep"
TARHIM = "tarhim"
ADHAN_BEEP = "adhan_beep"
IQOMAH_BEEP = "iqomah_beep"
MUROTTAL = "murottal"

PRIORITY = (IMSAK_BEEP, TARHIM, ADHAN_BEEP, IQOMAH_BEEP, MUROTTAL)

# Tarhim and the Adhan beep are re-entrant within their window; these are not.
PLAYED_ONCE = frozenset({IMSAK_BEEP, IQOMAH_BEEP, MUROTTAL})

TARHIM_PRAYERS = (FAJR, ISHA)
BEEP_TOLERANCE = timedelta(seconds=1)

PLAY = "play"
PAUSE = "pause"
RESUME = "resume"
STOP = "stop"


@dataclass(frozen=True)
class AudioTrigger:
    kind: str
    prayer: str
    start: datetime
    end: datetime
    source: str
    include_start: bool = True
    include_end: bool = True

    @property
    def key(self) -> tuple:
        return self.kind, self.prayer

    def contains(self, now: datetime) -> bool:
        after_start = now >= self.start if self.include_start else now > self.start
        before_end = now <= self.end if self.include_end else now < self.end
        return after_start and before_end

    def describe(self) -> dict:
        return {
            "kind": self.kind,
            "prayer": self.prayer,
            "source": self.source,
            "window_start": self.start.isoformat(),
            "window_end": self.end.isoformat(),
        }


@dataclass(frozen=True)
class Command:
    action: str
    source: Optional[str] = None
    position: float = 0.0


@dataclass(frozen=True)
class PausedMurottal:
    trigger: AudioTrigger
    source: str
    position: float
    interrupted_by: tuple

    @property
    def resumable(self) -> bool:
        return self.interrupted_by[0] == IMSAK_BEEP


@dataclass(frozen=True)
class PlaybackState:
    day: Optional[str] = None
    active: Optional[AudioTrigger] = None
    paused: Optional[PausedMurottal] = None
    played_today: frozenset = field(default_factory=frozenset)
    suppressed: frozenset = field(default_factory=frozenset)


# ---------------- trigger resolution ----------------
def _adhan_label(schedule: PrayerSchedule, prayer: str) -> str:
    return schedule.midday_name if prayer == DHUHR else prayer


def iter_triggers(schedule: PrayerSchedule, settings: Settings, murottal_allowed: bool = True) -> Iterator[AudioTrigger]:
    """Yield every configured trigger for the day in priority order."""
    audio = settings.audio
    ramadan = settings.ramadan.enabled

    imsak = schedule.get(IMSAK)
    if ramadan and audio.imsak_beep_url and imsak:
        yield AudioTrigger(IMSAK_BEEP, IMSAK, imsak - BEEP_TOLERANCE, imsak + BEEP_TOLERANCE, audio.imsak_beep_url)

    tarhim = settings.tarhim
    if tarhim.enabled and tarhim.url:
        for prayer in TARHIM_PRAYERS:
            t = schedule.adhan_time(prayer)
            if t:
                yield AudioTrigger(
                    TARHIM, prayer, t - timedelta(seconds=tarhim.lead_seconds), t, tarhim.url,
                    include_end=False,
                )

    if audio.adhan_beep_url:
        for prayer in ADHAN_PRAYERS:
            t = schedule.adhan_time(prayer)
            if t:
                yield AudioTrigger(
                    ADHAN_BEEP, _adhan_label(schedule, prayer),
                    t - BEEP_TOLERANCE, t + BEEP_TOLERANCE, audio.adhan_beep_url,
                )

    if audio.iqomah_beep_url:
        delay = timedelta(seconds=audio.adhan_duration_seconds + audio.iqomah_countdown_seconds)
        for prayer in ADHAN_PRAYERS:
            if prayer == DHUHR and schedule.is_friday:
                continue  # no Iqomah during Jumuah
            t = schedule.adhan_time(prayer)
            if t:
                at = t + delay
                yield AudioTrigger(IQOMAH_BEEP, prayer, at - BEEP_TOLERANCE, at + BEEP_TOLERANCE, audio.iqomah_beep_url)

    murottal = settings.murottal
    if murottal_allowed and murottal.enabled:
        for slot in MUROTTAL_SLOTS:
            if slot == "imsak" and not ramadan:
                continue
            source = murottal.source_for(slot)
            if not source or not murottal.slot_enabled(slot):
                continue
            name = schedule.slot_name(slot)
            t = schedule.get(name)
            if t:
                lead = timedelta(minutes=murottal.lead_minutes(slot))
                yield AudioTrigger(MUROTTAL, name, t - lead, t, source, include_start=False)


def select_trigger(now: datetime, schedule: PrayerSchedule, settings: Settings,
                   state: PlaybackState) -> Optional[AudioTrigger]:
    """First eligible trigger in priority order, or None."""
    active_key = state.active.key if state.active else None
    # a Murottal paused by the Imsak beep waits for its resume
    murottal_allowed = state.paused is None or not state.paused.resumable

    for trigger in iter_triggers(schedule, settings, murottal_allowed):
        if not trigger.contains(now):
            continue
        if (trigger.key, trigger.start) in state.suppressed:
            continue
        if trigger.kind in PLAYED_ONCE and trigger.key in state.played_today and trigger.key != active_key:
            continue
        return trigger
    return None


def audio_enabled(settings: Optional[Settings]) -> bool:
    return settings is not None and settings.audio.master_enabled


def _murottal_still_allowed(trigger: AudioTrigger, schedule: PrayerSchedule, settings: Settings) -> bool:
    murottal = settings.murottal
    if not murottal.enabled:
        return False
    for slot in MUROTTAL_SLOTS:
        if schedule.slot_name(slot) == trigger.prayer:
            return murottal.slot_enabled(slot) and murottal.source_for(slot) == trigger.source
    return False


def _resume(state: PlaybackState, schedule: PrayerSchedule, settings: Settings) -> tuple:
    paused = state.paused
    if not _murottal_still_allowed(paused.trigger, schedule, settings):
        return replace(state, active=None, paused=None), [Command(STOP)]
    return replace(state, active=paused.trigger, paused=None), [
        Command(RESUME, paused.source, paused.position)
    ]


# ---------------- decision ----------------
def evaluate(now: datetime, schedule: Optional[PrayerSchedule], settings: Optional[Settings],
             state: PlaybackState, position: float = 0.0) -> tuple:
    """Decide this tick's audio. Returns ``(new_state, [Command, ...])``.

    ``position`` is the driver's current playback position in seconds; it is
    captured when an active Murottal gets interrupted.
    """
    day = now.strftime("%Y-%m-%d")
    if state.day != day:
        state = replace(state, day=day, paused=None, played_today=frozenset(), suppressed=frozenset())

    if not audio_enabled(settings) or schedule is None:
        if state.active is not None or state.paused is not None:
            return replace(state, active=None, paused=None), [Command(STOP)]
        return state, []

    active = state.active
    winner = select_trigger(now, schedule, settings, state)

    if winner is not None:
        if active is not None and winner.key == active.key:
            return state, []

        commands = []
        paused = state.paused
        if winner.kind == MUROTTAL:
            paused = None
        elif active is not None and active.kind == MUROTTAL:
            paused = PausedMurottal(active, active.source, position, winner.key)
            commands.append(Command(PAUSE))
        elif paused is not None and (active is None or paused.interrupted_by == active.key):
            paused = replace(paused, interrupted_by=winner.key)
        commands.append(Command(PLAY, winner.source))

        played = state.played_today
        if winner.kind in PLAYED_ONCE:
            played = played | {winner.key}
        return replace(state, active=winner, paused=paused, played_today=played), commands

    paused = state.paused
    if active is None:
        if paused is not None and paused.resumable:
            # the Imsak beep finished or failed before its window closed
            return _resume(state, schedule, settings)
        return state, []

    if active.kind == IMSAK_BEEP and paused is not None and paused.interrupted_by == active.key:
        return _resume(state, schedule, settings)

    if active.kind == MUROTTAL:
        # the window only gates the start; the recitation plays out
        if _murottal_still_allowed(active, schedule, settings):
            return state, []
        return replace(state, active=None), [Command(STOP)]

    commands = [] if paused is not None else [Command(STOP)]
    return replace(state, active=None), commands


def _deselect(state: PlaybackState, source: str) -> PlaybackState:
    active = state.active
    if active is None or active.source != source:
        return state
    return replace(state, active=None, suppressed=state.suppressed | {(active.key, active.start)})


def on_failure(state: PlaybackState, source: str) -> PlaybackState:
    """Drop the active trigger whose source failed; it is not retried this window."""
    return _deselect(state, source)


def on_finished(state: PlaybackState, source: str) -> PlaybackState:
    """A clip that ended on its own is not replayed within the same window."""
    return _deselect(state, source)


class AudioScheduler:
    """Owns ``PlaybackState`` and sends each tick's commands to the driver."""

    def __init__(self, driver, notify: Optional[Callable[[str], None]] = None):
        self.driver = driver
        self.notify = notify
        self.state = PlaybackState()
        self._lock = threading.RLock()

        driver.on_failure = self.handle_failure
        driver.on_finished = self.handle_finished

    def tick(self, now: datetime, schedule: Optional[PrayerSchedule], settings: Optional[Settings]) -> list:
        with self._lock:
            active = self.state.active
            position = self.driver.position() if active is not None and active.kind == MUROTTAL else 0.0
            previous = self.state
            self.state, commands = evaluate(now, schedule, settings, self.state, position)

            if previous.day is not None and previous.day != self.state.day:
                logger.info(f"[AUDIO] New day {self.state.day}; played set cleared")

            for command in commands:
                self._dispatch(command)
        return commands

    def handle_failure(self, source: str, reason: str) -> None:
        with self._lock:
            active = self.state.active
            self.state = on_failure(self.state, source)
            if active is self.state.active:
                logger.debug(f"[AUDIO] Ignoring failure for inactive source {source}")
                return

        message = f"Playback failed for {active.kind} ({active.prayer}): {reason}"
        logger.warning(f"[AUDIO] {message}")
        log_event("failure", active.kind, active.prayer, source, detail=reason)
        if self.notify:
            try:
                self.notify(message)
            except Exception as e:
                logger.error(f"[AUDIO] Notification hook failed: {e}")

    def handle_finished(self, source: str) -> None:
        with self._lock:
            active = self.state.active
            self.state = on_finished(self.state, source)
            if active is self.state.active:
                return
        logger.info(f"[AUDIO] Finished {active.kind} ({active.prayer})")
        log_event("finished", active.kind, active.prayer, source)

    def stop_current(self) -> bool:
        """Manual stop: silence the active clip for the rest of its window."""
        with self._lock:
            state = self.state
            if state.active is None and state.paused is None:
                return False
            if state.active is not None:
                state = _deselect(state, state.active.source)
            self.state = replace(state, paused=None)
            self._dispatch(Command(STOP))
        return True

    def shutdown(self) -> None:
        with self._lock:
            self.state = replace(self.state, active=None, paused=None)
            self._dispatch(Command(STOP))

    def snapshot(self) -> dict:
        with self._lock:
            state = self.state
        paused = state.paused
        return {
            "active": state.active.describe() if state.active else None,
            "paused": {
                "prayer": paused.trigger.prayer,
                "source": paused.source,
                "position": round(paused.position, 1),
                "interrupted_by": list(paused.interrupted_by),
            } if paused else None,
            "played_today": sorted(f"{kind}:{prayer}" for kind, prayer in state.played_today),
        }

    def _dispatch(self, command: Command) -> None:
        active = self.state.active
        kind = active.kind if active else ""
        prayer = active.prayer if active else ""
        logger.info(f"[AUDIO] {command.action.upper()} {kind} {prayer} {command.source or ''}".rstrip())
        log_event(command.action, kind, prayer, command.source, position=command.position)

        try:
            if command.action == PLAY:
                self.driver.play(command.source)
            elif command.action == PAUSE:
                self.driver.pause()
            elif command.action == RESUME:
                self.driver.resume(command.source, command.position)
            elif command.action == STOP:
                self.driver.stop()
        except Exception as e:
            if command.source:
                # handle_failure re-enters the lock (RLock)
                self.handle_failure(command.source, str(e))
            else:
                logger.error(f"[AUDIO] Driver {command.action} failed: {e}")
