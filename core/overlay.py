"""
Full-screen overlay phases.

Three families share one phase function and differ only in their lead and
duration windows:

* REGULAR: the five daily prayers (never Sunrise, never Friday's Jumuah slot)
* JUMUAH: Friday's midday prayer, Khutbah instead of Iqomah
* IMSAK: a short flash at Imsak during Ramadan

Families are checked Imsak -> Jumuah -> Regular and the first visible one
wins, so at most one overlay is shown per tick.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from core.prayer_times import ADHAN_PRAYERS, DHUHR, IMSAK, JUMUAH, PrayerSchedule
from core.settings import Settings

logger = logging.getLogger(__name__)


class OverlayPhase(str, Enum):
    HIDDEN = "hidden"
    PRE_ADHAN = "pre-adhan"
    ADHAN = "adhan"
    IQOMAH = "iqomah"
    KHUTBAH = "khutbah"
    SHOWN = "shown"


class OverlayFamily(str, Enum):
    IMSAK = "imsak"
    JUMUAH = "jumuah"
    REGULAR = "regular"


@dataclass(frozen=True)
class OverlayStatus:
    family: OverlayFamily
    phase: OverlayPhase = OverlayPhase.HIDDEN
    prayer: Optional[str] = None
    countdown: str = ""
    ends_at: Optional[datetime] = None

    @property
    def visible(self) -> bool:
        return self.phase != OverlayPhase.HIDDEN

    def as_dict(self) -> dict:
        return {
            "family": self.family.value,
            "phase": self.phase.value,
            "prayer": self.prayer,
            "countdown": self.countdown,
            "ends_at": self.ends_at.isoformat() if self.ends_at else None,
        }


def format_mmss(remaining: timedelta) -> str:
    total = max(0, int(remaining.total_seconds()))
    minutes, seconds = divmod(total, 60)
    return f"{minutes:02d}:{seconds:02d}"


def phase_at(now: datetime, adhan: datetime, lead: timedelta, adhan_duration: timedelta,
             after: timedelta, after_phase: OverlayPhase = OverlayPhase.IQOMAH) -> tuple:
    """Phase for one prayer at ``now``: ``(phase, countdown, phase_end)``.

    Windows are half-open and contiguous:
    [T-L, T) pre-adhan, [T, T+D) adhan, [T+D, T+D+C) iqomah or khutbah.
    """
    adhan_end = adhan + adhan_duration
    after_end = adhan_end + after

    if adhan - lead <= now < adhan:
        return OverlayPhase.PRE_ADHAN, format_mmss(adhan - now), adhan
    if adhan <= now < adhan_end:
        return OverlayPhase.ADHAN, "", adhan_end
    if adhan_end <= now < after_end:
        return after_phase, format_mmss(after_end - now), after_end
    return OverlayPhase.HIDDEN, "", None


def imsak_status(now: datetime, schedule: PrayerSchedule, settings: Settings) -> OverlayStatus:
    hidden = OverlayStatus(OverlayFamily.IMSAK)
    imsak = schedule.get(IMSAK)
    if not settings.ramadan.enabled or imsak is None:
        return hidden

    end = imsak + timedelta(seconds=settings.overlay.imsak_seconds)
    if imsak <= now < end:
        return OverlayStatus(OverlayFamily.IMSAK, OverlayPhase.SHOWN, IMSAK, format_mmss(end - now), end)
    return hidden


def jumuah_status(now: datetime, schedule: PrayerSchedule, settings: Settings) -> OverlayStatus:
    hidden = OverlayStatus(OverlayFamily.JUMUAH)
    jumuah = schedule.get(JUMUAH)
    if not schedule.is_friday or jumuah is None:
        return hidden

    cfg = settings.jumuah
    phase, countdown, ends_at = phase_at(
        now,
        jumuah,
        timedelta(seconds=cfg.lead_seconds),
        timedelta(seconds=cfg.adhan_duration_seconds),
        timedelta(minutes=cfg.khutbah_duration_minutes),
        after_phase=OverlayPhase.KHUTBAH,
    )
    if phase == OverlayPhase.HIDDEN:
        return hidden
    return OverlayStatus(OverlayFamily.JUMUAH, phase, JUMUAH, countdown, ends_at)


def regular_status(now: datetime, schedule: PrayerSchedule, settings: Settings) -> OverlayStatus:
    lead = timedelta(seconds=settings.overlay.pre_adhan_seconds)
    adhan_duration = timedelta(seconds=settings.audio.adhan_duration_seconds)
    iqomah = timedelta(seconds=settings.audio.iqomah_countdown_seconds)

    for prayer in ADHAN_PRAYERS:
        if prayer == DHUHR and schedule.is_friday:
            continue  # Jumuah family owns Friday's midday slot
        adhan = schedule.get(prayer)
        if adhan is None:
            continue
        phase, countdown, ends_at = phase_at(now, adhan, lead, adhan_duration, iqomah)
        if phase != OverlayPhase.HIDDEN:
            return OverlayStatus(OverlayFamily.REGULAR, phase, prayer, countdown, ends_at)
    return OverlayStatus(OverlayFamily.REGULAR)


FAMILY_ORDER = (
    (OverlayFamily.IMSAK, imsak_status),
    (OverlayFamily.JUMUAH, jumuah_status),
    (OverlayFamily.REGULAR, regular_status),
)


def evaluate_overlays(now: datetime, schedule: Optional[PrayerSchedule], settings: Optional[Settings]) -> dict:
    """Status for every family; at most one of them is visible."""
    statuses = {family: OverlayStatus(family) for family, _ in FAMILY_ORDER}
    if schedule is None or settings is None:
        return statuses

    for family, status_fn in FAMILY_ORDER:
        status = status_fn(now, schedule, settings)
        if status.visible:
            statuses[family] = status
            break
    return statuses


class OverlayStateMachine:
    """Tracks the visible overlay across ticks and reports when it closes."""

    def __init__(self, on_close: Optional[Callable[[OverlayStatus], None]] = None):
        self.on_close = on_close
        self.statuses = evaluate_overlays(datetime.min, None, None)
        self._lock = threading.Lock()

    @property
    def visible(self) -> Optional[OverlayStatus]:
        for status in self.statuses.values():
            if status.visible:
                return status
        return None

    def tick(self, now: datetime, schedule: Optional[PrayerSchedule], settings: Optional[Settings]) -> dict:
        statuses = evaluate_overlays(now, schedule, settings)
        with self._lock:
            previous = self.visible
            self.statuses = statuses
            current = self.visible

        if previous is not None and (current is None or
                                     (current.family, current.prayer) != (previous.family, previous.prayer)):
            logger.info(f"[OVERLAY] Closed {previous.family.value} overlay ({previous.prayer})")
            if self.on_close:
                self.on_close(previous)

        if current is not None and (previous is None or current.phase != previous.phase):
            logger.info(f"[OVERLAY] {current.family.value} -> {current.phase.value} ({current.prayer})")
        return statuses

    def snapshot(self) -> dict:
        with self._lock:
            return {family.value: status.as_dict() for family, status in self.statuses.items()}
