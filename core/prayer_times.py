"""
Daily prayer schedule: raw times from an external calculator, adjusted by
the configured per-prayer offsets.

Two providers are available: ``local`` computes with adhanpy, ``aladhan``
asks the Aladhan HTTP API. Both return naive local datetimes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from adhanpy.PrayerTimes import PrayerTimes
from adhanpy.calculation import CalculationMethod

from core.errors import InvalidSchedule
from core.settings import LocationSettings, OffsetSettings, Settings
from utils.prayer_api import get_prayer_times

IMSAK = "Imsak"
FAJR = "Fajr"
SUNRISE = "Sunrise"
DHUHR = "Dhuhr"
JUMUAH = "Jumuah"
ASR = "Asr"
MAGHRIB = "Maghrib"
ISHA = "Isha"

# The five prayers with an Adhan. On Friday the Dhuhr slot is held by Jumuah.
ADHAN_PRAYERS = (FAJR, DHUHR, ASR, MAGHRIB, ISHA)

IMSAK_BEFORE_FAJR = timedelta(minutes=10)

METHOD_NAMES = {
    "MuslimWorldLeague": "MUSLIM_WORLD_LEAGUE",
    "Egyptian": "EGYPTIAN",
    "Karachi": "KARACHI",
    "UmmAlQura": "UMM_AL_QURA",
    "Dubai": "DUBAI",
    "MoonsightingCommittee": "MOON_SIGHTING_COMMITTEE",
    "NorthAmerica": "NORTH_AMERICA",
    "Kuwait": "KUWAIT",
    "Qatar": "QATAR",
    "Singapore": "SINGAPORE",
}

OFFSET_FIELDS = {FAJR: "fajr", DHUHR: "dhuhr", ASR: "asr", MAGHRIB: "maghrib", ISHA: "isha"}


@dataclass(frozen=True)
class PrayerSchedule:
    """One calendar day of prayer timestamps. Missing prayers are absent."""

    day: date
    times: dict = field(default_factory=dict)

    @property
    def is_friday(self) -> bool:
        return self.day.weekday() == 4

    @property
    def midday_name(self) -> str:
        return JUMUAH if self.is_friday else DHUHR

    def get(self, name: str) -> Optional[datetime]:
        return self.times.get(name)

    def adhan_time(self, prayer: str) -> Optional[datetime]:
        """Adhan time of a canonical prayer; Dhuhr resolves to Jumuah on Friday."""
        if prayer == DHUHR:
            return self.times.get(self.midday_name)
        return self.times.get(prayer)

    def slot_name(self, slot: str) -> str:
        """Map a lowercase settings slot (``fajr``, ``dhuhr``...) to its schedule name."""
        if slot == "dhuhr":
            return self.midday_name
        return slot.capitalize()

    def ordered(self) -> list:
        return sorted(self.times.items(), key=lambda item: item[1])

    def as_dict(self) -> dict:
        return {name: t.strftime("%H:%M:%S") for name, t in self.ordered()}


# ---------------- providers ----------------
def _zone(name: str) -> Optional[ZoneInfo]:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logging.warning(f"[PRAYER] Unknown timezone {name!r}; using system local time")
        return None


def _method(name: str):
    method = getattr(CalculationMethod, METHOD_NAMES.get(name, ""), None)
    if method is None:
        logging.warning(f"[PRAYER] Unsupported calculation method {name!r}; using MuslimWorldLeague")
        method = CalculationMethod.MUSLIM_WORLD_LEAGUE
    return method


def local_prayer_times(location: LocationSettings, day: date) -> dict:
    """Compute raw prayer times with adhanpy."""
    tz = _zone(location.timezone)
    pt = PrayerTimes(
        (location.latitude, location.longitude),
        datetime(day.year, day.month, day.day),
        _method(location.calculation_method),
        time_zone=tz,
    )

    def local(dt: datetime) -> datetime:
        if dt.tzinfo is None:
            return dt
        return dt.astimezone(tz).replace(tzinfo=None)

    return {
        FAJR: local(pt.fajr),
        SUNRISE: local(pt.sunrise),
        DHUHR: local(pt.dhuhr),
        ASR: local(pt.asr),
        MAGHRIB: local(pt.maghrib),
        ISHA: local(pt.isha),
    }


def aladhan_prayer_times(location: LocationSettings, day: date) -> dict:
    return get_prayer_times(location.latitude, location.longitude, location.calculation_method, day)


PROVIDERS = {
    "local": local_prayer_times,
    "aladhan": aladhan_prayer_times,
}


# ---------------- schedule building ----------------
def _validated(name: str, value, day: date) -> datetime:
    if not isinstance(value, datetime):
        raise InvalidSchedule(f"{name} has no usable timestamp ({value!r})")
    if value.tzinfo is not None:
        raise InvalidSchedule(f"{name} timestamp must be local time, got {value.isoformat()}")
    if abs((value.date() - day).days) > 1:
        raise InvalidSchedule(f"{name} timestamp {value.isoformat()} is not on {day}")
    return value


def build_schedule(raw: dict, offsets: OffsetSettings, day: date) -> PrayerSchedule:
    """Apply offsets, derive Imsak and relabel Friday's Dhuhr.

    A prayer whose raw timestamp is missing or malformed is left out of the
    day's schedule; the others still stand.
    """
    times = {}
    raw_fajr = None

    for name in (FAJR, SUNRISE, DHUHR, ASR, MAGHRIB, ISHA):
        try:
            value = _validated(name, raw.get(name), day)
        except InvalidSchedule as e:
            logging.warning(f"[PRAYER] Dropping {name} for {day}: {e}")
            continue

        if name == FAJR:
            raw_fajr = value
        offset_field = OFFSET_FIELDS.get(name)
        if offset_field:
            value = value + timedelta(minutes=getattr(offsets, offset_field))
        times[name] = value

    if raw_fajr is not None:
        times[IMSAK] = raw_fajr - IMSAK_BEFORE_FAJR + timedelta(minutes=offsets.imsak)

    if day.weekday() == 4 and DHUHR in times:
        times[JUMUAH] = times.pop(DHUHR)

    return PrayerSchedule(day=day, times=times)


class PrayerTimeCalculator:
    """Produces the day's ``PrayerSchedule`` from settings.

    The last result is cached per (settings, day) so repeated ticks do not
    hit the provider.
    """

    def __init__(self, providers: Optional[dict] = None):
        self.providers: dict[str, Callable[[LocationSettings, date], dict]] = dict(providers or PROVIDERS)
        self._cache_key = None
        self._cached: Optional[PrayerSchedule] = None

    def calculate(self, settings: Settings, day: date) -> PrayerSchedule:
        key = (settings.location, settings.offsets, day)
        if self._cached is not None and self._cache_key == key:
            return self._cached

        provider = self.providers[settings.location.provider]
        raw = provider(settings.location, day)
        schedule = build_schedule(raw, settings.offsets, day)

        if schedule.times:
            # empty results (provider offline) are not cached so the next call retries
            self._cache_key, self._cached = key, schedule
            logging.info(f"[PRAYER] Schedule for {day}: {schedule.as_dict()}")
        else:
            logging.warning(f"[PRAYER] No prayer times available for {day}")
        return schedule


# ---------------- display helpers ----------------
def next_prayer(schedule: PrayerSchedule, now: datetime, include_imsak: bool = True):
    """Next upcoming (name, datetime); after the last prayer, tomorrow's first."""
    entries = [(n, t) for n, t in schedule.ordered() if include_imsak or n != IMSAK]
    if not entries:
        return None
    for name, t in entries:
        if t > now:
            return name, t
    name, t = entries[0]
    return name, t + timedelta(days=1)


def current_prayer(schedule: PrayerSchedule, now: datetime, include_imsak: bool = True) -> Optional[str]:
    entries = [(n, t) for n, t in schedule.ordered() if include_imsak or n != IMSAK]
    if not entries:
        return None
    current = entries[-1][0]  # before the first prayer we are still in last night's Isha
    for name, t in entries:
        if t <= now:
            current = name
    return current


def format_hms(remaining: timedelta) -> str:
    total = max(0, int(remaining.total_seconds()))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
