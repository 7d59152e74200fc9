"""
Strict settings snapshot and the stores that publish it.

The display host (admin dashboard, realtime transport) is abstracted behind
``SettingsStore.on_settings_changed``. Each handler receives the full
``Settings`` snapshot, never a partial diff.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field, fields
from typing import Callable, Optional

from core.errors import InvalidSettings, SettingsUnavailable
from utils.config_loader import load_config

logger = logging.getLogger(__name__)

MUROTTAL_SLOTS = ("imsak", "fajr", "dhuhr", "asr", "maghrib", "isha")
OFFSET_KEYS = ("fajr", "dhuhr", "asr", "maghrib", "isha", "imsak")
PROVIDERS = ("local", "aladhan")
# adhanpy has no parameters for these; the Aladhan API does
ALADHAN_ONLY_METHODS = ("Tehran", "Turkey")


@dataclass(frozen=True)
class LocationSettings:
    latitude: float = -6.2088
    longitude: float = 106.8456
    timezone: str = "Asia/Jakarta"
    calculation_method: str = "MuslimWorldLeague"
    provider: str = "local"


@dataclass(frozen=True)
class OffsetSettings:
    """Signed minutes added to each calculated prayer time."""
    fajr: int = 0
    dhuhr: int = 0
    asr: int = 0
    maghrib: int = 0
    isha: int = 0
    imsak: int = 0


@dataclass(frozen=True)
class AudioSettings:
    # A false master flag silences every trigger regardless of other flags.
    master_enabled: bool = True
    adhan_beep_url: Optional[str] = None
    adhan_duration_seconds: int = 90
    iqomah_beep_url: Optional[str] = None
    iqomah_countdown_seconds: int = 300
    imsak_beep_url: Optional[str] = None


@dataclass(frozen=True)
class MurottalSlot:
    enabled: bool = True
    pre_adhan_minutes: Optional[int] = None


@dataclass(frozen=True)
class MurottalSettings:
    enabled: bool = False
    pre_adhan_minutes: int = 10
    sources: dict = field(default_factory=lambda: {slot: None for slot in MUROTTAL_SLOTS})
    slots: dict = field(default_factory=lambda: {slot: MurottalSlot() for slot in MUROTTAL_SLOTS})

    def source_for(self, slot: str) -> Optional[str]:
        return self.sources.get(slot)

    def slot_enabled(self, slot: str) -> bool:
        return self.slots.get(slot, MurottalSlot()).enabled

    def lead_minutes(self, slot: str) -> int:
        override = self.slots.get(slot, MurottalSlot()).pre_adhan_minutes
        return self.pre_adhan_minutes if override is None else override


@dataclass(frozen=True)
class TarhimSettings:
    enabled: bool = False
    url: Optional[str] = None
    lead_seconds: int = 300


@dataclass(frozen=True)
class RamadanSettings:
    enabled: bool = False


@dataclass(frozen=True)
class JumuahSettings:
    khutbah_duration_minutes: int = 45
    lead_seconds: int = 300
    adhan_duration_seconds: int = 90


@dataclass(frozen=True)
class OverlaySettings:
    pre_adhan_seconds: int = 30
    imsak_seconds: int = 10


@dataclass(frozen=True)
class Settings:
    location: LocationSettings = field(default_factory=LocationSettings)
    offsets: OffsetSettings = field(default_factory=OffsetSettings)
    audio: AudioSettings = field(default_factory=AudioSettings)
    murottal: MurottalSettings = field(default_factory=MurottalSettings)
    tarhim: TarhimSettings = field(default_factory=TarhimSettings)
    ramadan: RamadanSettings = field(default_factory=RamadanSettings)
    jumuah: JumuahSettings = field(default_factory=JumuahSettings)
    overlay: OverlaySettings = field(default_factory=OverlaySettings)

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> "Settings":
        """Build a snapshot from a nested mapping (e.g. parsed ``config.yml``).

        Missing fields take their documented default. Unknown keys are
        logged and ignored. Values of the wrong type raise ``InvalidSettings``.
        """
        raw = _mapping(raw or {}, "settings")
        sections = {
            "location": (LocationSettings, _parse_simple),
            "offsets": (OffsetSettings, _parse_simple),
            "audio": (AudioSettings, _parse_simple),
            "murottal": (MurottalSettings, _parse_murottal),
            "tarhim": (TarhimSettings, _parse_simple),
            "ramadan": (RamadanSettings, _parse_simple),
            "jumuah": (JumuahSettings, _parse_simple),
            "overlay": (OverlaySettings, _parse_simple),
        }
        _warn_unknown(raw, sections, "settings")

        values = {}
        for name, (section_cls, parser) in sections.items():
            values[name] = parser(section_cls, _mapping(raw.get(name) or {}, name), name)

        location = values["location"]
        if location.provider not in PROVIDERS:
            raise InvalidSettings(
                f"location.provider must be one of {', '.join(PROVIDERS)}, got {location.provider!r}"
            )
        if location.provider == "local" and location.calculation_method in ALADHAN_ONLY_METHODS:
            raise InvalidSettings(
                f"location.calculation_method {location.calculation_method!r} is only available "
                f"with provider 'aladhan'"
            )
        return cls(**values)


# ---------------- parsing helpers ----------------
def _mapping(value, where: str) -> dict:
    if not isinstance(value, dict):
        raise InvalidSettings(f"{where} must be a mapping, got {type(value).__name__}")
    return value


def _warn_unknown(raw: dict, known, where: str) -> None:
    for key in raw:
        if key not in known:
            logger.warning(f"[SETTINGS] Ignoring unknown key {where}.{key}")


def _coerce(value, default, where: str):
    """Coerce ``value`` to the type implied by the field's default."""
    if value is None:
        if default is None:
            return None
        raise InvalidSettings(f"{where} may not be empty")

    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false", "yes", "no", "on", "off"):
            return value.lower() in ("true", "yes", "on")
        raise InvalidSettings(f"{where} must be a boolean, got {value!r}")

    if isinstance(default, int):
        if isinstance(value, bool):
            raise InvalidSettings(f"{where} must be an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise InvalidSettings(f"{where} must be an integer, got {value!r}") from None

    if isinstance(default, float):
        if isinstance(value, bool):
            raise InvalidSettings(f"{where} must be a number, got {value!r}")
        try:
            return float(value)
        except (TypeError, ValueError):
            raise InvalidSettings(f"{where} must be a number, got {value!r}") from None

    # strings and optional URLs
    if not isinstance(value, str):
        raise InvalidSettings(f"{where} must be a string, got {value!r}")
    value = value.strip()
    if default is None and not value:
        return None
    return value


def _parse_simple(section_cls, raw: dict, where: str):
    defaults = section_cls()
    known = {f.name for f in fields(section_cls)}
    _warn_unknown(raw, known, where)

    values = {}
    for name in known:
        if name in raw:
            values[name] = _coerce(raw[name], getattr(defaults, name), f"{where}.{name}")
    return section_cls(**values)


def _parse_murottal(section_cls, raw: dict, where: str):
    _warn_unknown(raw, {"enabled", "pre_adhan_minutes", "sources", "slots"}, where)
    defaults = section_cls()

    sources = dict(defaults.sources)
    raw_sources = _mapping(raw.get("sources") or {}, f"{where}.sources")
    _warn_unknown(raw_sources, MUROTTAL_SLOTS, f"{where}.sources")
    for slot in MUROTTAL_SLOTS:
        if slot in raw_sources:
            sources[slot] = _coerce(raw_sources[slot], None, f"{where}.sources.{slot}")

    slots = dict(defaults.slots)
    raw_slots = _mapping(raw.get("slots") or {}, f"{where}.slots")
    _warn_unknown(raw_slots, MUROTTAL_SLOTS, f"{where}.slots")
    for slot in MUROTTAL_SLOTS:
        if slot not in raw_slots:
            continue
        slot_raw = _mapping(raw_slots[slot] or {}, f"{where}.slots.{slot}")
        _warn_unknown(slot_raw, ("enabled", "pre_adhan_minutes"), f"{where}.slots.{slot}")
        minutes = slot_raw.get("pre_adhan_minutes")
        slots[slot] = MurottalSlot(
            enabled=_coerce(slot_raw.get("enabled", True), True, f"{where}.slots.{slot}.enabled"),
            pre_adhan_minutes=None if minutes is None else _coerce(
                minutes, 0, f"{where}.slots.{slot}.pre_adhan_minutes"
            ),
        )

    return section_cls(
        enabled=_coerce(raw.get("enabled", defaults.enabled), defaults.enabled, f"{where}.enabled"),
        pre_adhan_minutes=_coerce(
            raw.get("pre_adhan_minutes", defaults.pre_adhan_minutes),
            defaults.pre_adhan_minutes,
            f"{where}.pre_adhan_minutes",
        ),
        sources=sources,
        slots=slots,
    )


# ---------------- stores ----------------
SettingsHandler = Callable[[Settings], None]


class SettingsStore:
    """Holds the current snapshot and notifies observers when it changes."""

    def __init__(self):
        self._handlers: list[SettingsHandler] = []
        self._lock = threading.Lock()

    def load(self) -> Settings:
        raise NotImplementedError

    def on_settings_changed(self, handler: SettingsHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def start(self) -> None:
        """Begin watching for changes. No-op for stores that are pushed to."""

    def stop(self) -> None:
        pass

    def _publish(self, snapshot: Settings) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(snapshot)
            except Exception as e:
                logger.error(f"[SETTINGS] Change handler failed: {e}", exc_info=True)


class MemorySettingsStore(SettingsStore):
    """Store fed directly by the host, e.g. from a realtime subscription."""

    def __init__(self, snapshot: Optional[Settings] = None):
        super().__init__()
        self._snapshot = snapshot

    def load(self) -> Settings:
        if self._snapshot is None:
            raise SettingsUnavailable("No settings have been published yet")
        return self._snapshot

    def update(self, snapshot) -> Settings:
        if isinstance(snapshot, dict):
            snapshot = Settings.from_dict(snapshot)
        self._snapshot = snapshot
        self._publish(snapshot)
        return snapshot


class YamlSettingsStore(SettingsStore):
    """Settings read from ``config.yml``; a watcher thread republishes on edit.

    A file that fails to load keeps the last-known-good snapshot. Only the
    first failure of a streak is logged as a warning.
    """

    def __init__(self, path: str = "config.yml", poll_interval: float = 5.0):
        super().__init__()
        self.path = path
        self.poll_interval = poll_interval
        self._last_good: Optional[Settings] = None
        self._last_mtime: Optional[float] = None
        self._failing = False
        self._stop_flag = threading.Event()
        self._watcher: Optional[threading.Thread] = None

    def load(self) -> Settings:
        try:
            snapshot = Settings.from_dict(load_config(self.path))
        except SettingsUnavailable as e:
            if not self._failing:
                logger.warning(f"[SETTINGS] {e}")
            self._failing = True
            if self._last_good is not None:
                return self._last_good
            raise

        if self._failing:
            logger.info("[SETTINGS] Settings readable again")
        self._failing = False
        self._last_good = snapshot
        return snapshot

    def start(self) -> None:
        if self._watcher and self._watcher.is_alive():
            return
        self._stop_flag.clear()
        self._last_mtime = self._mtime()
        self._watcher = threading.Thread(target=self._watch_loop, name="SettingsWatcher", daemon=True)
        self._watcher.start()
        logger.info(f"[SETTINGS] Watching {self.path}")

    def stop(self) -> None:
        self._stop_flag.set()
        if self._watcher and self._watcher.is_alive():
            self._watcher.join(timeout=self.poll_interval + 1)
        self._watcher = None

    def check_for_changes(self) -> bool:
        """Reload and publish if the file changed since the last check."""
        mtime = self._mtime()
        if mtime is None or mtime == self._last_mtime:
            return False
        self._last_mtime = mtime

        previous = self._last_good
        try:
            snapshot = self.load()
        except SettingsUnavailable:
            return False
        if snapshot is previous:
            # load() fell back to the last-known-good snapshot
            return False

        logger.info(f"[SETTINGS] {self.path} changed; publishing new snapshot")
        self._publish(snapshot)
        return True

    def _mtime(self) -> Optional[float]:
        try:
            return os.path.getmtime(self.path)
        except OSError:
            return None

    def _watch_loop(self) -> None:
        while not self._stop_flag.is_set():
            try:
                self.check_for_changes()
            except Exception as e:
                logger.error(f"[SETTINGS] Watcher failure: {e}", exc_info=True)
            self._stop_flag.wait(self.poll_interval)
