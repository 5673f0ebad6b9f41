"""Display settings snapshot: location, calculation method, offsets and audio windows."""

import dataclasses
import enum
import functools
import logging
import types
from typing import Any, Mapping, Optional

import pytz

logger = logging.getLogger(__name__)

DEFAULT_LOCATION = {
    "city": "Jakarta",
    "region": "Jakarta",
    "country": "ID",
    "lat": -6.2088,
    "lon": 106.8456,
    "timezone": "Asia/Jakarta",
}

IQOMAH_SECONDS = 300
IMSAK_LEAD_MINUTES = 10
IMSAK_OVERLAY_SECONDS = 10
ADHAN_SECONDS = 90
PRE_ADHAN_SECONDS = 30
KHUTBAH_MINUTES = 45
MUROTTAL_LEAD_MINUTES = 10
TARHIM_LEAD_SECONDS = 300


class PrayerKind(enum.Enum):
    """The five daily prayers, declared in chronological order."""

    FAJR = "fajr"
    DHUHR = "dhuhr"
    ASR = "asr"
    MAGHRIB = "maghrib"
    ISHA = "isha"


PRAYER_ORDER = tuple(PrayerKind)

# Audio slot for the imsak lead-in; not part of the five-prayer cycle.
IMSAK = "imsak"
MUROTTAL_SLOTS = tuple(kind.value for kind in PrayerKind) + (IMSAK,)
TARHIM_SLOTS = tuple(kind.value for kind in PrayerKind)


class CalculationMethod(enum.Enum):
    """Astronomical parameter sets, keyed by the name stored in settings."""

    MUSLIM_WORLD_LEAGUE = "MuslimWorldLeague"
    EGYPTIAN = "Egyptian"
    KARACHI = "Karachi"
    UMM_AL_QURA = "UmmAlQura"
    MOON_SIGHTING_COMMITTEE = "MoonsightingCommittee"
    NORTH_AMERICA = "NorthAmerica"

    @classmethod
    def parse(cls, value: Any) -> Optional["CalculationMethod"]:
        """Return the method named by value, or None if it is missing or unknown."""
        if isinstance(value, cls):
            return value
        if not value:
            return None
        try:
            return cls(str(value).strip())
        except ValueError:
            logger.warning(f"Unknown calculation method {value!r}")
            return None


DEFAULT_METHOD = CalculationMethod.MUSLIM_WORLD_LEAGUE


@dataclasses.dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    def is_valid(self) -> bool:
        return -90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0


DEFAULT_COORDINATES = Coordinates(DEFAULT_LOCATION["lat"], DEFAULT_LOCATION["lon"])


@dataclasses.dataclass(frozen=True)
class DailyOffsets:
    """Signed minute shifts applied after the astronomical computation."""

    fajr: int = 0
    dhuhr: int = 0
    asr: int = 0
    maghrib: int = 0
    isha: int = 0
    imsak: int = 0

    def minutes(self, key: str) -> int:
        return getattr(self, key, 0)


@dataclasses.dataclass(frozen=True)
class AudioWindowSetting:
    active: bool = False
    lead_seconds: int = 0


INACTIVE_AUDIO = AudioWindowSetting()


@dataclasses.dataclass(frozen=True)
class Settings:
    """
    One immutable configuration snapshot.

    coordinates and method may be None when the remote row lacks them;
    the schedule resolver substitutes defaults. murottal and tarhim map an
    audio slot ("fajr" .. "isha", plus "imsak" for murottal) to its window.
    """

    coordinates: Optional[Coordinates] = DEFAULT_COORDINATES
    method: Optional[CalculationMethod] = DEFAULT_METHOD
    offsets: DailyOffsets = DailyOffsets()
    timezone: str = DEFAULT_LOCATION["timezone"]
    murottal: Mapping[str, AudioWindowSetting] = dataclasses.field(
        default_factory=lambda: types.MappingProxyType({})
    )
    tarhim: Mapping[str, AudioWindowSetting] = dataclasses.field(
        default_factory=lambda: types.MappingProxyType({})
    )
    iqomah_seconds: int = IQOMAH_SECONDS
    ramadan_mode: bool = False
    imsak_lead_minutes: int = IMSAK_LEAD_MINUTES
    imsak_overlay_seconds: int = IMSAK_OVERLAY_SECONDS
    master_audio_active: bool = True
    adhan_seconds: int = ADHAN_SECONDS
    pre_adhan_seconds: int = PRE_ADHAN_SECONDS
    khutbah_minutes: int = KHUTBAH_MINUTES
    version: int = 0

    def audio(self, audio_class: str, slot: str) -> AudioWindowSetting:
        """Window setting for an audio class ("murottal"/"tarhim") and slot."""
        windows = self.murottal if audio_class == "murottal" else self.tarhim
        return windows.get(slot, INACTIVE_AUDIO)

    def tz(self):
        return zone(self.timezone)


@functools.lru_cache(maxsize=32)
def zone(name: str):
    """pytz zone for name; unknown names map to the default zone, warned about once."""
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone {name!r}, using {DEFAULT_LOCATION['timezone']}")
        return pytz.timezone(DEFAULT_LOCATION["timezone"])


def _number(row: Mapping[str, Any], key: str, default=None):
    value = row.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric setting {key}={value!r}")
        return default


def _int(row: Mapping[str, Any], key: str, default: int) -> int:
    value = _number(row, key)
    if value is None:
        return default
    try:
        return int(value)
    except (ValueError, OverflowError):
        logger.warning(f"Ignoring non-finite setting {key}={row.get(key)!r}")
        return default


def _bool(row: Mapping[str, Any], key: str, default: bool) -> bool:
    value = row.get(key)
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _coordinates(row: Mapping[str, Any]) -> Optional[Coordinates]:
    lat = _number(row, "latitude")
    lon = _number(row, "longitude")
    if lat is None or lon is None:
        return None
    return Coordinates(lat, lon)


def _murottal_windows(row: Mapping[str, Any]) -> Mapping[str, AudioWindowSetting]:
    # Per-slot columns win; the older global columns fill the gaps.
    active_all = _bool(row, "murottal_active", False)
    lead_all = _int(row, "murottal_pre_adhan_duration", MUROTTAL_LEAD_MINUTES)
    windows = {}
    for slot in MUROTTAL_SLOTS:
        active = _bool(row, f"murottal_active_{slot}", active_all)
        lead_minutes = _int(row, f"murottal_pre_adhan_duration_{slot}", lead_all)
        windows[slot] = AudioWindowSetting(active, max(lead_minutes, 0) * 60)
    return types.MappingProxyType(windows)


def _tarhim_windows(row: Mapping[str, Any]) -> Mapping[str, AudioWindowSetting]:
    active_all = _bool(row, "tarhim_active", False)
    lead_all = _int(row, "tarhim_pre_adhan_duration", TARHIM_LEAD_SECONDS)
    windows = {}
    for slot in TARHIM_SLOTS:
        active = _bool(row, f"tarhim_active_{slot}", active_all)
        lead_seconds = _int(row, f"tarhim_pre_adhan_duration_{slot}", lead_all)
        windows[slot] = AudioWindowSetting(active, max(lead_seconds, 0))
    return types.MappingProxyType(windows)


def settings_from_row(
    row: Optional[Mapping[str, Any]],
    version: int = 0,
    timezone: str = DEFAULT_LOCATION["timezone"],
) -> Settings:
    """
    Build a complete Settings snapshot from a flat settings row.

    Every field comes from row or from its default; nothing is carried over
    from a previous snapshot. Murottal leads are stored in minutes and
    tarhim leads in seconds, as the admin panel edits them.
    """
    row = row or {}
    offsets = DailyOffsets(
        fajr=_int(row, "fajr_offset", 0),
        dhuhr=_int(row, "dhuhr_offset", 0),
        asr=_int(row, "asr_offset", 0),
        maghrib=_int(row, "maghrib_offset", 0),
        isha=_int(row, "isha_offset", 0),
        imsak=_int(row, "imsak_offset", 0),
    )
    return Settings(
        coordinates=_coordinates(row),
        method=CalculationMethod.parse(row.get("calculation_method")),
        offsets=offsets,
        timezone=zone(str(row.get("timezone") or timezone)).zone,
        murottal=_murottal_windows(row),
        tarhim=_tarhim_windows(row),
        iqomah_seconds=_int(row, "iqomah_countdown_duration", IQOMAH_SECONDS) or IQOMAH_SECONDS,
        ramadan_mode=_bool(row, "is_ramadan_mode_active", False),
        imsak_lead_minutes=_int(row, "imsak_lead_minutes", IMSAK_LEAD_MINUTES),
        imsak_overlay_seconds=_int(row, "imsak_overlay_duration", IMSAK_OVERLAY_SECONDS),
        master_audio_active=_bool(row, "is_master_audio_active", True),
        adhan_seconds=_int(row, "adhan_duration_seconds", ADHAN_SECONDS),
        pre_adhan_seconds=_int(row, "pre_adhan_countdown_seconds", PRE_ADHAN_SECONDS),
        khutbah_minutes=_int(row, "khutbah_duration_minutes", KHUTBAH_MINUTES) or KHUTBAH_MINUTES,
        version=version,
    )
