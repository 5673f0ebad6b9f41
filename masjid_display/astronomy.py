"""Compute daily prayer times from coordinates, date and calculation method."""

import datetime
import logging
import math

import pytz
from adhanpy.PrayerTimes import PrayerTimes
from adhanpy.calculation.CalculationMethod import CalculationMethod as AdhanMethod

from masjid_display.config import (
    DEFAULT_METHOD,
    IMSAK,
    IMSAK_LEAD_MINUTES,
    PRAYER_ORDER,
    CalculationMethod,
    Coordinates,
    DailyOffsets,
)
from masjid_display.errors import InvalidCalculationInput

logger = logging.getLogger(__name__)

METHOD_PARAMETERS = {
    CalculationMethod.MUSLIM_WORLD_LEAGUE: AdhanMethod.MUSLIM_WORLD_LEAGUE,
    CalculationMethod.EGYPTIAN: AdhanMethod.EGYPTIAN,
    CalculationMethod.KARACHI: AdhanMethod.KARACHI,
    CalculationMethod.UMM_AL_QURA: AdhanMethod.UMM_AL_QURA,
    CalculationMethod.MOON_SIGHTING_COMMITTEE: AdhanMethod.MOON_SIGHTING_COMMITTEE,
    CalculationMethod.NORTH_AMERICA: AdhanMethod.NORTH_AMERICA,
}

# Nearest latitude at which twilight angles are reached all year round.
SAFE_LATITUDE = 48.5

PRAYER_KEYS = tuple(kind.value for kind in PRAYER_ORDER)


def adhan_method(method: CalculationMethod):
    """Map a settings method onto the library's parameter set (MWL when unset)."""
    if method not in METHOD_PARAMETERS:
        return METHOD_PARAMETERS[DEFAULT_METHOD]
    return METHOD_PARAMETERS[method]


def _raw_times(latitude: float, longitude: float, date: datetime.date, method) -> dict | None:
    """Library times for one day in UTC, or None when the geometry is degenerate."""
    try:
        times = PrayerTimes(
            (latitude, longitude),
            datetime.datetime(date.year, date.month, date.day),
            adhan_method(method),
        )
    except (RuntimeError, ValueError, ArithmeticError, TypeError) as exc:
        logger.warning(f"Prayer time computation failed at latitude {latitude}: {exc}")
        return None
    raw = {key: getattr(times, key, None) for key in PRAYER_KEYS}
    if any(value is None for value in raw.values()):
        return None
    return raw


def _to_local(moment: datetime.datetime, tz) -> datetime.datetime:
    if moment.tzinfo is None:
        moment = pytz.utc.localize(moment)
    return moment.astimezone(tz)


def compute_prayer_times(
    coordinates: Coordinates,
    date: datetime.date,
    method: CalculationMethod,
    offsets: DailyOffsets,
    tz,
    imsak_lead_minutes: int = IMSAK_LEAD_MINUTES,
) -> dict:
    """
    Compute the day's prayer instants in location-local time.

    Returns a dict with keys fajr, dhuhr, asr, maghrib, isha and imsak, each a
    timezone-aware datetime. Offsets are added after the computation. Imsak
    is the computed Fajr minus the imsak lead, then shifted by its own offset.
    Raises InvalidCalculationInput if no time can be produced even at the
    fallback latitude.
    """
    raw = _raw_times(coordinates.latitude, coordinates.longitude, date, method)
    if raw is None:
        safe_latitude = math.copysign(min(abs(coordinates.latitude), SAFE_LATITUDE), coordinates.latitude)
        logger.info(f"Using nearest safe latitude {safe_latitude} for {coordinates} on {date}")
        raw = _raw_times(safe_latitude, coordinates.longitude, date, method)
    if raw is None:
        raise InvalidCalculationInput(f"No prayer times for {coordinates} on {date}")

    result = {}
    for key in PRAYER_KEYS:
        result[key] = _to_local(raw[key], tz) + datetime.timedelta(minutes=offsets.minutes(key))

    fajr = _to_local(raw["fajr"], tz)
    result[IMSAK] = fajr + datetime.timedelta(minutes=offsets.minutes(IMSAK) - imsak_lead_minutes)
    return result
