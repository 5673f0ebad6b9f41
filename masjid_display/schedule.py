"""Resolve the next prayer, its display label and the roster assigned to it."""

import dataclasses
import datetime
import logging
from typing import Callable, Iterable, Mapping, Optional

from masjid_display.astronomy import compute_prayer_times
from masjid_display.config import (
    DEFAULT_COORDINATES,
    DEFAULT_METHOD,
    IMSAK,
    PRAYER_ORDER,
    PrayerKind,
    Settings,
)
from masjid_display.errors import InvalidCalculationInput

logger = logging.getLogger(__name__)

PRAYER_LABELS = {
    PrayerKind.FAJR: "Subuh",
    PrayerKind.DHUHR: "Dzuhur",
    PrayerKind.ASR: "Ashar",
    PrayerKind.MAGHRIB: "Maghrib",
    PrayerKind.ISHA: "Isya",
}
JUMAT_LABEL = "Jumat"
TARAWIH_LABEL = "Tarawih"

# Indexed by date.weekday(), Monday first.
DAY_NAMES = ("Senin", "Selasa", "Rabu", "Kamis", "Jumat", "Sabtu", "Ahad")
FRIDAY = 4


@dataclasses.dataclass(frozen=True)
class PrayerInstant:
    kind: PrayerKind
    at: datetime.datetime


@dataclasses.dataclass(frozen=True)
class DailySchedule:
    """Exactly one instant per prayer kind for one calendar day, plus imsak."""

    date: datetime.date
    instants: tuple
    imsak: datetime.datetime

    def at(self, kind: PrayerKind) -> datetime.datetime:
        for instant in self.instants:
            if instant.kind is kind:
                return instant.at
        raise KeyError(kind)


@dataclasses.dataclass(frozen=True)
class ResolvedPrayer:
    kind: PrayerKind
    label: str
    at: datetime.datetime
    rolled_over: bool = False


@dataclasses.dataclass(frozen=True)
class RosterEntry:
    day_of_week: str
    prayer_label: str
    imam_name: str
    muezzin_name: Optional[str] = None
    khatib_name: Optional[str] = None
    bilal_name: Optional[str] = None
    order: int = 0

    @classmethod
    def from_row(cls, row: Mapping) -> "RosterEntry":
        return cls(
            day_of_week=row["day_of_week"],
            prayer_label=row["prayer_name"],
            imam_name=row.get("imam_name") or "",
            muezzin_name=row.get("muezzin_name"),
            khatib_name=row.get("khatib_name"),
            bilal_name=row.get("bilal_name"),
            order=int(row.get("display_order") or 0),
        )


@dataclasses.dataclass(frozen=True)
class Resolution:
    """Everything the timeline needs for one (settings, now) pair."""

    next_prayer: ResolvedPrayer
    previous_prayer: Optional[ResolvedPrayer]
    roster: Optional[RosterEntry]
    tarawih: Optional[RosterEntry]
    today: DailySchedule
    tomorrow: DailySchedule


def day_name(day: datetime.date) -> str:
    return DAY_NAMES[day.weekday()]


def prayer_label(kind: PrayerKind, day: datetime.date) -> str:
    """Display and roster label; Dhuhr on a Friday is Jumat."""
    if kind is PrayerKind.DHUHR and day.weekday() == FRIDAY:
        return JUMAT_LABEL
    return PRAYER_LABELS[kind]


def _ordered(instants: Iterable[PrayerInstant]) -> list:
    return sorted(instants, key=lambda instant: PRAYER_ORDER.index(instant.kind))


def next_prayer(
    now: datetime.datetime,
    today_instants: Iterable[PrayerInstant],
    tomorrow_fajr: datetime.datetime,
) -> ResolvedPrayer:
    """
    Return the first of today's prayers strictly after now.

    Instants are scanned Fajr to Isha. When all of them have passed, tomorrow's
    Fajr is returned with rolled_over=True.
    """
    for instant in _ordered(today_instants):
        if instant.at > now:
            return ResolvedPrayer(instant.kind, prayer_label(instant.kind, instant.at.date()), instant.at)
    return ResolvedPrayer(
        PrayerKind.FAJR,
        prayer_label(PrayerKind.FAJR, tomorrow_fajr.date()),
        tomorrow_fajr,
        rolled_over=True,
    )


def previous_prayer(
    now: datetime.datetime,
    today_instants: Iterable[PrayerInstant],
    yesterday_isha: datetime.datetime,
) -> ResolvedPrayer:
    """Return the latest prayer at or before now, falling back to yesterday's Isha."""
    found = None
    for instant in _ordered(today_instants):
        if instant.at <= now:
            found = instant
    if found is None:
        return ResolvedPrayer(
            PrayerKind.ISHA,
            prayer_label(PrayerKind.ISHA, yesterday_isha.date()),
            yesterday_isha,
            rolled_over=True,
        )
    return ResolvedPrayer(found.kind, prayer_label(found.kind, found.at.date()), found.at)


def resolve_roster(
    entries: Iterable[RosterEntry],
    day_of_week: str,
    label: str,
) -> Optional[RosterEntry]:
    """Exact (day, label) match with the lowest order, or None when nobody is assigned."""
    matches = [e for e in entries if e.day_of_week == day_of_week and e.prayer_label == label]
    if not matches:
        return None
    return min(matches, key=lambda e: e.order)


def _no_roster(day_of_week: str, label: str) -> Optional[RosterEntry]:
    return None


class ScheduleResolver:
    """
    Turns a settings snapshot and the current time into a Resolution.

    Daily schedules are cached per calculation input and date, so calling
    resolve() every second only runs the astronomy when the day or the
    settings change.
    """

    CACHE_SIZE = 8

    def __init__(self, roster_lookup: Callable[[str, str], Optional[RosterEntry]] = None):
        self.roster_lookup = roster_lookup or _no_roster
        self._cache = {}

    def calculation_input(self, settings: Settings) -> tuple:
        """Coordinates and method to compute with, substituting defaults for bad input."""
        coordinates = settings.coordinates
        method = settings.method
        if coordinates is None or not coordinates.is_valid():
            logger.warning(f"Invalid coordinates {coordinates}; using default location {DEFAULT_COORDINATES}")
            coordinates = DEFAULT_COORDINATES
        if method is None:
            logger.warning(f"Calculation method missing; using {DEFAULT_METHOD.value}")
            method = DEFAULT_METHOD
        return coordinates, method

    def schedule_for(self, settings: Settings, day: datetime.date) -> DailySchedule:
        coordinates, method = self.calculation_input(settings)
        tz = settings.tz()
        key = (coordinates, method, settings.offsets, tz.zone, settings.imsak_lead_minutes, day)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            times = compute_prayer_times(
                coordinates, day, method, settings.offsets, tz, settings.imsak_lead_minutes
            )
        except InvalidCalculationInput as exc:
            logger.warning(f"{exc}; using {DEFAULT_COORDINATES} with {DEFAULT_METHOD.value}")
            times = compute_prayer_times(
                DEFAULT_COORDINATES, day, DEFAULT_METHOD, settings.offsets, tz, settings.imsak_lead_minutes
            )
        schedule = DailySchedule(
            date=day,
            instants=tuple(PrayerInstant(kind, times[kind.value]) for kind in PRAYER_ORDER),
            imsak=times[IMSAK],
        )
        if len(self._cache) >= self.CACHE_SIZE:
            self._cache.clear()
        self._cache[key] = schedule
        return schedule

    def lookup(self, day_of_week: str, label: str) -> Optional[RosterEntry]:
        return self.roster_lookup(day_of_week, label)

    def resolve(self, settings: Settings, now: datetime.datetime) -> Resolution:
        local_now = now.astimezone(settings.tz())
        today_date = local_now.date()
        one_day = datetime.timedelta(days=1)

        yesterday = self.schedule_for(settings, today_date - one_day)
        today = self.schedule_for(settings, today_date)
        tomorrow = self.schedule_for(settings, today_date + one_day)

        upcoming = next_prayer(local_now, today.instants, tomorrow.at(PrayerKind.FAJR))
        previous = previous_prayer(local_now, today.instants, yesterday.at(PrayerKind.ISHA))
        roster = self.lookup(day_name(upcoming.at.date()), upcoming.label)

        tarawih = None
        if settings.ramadan_mode:
            tarawih = self.lookup(day_name(today_date), TARAWIH_LABEL)

        return Resolution(
            next_prayer=upcoming,
            previous_prayer=previous,
            roster=roster,
            tarawih=tarawih,
            today=today,
            tomorrow=tomorrow,
        )
