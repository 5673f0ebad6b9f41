"""Derive trigger events (murottal, tarhim, adhan, iqomah, imsak) and countdown text."""

import dataclasses
import datetime
import enum
import logging
import threading
from typing import Iterable, Optional

from masjid_display.config import IMSAK, Settings
from masjid_display.schedule import ResolvedPrayer

logger = logging.getLogger(__name__)

# Adhan has no window of its own; a tick landing this late still fires it.
FIRE_GRACE = datetime.timedelta(seconds=5)

DAY_SECONDS = 24 * 60 * 60
MONTH_SECONDS = 30 * DAY_SECONDS
YEAR_SECONDS = 365 * DAY_SECONDS


class TriggerKind(enum.Enum):
    MUROTTAL_START = "murottal-start"
    TARHIM_START = "tarhim-start"
    ADHAN = "adhan"
    IQOMAH_START = "iqomah-start"
    IMSAK_WINDOW = "imsak-window"


AUDIO_KINDS = (TriggerKind.MUROTTAL_START, TriggerKind.TARHIM_START)
FIRED_KINDS = AUDIO_KINDS + (TriggerKind.ADHAN, TriggerKind.IQOMAH_START)


@dataclasses.dataclass(frozen=True)
class TriggerEvent:
    kind: TriggerKind
    prayer_kind: str
    fire_at: datetime.datetime
    window_end: Optional[datetime.datetime] = None

    @property
    def key(self) -> tuple:
        # Audio lead-ins are identified by the prayer they lead into, so a
        # changed lead does not replay a murottal that already started.
        anchor = self.window_end if self.kind in AUDIO_KINDS else self.fire_at
        return (self.kind, self.prayer_kind, anchor)

    def is_due(self, now: datetime.datetime) -> bool:
        end = self.window_end or self.fire_at + FIRE_GRACE
        return self.fire_at <= now < end

    def window(self) -> Optional[tuple]:
        if self.window_end is None:
            return None
        return self.fire_at, self.window_end


def _audio_events(settings: Settings, slot: str, at: datetime.datetime) -> list:
    events = []
    if not settings.master_audio_active:
        return events
    for kind, audio_class in ((TriggerKind.MUROTTAL_START, "murottal"), (TriggerKind.TARHIM_START, "tarhim")):
        window = settings.audio(audio_class, slot)
        if not window.active or window.lead_seconds <= 0:
            continue
        events.append(TriggerEvent(kind, slot, at - datetime.timedelta(seconds=window.lead_seconds), at))
    return events


def prayer_events(settings: Settings, prayer: ResolvedPrayer) -> list:
    """Audio lead-ins, adhan and iqomah for one resolved prayer instant."""
    slot = prayer.kind.value
    events = _audio_events(settings, slot, prayer.at)
    events.append(TriggerEvent(TriggerKind.ADHAN, slot, prayer.at))
    events.append(
        TriggerEvent(
            TriggerKind.IQOMAH_START,
            slot,
            prayer.at,
            prayer.at + datetime.timedelta(seconds=settings.iqomah_seconds),
        )
    )
    return events


def upcoming_imsak(
    now: datetime.datetime,
    today_imsak: datetime.datetime,
    tomorrow_imsak: datetime.datetime,
    overlay_seconds: int,
) -> datetime.datetime:
    """Today's imsak while its overlay window is still open, otherwise tomorrow's."""
    if now < today_imsak + datetime.timedelta(seconds=overlay_seconds):
        return today_imsak
    return tomorrow_imsak


def imsak_events(settings: Settings, imsak_at: datetime.datetime) -> list:
    events = [
        TriggerEvent(
            TriggerKind.IMSAK_WINDOW,
            IMSAK,
            imsak_at,
            imsak_at + datetime.timedelta(seconds=settings.imsak_overlay_seconds),
        )
    ]
    if settings.ramadan_mode:
        events.extend(e for e in _audio_events(settings, IMSAK, imsak_at) if e.kind is TriggerKind.MUROTTAL_START)
    return events


def derive_events(
    settings: Settings,
    next_prayer: ResolvedPrayer,
    imsak_at: datetime.datetime,
    previous_prayer: Optional[ResolvedPrayer] = None,
) -> list:
    """
    Build the full trigger timeline for one settings snapshot.

    previous_prayer keeps the adhan and iqomah of a prayer that has just
    started reachable after the resolver moves on to the next one. The result
    is sorted by fire time and depends only on the arguments.
    """
    events = []
    if previous_prayer is not None:
        events.extend(prayer_events(settings, previous_prayer))
    events.extend(prayer_events(settings, next_prayer))
    events.extend(imsak_events(settings, imsak_at))
    return sorted(events, key=lambda e: (e.fire_at, e.kind.value))


class TriggerDispatcher:
    """Reports each derived event once, on the first evaluation inside its fire window."""

    def __init__(self):
        self._fired = set()
        self._lock = threading.Lock()

    def evaluate(self, events: Iterable[TriggerEvent], now: datetime.datetime) -> list:
        due = []
        with self._lock:
            for event in events:
                if event.kind not in FIRED_KINDS or event.key in self._fired:
                    continue
                if event.is_due(now):
                    self._fired.add(event.key)
                    due.append(event)
            horizon = now - datetime.timedelta(days=2)
            self._fired = {key for key in self._fired if key[2] >= horizon}
        for event in due:
            logger.info(f"Trigger {event.kind.value} for {event.prayer_kind} at {event.fire_at:%H:%M:%S}")
        return due


def _breakdown(total_seconds: int) -> tuple:
    years, rest = divmod(total_seconds, YEAR_SECONDS)
    months, rest = divmod(rest, MONTH_SECONDS)
    days, rest = divmod(rest, DAY_SECONDS)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    return years, months, days, hours, minutes, seconds


def format_countdown(remaining: datetime.timedelta) -> str:
    """
    Render time left until an event.

    A week or more: "1 tahun 2 bulan 3 hari" with zero units left out.
    Under a day: "HH:MM:SS". Otherwise: "N hari HH jam MM menit".
    Past events render as "00:00:00".
    """
    total = max(int(remaining.total_seconds()), 0)
    years, months, days, hours, minutes, seconds = _breakdown(total)

    parts = []
    if years > 0:
        parts.append(f"{years} tahun")
    if months > 0:
        parts.append(f"{months} bulan")
    if days > 0:
        parts.append(f"{days} hari")

    if years == 0 and months == 0 and days == 0:
        parts.append(f"{hours:02d}:{minutes:02d}:{seconds:02d}")
    elif years == 0 and months == 0 and days < 7:
        parts.append(f"{hours:02d} jam {minutes:02d} menit")
    return " ".join(parts)


def format_clock(remaining: datetime.timedelta) -> str:
    """MM:SS for the short overlay countdowns."""
    total = max(int(remaining.total_seconds()), 0)
    minutes = (total // 60) % 60
    seconds = total % 60
    return f"{minutes:02d}:{seconds:02d}"
