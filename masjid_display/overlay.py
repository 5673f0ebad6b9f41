"""Full-screen overlay lifecycle (prayer, Jumuah, imsak, Tarawih) and phase text."""

import dataclasses
import datetime
import enum
import logging
import threading
from typing import Callable, Optional

from masjid_display.config import Settings
from masjid_display.timeline import format_clock

logger = logging.getLogger(__name__)

# Jumuah gives the congregation longer to settle before the adhan.
JUMUAH_PRE_ADHAN_SECONDS = 300


class OverlayPhase(enum.Enum):
    HIDDEN = "hidden"
    ACTIVE = "active"


class OverlayStateMachine:
    """
    Hidden -> Active -> Hidden for one overlay.

    update() is given the overlay's current [start, end) window, or None once
    whatever produced the window is gone. The overlay is active exactly while
    now lies inside the window; on_close runs once per Active -> Hidden edge,
    whichever way it was reached.
    """

    def __init__(
        self,
        overlay_id: str,
        on_close: Optional[Callable[[str], None]] = None,
        on_change: Optional[Callable[[str, OverlayPhase], None]] = None,
    ):
        self.overlay_id = overlay_id
        self.on_close = on_close
        self.on_change = on_change
        self.phase = OverlayPhase.HIDDEN
        self.entered_at = None
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self.phase is OverlayPhase.ACTIVE

    def update(self, now: datetime.datetime, window: Optional[tuple]) -> OverlayPhase:
        with self._lock:
            previous = self.phase
            if window is not None and window[0] <= now < window[1]:
                if previous is OverlayPhase.HIDDEN:
                    self.entered_at = now
                self.phase = OverlayPhase.ACTIVE
            else:
                self.phase = OverlayPhase.HIDDEN
                self.entered_at = None
            current = self.phase

        if current is not previous:
            logger.info(f"Overlay {self.overlay_id}: {previous.value} -> {current.value}")
            if self.on_change:
                self.on_change(self.overlay_id, current)
            if current is OverlayPhase.HIDDEN and self.on_close:
                self.on_close(self.overlay_id)
        return current

    def close(self) -> None:
        """Force the overlay hidden, e.g. on shutdown."""
        self.update(datetime.datetime.max, None)


@dataclasses.dataclass(frozen=True)
class OverlayStage:
    """Sub-phase of an active overlay with the countdown shown in it."""

    name: str
    text: str
    ends_at: Optional[datetime.datetime] = None


HIDDEN_STAGE = OverlayStage("hidden", "")


def _stages(now: datetime.datetime, adhan_at: datetime.datetime, steps) -> OverlayStage:
    start = adhan_at - steps[0][1]
    if now < start:
        return HIDDEN_STAGE
    boundary = start
    for name, length in steps:
        boundary += length
        if now < boundary:
            return OverlayStage(name, format_clock(boundary - now), boundary)
    return HIDDEN_STAGE


def prayer_overlay_window(adhan_at: datetime.datetime, settings: Settings) -> tuple:
    start = adhan_at - datetime.timedelta(seconds=settings.pre_adhan_seconds)
    end = adhan_at + datetime.timedelta(seconds=settings.adhan_seconds + settings.iqomah_seconds)
    return start, end


def prayer_overlay_phase(now: datetime.datetime, adhan_at: datetime.datetime, settings: Settings) -> OverlayStage:
    """pre-adhan, adhan, then iqomah; each with an MM:SS countdown to its end."""
    return _stages(
        now,
        adhan_at,
        (
            ("pre-adhan", datetime.timedelta(seconds=settings.pre_adhan_seconds)),
            ("adhan", datetime.timedelta(seconds=settings.adhan_seconds)),
            ("iqomah", datetime.timedelta(seconds=settings.iqomah_seconds)),
        ),
    )


def jumuah_overlay_window(adhan_at: datetime.datetime, settings: Settings) -> tuple:
    start = adhan_at - datetime.timedelta(seconds=JUMUAH_PRE_ADHAN_SECONDS)
    end = adhan_at + datetime.timedelta(seconds=settings.adhan_seconds, minutes=settings.khutbah_minutes)
    return start, end


def jumuah_overlay_phase(now: datetime.datetime, adhan_at: datetime.datetime, settings: Settings) -> OverlayStage:
    """pre-adhan, adhan, then khutbah for Friday's Dhuhr."""
    return _stages(
        now,
        adhan_at,
        (
            ("pre-adhan", datetime.timedelta(seconds=JUMUAH_PRE_ADHAN_SECONDS)),
            ("adhan", datetime.timedelta(seconds=settings.adhan_seconds)),
            ("khutbah", datetime.timedelta(minutes=settings.khutbah_minutes)),
        ),
    )
