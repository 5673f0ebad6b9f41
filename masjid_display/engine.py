"""
Drive the display: tick the trigger timeline and the overlays once a second.

Both tickers do a pure recompute from the current settings snapshot and the
clock. Nothing is queued between ticks, so a config change simply shows up
in the next recompute (and one is run right away when the change arrives).
"""

import dataclasses
import datetime
import logging
import threading
from typing import Callable, Optional

import pytz

from masjid_display.config import Settings
from masjid_display.overlay import (
    HIDDEN_STAGE,
    OverlayPhase,
    OverlayStage,
    OverlayStateMachine,
    jumuah_overlay_phase,
    jumuah_overlay_window,
    prayer_overlay_phase,
    prayer_overlay_window,
)
from masjid_display.schedule import JUMAT_LABEL, Resolution, ResolvedPrayer, RosterEntry, ScheduleResolver
from masjid_display.sync import ConfigSyncChannel, PollingSubscriber
from masjid_display.timeline import (
    TriggerDispatcher,
    TriggerKind,
    derive_events,
    format_clock,
    format_countdown,
    upcoming_imsak,
)

logger = logging.getLogger(__name__)

PRAYER_OVERLAY = "prayer"
JUMUAH_OVERLAY = "jumuah"
IMSAK_OVERLAY = "imsak"
TARAWIH_OVERLAY = "tarawih"
OVERLAY_IDS = (PRAYER_OVERLAY, JUMUAH_OVERLAY, IMSAK_OVERLAY, TARAWIH_OVERLAY)

NEXT_PRAYER_COUNTDOWN = "next-prayer"
IQOMAH_COUNTDOWN = "iqomah"
IMSAK_COUNTDOWN = "imsak"


@dataclasses.dataclass(frozen=True)
class NextPrayerResolved:
    label: str
    at: datetime.datetime
    roster: Optional[RosterEntry]


@dataclasses.dataclass(frozen=True)
class TriggerFired:
    kind: TriggerKind
    prayer_kind: str


@dataclasses.dataclass(frozen=True)
class OverlayPhaseChanged:
    overlay_id: str
    phase: OverlayPhase


@dataclasses.dataclass(frozen=True)
class EngineState:
    settings: Settings
    resolution: Resolution
    events: tuple
    imsak_at: datetime.datetime


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(pytz.utc)


class Ticker:
    """Call func every interval seconds on a daemon thread until cancelled."""

    def __init__(self, name: str, interval: float, func: Callable[[], None]):
        self.name = name
        self.interval = interval
        self.func = func
        self._stop = threading.Event()
        self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.func()
            except Exception:
                logger.exception(f"{self.name} tick failed; keeping previous state")
            self._stop.wait(self.interval)

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._thread = None


def _day_window(day: datetime.date, tz) -> tuple:
    start = tz.localize(datetime.datetime.combine(day, datetime.time.min))
    end = tz.localize(datetime.datetime.combine(day + datetime.timedelta(days=1), datetime.time.min))
    return start, end


class DisplayEngine:
    """
    Ties the settings channel, schedule resolver, trigger timeline and
    overlays together.

    Listeners receive NextPrayerResolved, TriggerFired and
    OverlayPhaseChanged events. clock must return timezone-aware datetimes.
    """

    def __init__(
        self,
        channel: ConfigSyncChannel,
        clock: Callable[[], datetime.datetime] = None,
        resolver: ScheduleResolver = None,
        poller: Optional[PollingSubscriber] = None,
        tick_seconds: float = 1.0,
    ):
        self.channel = channel
        self.clock = clock or utc_now
        self.resolver = resolver or ScheduleResolver(channel.roster_lookup)
        self.poller = poller
        self.tick_seconds = tick_seconds
        self.dispatcher = TriggerDispatcher()
        self.overlays = {
            overlay_id: OverlayStateMachine(overlay_id, on_change=self._overlay_changed)
            for overlay_id in OVERLAY_IDS
        }
        self._listeners = []
        self._lock = threading.Lock()
        self._state = None
        self._last_resolved = None
        self._subscription = None
        self._tickers = []
        self._closed = False

    # Listeners

    def add_listener(self, listener: Callable[[object], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[object], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, event) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Listener failed on {event}")

    def _overlay_changed(self, overlay_id: str, phase: OverlayPhase) -> None:
        self._emit(OverlayPhaseChanged(overlay_id, phase))

    # Lifecycle

    def connect(self) -> None:
        if self._subscription is None:
            self._subscription = self.channel.subscribe(self._on_settings)

    def start(self) -> None:
        self.connect()
        if self.poller is not None:
            self.poller.start()
        self._tickers = [
            Ticker("timeline-ticker", self.tick_seconds, self.tick_timeline),
            Ticker("overlay-ticker", self.tick_seconds, self.tick_overlays),
        ]
        for ticker in self._tickers:
            ticker.start()
        logger.info("Display engine started")

    def close(self) -> None:
        self._closed = True
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self.poller is not None:
            self.poller.cancel()
        for ticker in self._tickers:
            ticker.cancel()
        self._tickers = []
        for machine in self.overlays.values():
            machine.close()
        logger.info("Display engine stopped")

    def _on_settings(self, settings: Settings) -> None:
        if self._closed:
            return
        now = self.clock()
        self.tick_timeline(now)
        self.tick_overlays(now)

    # Recompute

    def _compute(self, now: datetime.datetime) -> EngineState:
        settings = self.channel.current()
        resolution = self.resolver.resolve(settings, now)
        imsak_at = upcoming_imsak(
            now, resolution.today.imsak, resolution.tomorrow.imsak, settings.imsak_overlay_seconds
        )
        events = derive_events(settings, resolution.next_prayer, imsak_at, resolution.previous_prayer)
        state = EngineState(settings, resolution, tuple(events), imsak_at)
        with self._lock:
            self._state = state
        return state

    def tick_timeline(self, now: datetime.datetime = None) -> EngineState:
        now = now or self.clock()
        state = self._compute(now)

        upcoming = state.resolution.next_prayer
        resolved = NextPrayerResolved(upcoming.label, upcoming.at, state.resolution.roster)
        with self._lock:
            changed = resolved != self._last_resolved
            if changed:
                self._last_resolved = resolved
        if changed:
            logger.info(f"Next prayer {resolved.label} at {resolved.at:%Y-%m-%d %H:%M}")
            self._emit(resolved)

        for event in self.dispatcher.evaluate(state.events, now):
            self._emit(TriggerFired(event.kind, event.prayer_kind))
        return state

    def tick_overlays(self, now: datetime.datetime = None) -> dict:
        now = now or self.clock()
        state = self._compute(now)
        windows = self.overlay_windows(state, now)
        return {overlay_id: machine.update(now, windows.get(overlay_id)) for overlay_id, machine in self.overlays.items()}

    def _overlay_prayer(self, state: EngineState, now: datetime.datetime) -> ResolvedPrayer:
        """The prayer whose overlay is showing: the one just started while its window lasts."""
        previous = state.resolution.previous_prayer
        if previous is not None:
            start, end = self._prayer_window(previous, state.settings)
            if start <= now < end:
                return previous
        return state.resolution.next_prayer

    def _prayer_window(self, prayer: ResolvedPrayer, settings: Settings) -> tuple:
        if prayer.label == JUMAT_LABEL:
            return jumuah_overlay_window(prayer.at, settings)
        return prayer_overlay_window(prayer.at, settings)

    def overlay_windows(self, state: EngineState, now: datetime.datetime) -> dict:
        settings = state.settings
        prayer = self._overlay_prayer(state, now)
        windows = {
            IMSAK_OVERLAY: (
                state.imsak_at,
                state.imsak_at + datetime.timedelta(seconds=settings.imsak_overlay_seconds),
            ),
        }
        if prayer.label == JUMAT_LABEL:
            windows[JUMUAH_OVERLAY] = self._prayer_window(prayer, settings)
        else:
            windows[PRAYER_OVERLAY] = self._prayer_window(prayer, settings)
        if state.resolution.tarawih is not None:
            windows[TARAWIH_OVERLAY] = _day_window(state.resolution.today.date, settings.tz())
        return windows

    # Display text

    def current_state(self) -> EngineState:
        with self._lock:
            state = self._state
        return state or self._compute(self.clock())

    def overlay_stage(self, overlay_id: str, now: datetime.datetime = None) -> OverlayStage:
        now = now or self.clock()
        state = self.current_state()
        if overlay_id not in (PRAYER_OVERLAY, JUMUAH_OVERLAY) or not self.overlays[overlay_id].active:
            return HIDDEN_STAGE
        prayer = self._overlay_prayer(state, now)
        if overlay_id == JUMUAH_OVERLAY:
            return jumuah_overlay_phase(now, prayer.at, state.settings)
        return prayer_overlay_phase(now, prayer.at, state.settings)

    def countdown_text(self, countdown_id: str, now: datetime.datetime = None) -> str:
        """Text for a countdown or overlay id; unknown ids render empty."""
        now = now or self.clock()
        state = self.current_state()
        if countdown_id == NEXT_PRAYER_COUNTDOWN:
            return format_countdown(state.resolution.next_prayer.at - now)
        if countdown_id == IMSAK_COUNTDOWN:
            return format_countdown(state.imsak_at - now)
        if countdown_id == IQOMAH_COUNTDOWN:
            for event in state.events:
                if event.kind is TriggerKind.IQOMAH_START and event.is_due(now):
                    return format_clock(event.window_end - now)
            return ""
        if countdown_id in OVERLAY_IDS:
            return self.overlay_stage(countdown_id, now).text
        return ""
