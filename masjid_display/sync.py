"""Deliver settings snapshots and the imam/muezzin roster from the remote settings store."""

import abc
import logging
import threading
from typing import Callable, Optional

import requests

from masjid_display.config import DEFAULT_LOCATION, Settings, settings_from_row
from masjid_display.errors import ChannelDisconnected, ConfigUnavailable
from masjid_display.schedule import RosterEntry, resolve_roster

logger = logging.getLogger(__name__)

SETTINGS_PATH = "/rest/v1/app_settings"
ROSTER_PATH = "/rest/v1/imam_muezzin_schedules"
SETTINGS_ROW_ID = 1
REQUEST_TIMEOUT = 10


class ConfigSource(abc.ABC):
    """Where settings rows and roster rows come from."""

    @abc.abstractmethod
    def fetch_settings(self) -> dict:
        """Return the complete settings row."""

    @abc.abstractmethod
    def fetch_roster(self) -> list:
        """Return all roster rows."""


class RestConfigSource(ConfigSource):
    """
    Read the settings table over a PostgREST-style REST API.

    Connection failures and timeouts raise ChannelDisconnected; any other
    HTTP or decoding failure raises ConfigUnavailable.
    """

    def __init__(self, base_url: str, api_key: str = "", timeout: int = REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _get(self, path: str, params: dict):
        url = f"{self.base_url}{path}"
        try:
            resp = requests.get(url, params=params, headers=self._headers(), timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise ChannelDisconnected(f"Settings source unreachable: {exc}") from exc
        except requests.RequestException as exc:
            raise ConfigUnavailable(f"Settings request failed: {exc}") from exc
        except ValueError as exc:
            raise ConfigUnavailable(f"Settings response is not JSON: {exc}") from exc

    def fetch_settings(self) -> dict:
        body = self._get(SETTINGS_PATH, {"select": "*", "id": f"eq.{SETTINGS_ROW_ID}"})
        if not isinstance(body, list) or not body:
            raise ConfigUnavailable("Settings row not found")
        if not isinstance(body[0], dict):
            raise ConfigUnavailable("Settings row is not an object")
        return body[0]

    def fetch_roster(self) -> list:
        body = self._get(ROSTER_PATH, {"select": "*", "order": "display_order.asc"})
        if not isinstance(body, list):
            raise ConfigUnavailable("Roster response is not a list")
        return body


class Subscription:
    """Handle returned by subscribe(); cancel() stops further deliveries."""

    def __init__(self, channel: "ConfigSyncChannel", callback: Callable[[Settings], None]):
        self._channel = channel
        self.callback = callback

    def cancel(self) -> None:
        self._channel._unsubscribe(self)


class ConfigSyncChannel:
    """
    The single authoritative settings slot.

    Every push replaces the whole snapshot with one built from the complete
    row, so readers never see a half-applied update. Subscribers are called
    outside the lock with the new snapshot.
    """

    def __init__(self, initial: Optional[Settings] = None, timezone: str = DEFAULT_LOCATION["timezone"]):
        self.timezone = timezone
        self._lock = threading.Lock()
        self._settings = initial or Settings(timezone=timezone)
        self._roster = ()
        self._subscriptions = []
        self.degraded = False

    def current(self) -> Settings:
        with self._lock:
            return self._settings

    def roster(self) -> tuple:
        with self._lock:
            return self._roster

    def roster_lookup(self, day_of_week: str, label: str) -> Optional[RosterEntry]:
        return resolve_roster(self.roster(), day_of_week, label)

    def subscribe(self, callback: Callable[[Settings], None]) -> Subscription:
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def push_snapshot(self, row: dict) -> Settings:
        """Install the initial (or a re-fetched) complete settings row."""
        return self._replace(row)

    def push_update(self, row: dict) -> Settings:
        """Install a changed settings row; the old snapshot is discarded, not merged."""
        return self._replace(row)

    def _replace(self, row: dict) -> Settings:
        with self._lock:
            settings = settings_from_row(row, version=self._settings.version + 1, timezone=self.timezone)
            self._settings = settings
            subscriptions = list(self._subscriptions)
        logger.info(f"Settings snapshot v{settings.version} installed")
        self._notify(subscriptions, settings)
        return settings

    def push_roster(self, rows: list) -> tuple:
        entries = []
        for row in rows:
            try:
                entries.append(RosterEntry.from_row(row))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning(f"Skipping malformed roster row {row!r}: {exc}")
        with self._lock:
            self._roster = tuple(entries)
            settings = self._settings
            subscriptions = list(self._subscriptions)
        logger.info(f"Roster updated with {len(entries)} entries")
        self._notify(subscriptions, settings)
        return self._roster

    def _notify(self, subscriptions: list, settings: Settings) -> None:
        for subscription in subscriptions:
            try:
                subscription.callback(settings)
            except Exception:
                logger.exception("Settings subscriber failed")

    def mark_degraded(self, reason: str) -> None:
        if not self.degraded:
            logger.warning(f"Settings channel degraded: {reason}")
        self.degraded = True

    def mark_healthy(self) -> None:
        if self.degraded:
            logger.info("Settings channel recovered")
        self.degraded = False


class PollingSubscriber:
    """
    Poll a ConfigSource on a background thread and push changes into a channel.

    Failures keep the last good snapshot, flag the channel as degraded and
    retry with exponential backoff. cancel() interrupts any wait.
    """

    def __init__(
        self,
        source: ConfigSource,
        channel: ConfigSyncChannel,
        interval: float = 30,
        initial_backoff: float = 1,
        max_backoff: float = 60,
    ):
        self.source = source
        self.channel = channel
        self.interval = interval
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self._stop = threading.Event()
        self._thread = None
        self._last_row = None
        self._last_roster = None

    def poll_once(self) -> bool:
        """Fetch once and push what changed. Returns True if anything was pushed."""
        row = self.source.fetch_settings()
        roster = self.source.fetch_roster()
        changed = False
        if roster != self._last_roster:
            self.channel.push_roster(roster)
            self._last_roster = roster
            changed = True
        if row != self._last_row:
            if self._last_row is None:
                self.channel.push_snapshot(row)
            else:
                self.channel.push_update(row)
            self._last_row = row
            changed = True
        self.channel.mark_healthy()
        return changed

    def _run(self) -> None:
        backoff = self.initial_backoff
        while not self._stop.is_set():
            try:
                self.poll_once()
            except ConfigUnavailable as exc:
                self.channel.mark_degraded(str(exc))
                logger.warning(f"Settings poll failed, retrying in {backoff}s: {exc}")
            except Exception as exc:
                # A row that cannot be applied must not end the poller.
                self.channel.mark_degraded(f"unusable settings: {exc}")
                logger.exception(f"Settings could not be applied, retrying in {backoff}s")
            else:
                backoff = self.initial_backoff
                self._stop.wait(self.interval)
                continue
            self._stop.wait(backoff)
            backoff = min(backoff * 2, self.max_backoff)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="settings-poller", daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
