"""Desktop notifications for engine events (adhan, iqomah, murottal, overlays)."""

import logging

from masjid_display.engine import NextPrayerResolved, OverlayPhaseChanged, TriggerFired
from masjid_display.overlay import OverlayPhase
from masjid_display.timeline import TriggerKind

try:
    from plyer import notification as plyer_notification
    _PLYER_AVAILABLE = True
except ImportError:
    _PLYER_AVAILABLE = False

logger = logging.getLogger(__name__)

APP_NAME = "Masjid Display"
APP_ICON = ""  # Path to icon file; empty = default

SLOT_NAMES = {
    "fajr": "Subuh",
    "dhuhr": "Dzuhur",
    "asr": "Ashar",
    "maghrib": "Maghrib",
    "isha": "Isya",
    "imsak": "Imsak",
}


def _send_plyer(title: str, message: str, timeout: int = 10) -> None:
    """Send a desktop notification via plyer (cross-platform)."""
    if not _PLYER_AVAILABLE:
        logger.debug(f"plyer not installed, skipping notification {title!r}")
        return
    try:
        kwargs = dict(
            app_name=APP_NAME,
            title=title,
            message=message,
            timeout=timeout,
        )
        if APP_ICON:
            kwargs["app_icon"] = APP_ICON
        plyer_notification.notify(**kwargs)
    except NotImplementedError:
        logger.warning("No notification backend on this platform")


def notify_trigger(event: TriggerFired, callback=None) -> None:
    """Desktop notification for a fired trigger. Optionally calls callback(title, message)."""
    name = SLOT_NAMES.get(event.prayer_kind, event.prayer_kind)
    if event.kind is TriggerKind.ADHAN:
        title = f"🕌 {name} - Adzan"
        message = f"Waktu {name} telah tiba. Allahu Akbar!"
        timeout = 30
    elif event.kind is TriggerKind.IQOMAH_START:
        title = f"🕌 {name} - Iqomah"
        message = f"Hitung mundur iqomah {name} dimulai."
        timeout = 15
    elif event.kind is TriggerKind.MUROTTAL_START:
        title = f"📖 Murottal {name}"
        message = f"Murottal menjelang {name} diputar."
        timeout = 10
    elif event.kind is TriggerKind.TARHIM_START:
        title = f"📢 Tarhim {name}"
        message = f"Tarhim menjelang {name} diputar."
        timeout = 10
    else:
        return
    _send_plyer(title, message, timeout=timeout)
    if callback:
        callback(title, message)


class DesktopNotifier:
    """Engine listener that turns events into desktop notifications."""

    def __init__(self, callback=None):
        self.callback = callback

    def __call__(self, event) -> None:
        if isinstance(event, TriggerFired):
            notify_trigger(event, self.callback)
        elif isinstance(event, NextPrayerResolved):
            imam = event.roster.imam_name if event.roster else "-"
            logger.info(f"Next: {event.label} {event.at:%H:%M} (imam {imam})")
        elif isinstance(event, OverlayPhaseChanged) and event.phase is OverlayPhase.ACTIVE:
            logger.info(f"Overlay {event.overlay_id} shown")
