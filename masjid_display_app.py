#!/usr/bin/env python3
"""
Masjid Display Engine
Headless runner for the masjid live display:
  - Pulls settings and the imam/muezzin roster from the settings store
  - Prints the next prayer with its countdown once a second
  - Sends desktop notifications for murottal, tarhim, adhan and iqomah

Configured from the environment (or a .env file):
  MASJID_SETTINGS_URL   base URL of the settings REST API (omit to run on defaults)
  MASJID_API_KEY        API key sent with every request
  MASJID_TIMEZONE       fallback timezone when the settings row has none
  MASJID_POLL_SECONDS   seconds between settings polls
  MASJID_LOG_LEVEL      DEBUG, INFO, WARNING, ...
"""

import logging
import os
import sys
import time

from dotenv import load_dotenv

from masjid_display.config import DEFAULT_LOCATION
from masjid_display.engine import IMSAK_COUNTDOWN, NEXT_PRAYER_COUNTDOWN, DisplayEngine
from masjid_display.notifier import DesktopNotifier
from masjid_display.sync import ConfigSyncChannel, PollingSubscriber, RestConfigSource

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


def setup_logging(level_name: str = "INFO") -> None:
    """Stdout logging for the whole process."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)
    level = getattr(logging, level_name.upper(), None)
    if not isinstance(level, int):
        level = logging.INFO
    root_logger.setLevel(level)


def load_env() -> dict:
    return {
        "settings_url": os.environ.get("MASJID_SETTINGS_URL", ""),
        "api_key": os.environ.get("MASJID_API_KEY", ""),
        "timezone": os.environ.get("MASJID_TIMEZONE") or DEFAULT_LOCATION["timezone"],
        "poll_seconds": float(os.environ.get("MASJID_POLL_SECONDS") or 30),
        "log_level": os.environ.get("MASJID_LOG_LEVEL") or "INFO",
    }


def build_engine(env: dict) -> DisplayEngine:
    channel = ConfigSyncChannel(timezone=env["timezone"])
    poller = None
    if env["settings_url"]:
        source = RestConfigSource(env["settings_url"], env["api_key"])
        poller = PollingSubscriber(source, channel, interval=env["poll_seconds"])
    else:
        logger.warning("MASJID_SETTINGS_URL not set; running on default settings")
    engine = DisplayEngine(channel, poller=poller)
    engine.add_listener(DesktopNotifier())
    return engine


def main():
    load_dotenv()
    env = load_env()
    setup_logging(env["log_level"])

    engine = build_engine(env)
    engine.start()
    try:
        while True:
            state = engine.current_state()
            upcoming = state.resolution.next_prayer
            status = "degraded" if engine.channel.degraded else "live"
            print(
                f"\r{upcoming.label} {upcoming.at:%H:%M}  "
                f"{engine.countdown_text(NEXT_PRAYER_COUNTDOWN)}  "
                f"imsak {engine.countdown_text(IMSAK_COUNTDOWN)}  [{status}]",
                end="",
                flush=True,
            )
            time.sleep(1)
    except KeyboardInterrupt:
        print()
    finally:
        engine.close()


if __name__ == "__main__":
    main()
