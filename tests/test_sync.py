"""Tests for the sync module."""

import copy
import threading
import unittest
from unittest.mock import MagicMock, patch

import requests

from masjid_display.errors import ChannelDisconnected, ConfigUnavailable
from masjid_display.sync import ConfigSource, ConfigSyncChannel, PollingSubscriber, RestConfigSource

SETTINGS_ROW = {
    "id": 1,
    "latitude": -6.2088,
    "longitude": 106.8456,
    "calculation_method": "MuslimWorldLeague",
    "iqomah_countdown_duration": 600,
    "is_ramadan_mode_active": False,
}
ROSTER_ROWS = [
    {"day_of_week": "Jumat", "prayer_name": "Jumat", "imam_name": "Ustadz A", "khatib_name": "Ustadz K", "display_order": 1},
    {"day_of_week": "Senin", "prayer_name": "Subuh", "imam_name": "Ustadz B", "display_order": 2},
]


def _response(body):
    resp = MagicMock()
    resp.json.return_value = body
    resp.raise_for_status = MagicMock()
    return resp


class TestRestConfigSource(unittest.TestCase):
    @patch("masjid_display.sync.requests.get")
    def test_fetch_settings(self, mock_get):
        mock_get.return_value = _response([SETTINGS_ROW])
        source = RestConfigSource("https://example.supabase.co/", "key123")

        row = source.fetch_settings()

        self.assertEqual(row["iqomah_countdown_duration"], 600)
        url = mock_get.call_args[0][0]
        kwargs = mock_get.call_args[1]
        self.assertEqual(url, "https://example.supabase.co/rest/v1/app_settings")
        self.assertEqual(kwargs["params"]["id"], "eq.1")
        self.assertEqual(kwargs["headers"]["apikey"], "key123")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer key123")

    @patch("masjid_display.sync.requests.get")
    def test_fetch_roster(self, mock_get):
        mock_get.return_value = _response(ROSTER_ROWS)
        rows = RestConfigSource("https://example.supabase.co").fetch_roster()
        self.assertEqual(len(rows), 2)
        self.assertEqual(mock_get.call_args[1]["params"]["order"], "display_order.asc")

    @patch("masjid_display.sync.requests.get")
    def test_empty_settings_is_unavailable(self, mock_get):
        mock_get.return_value = _response([])
        with self.assertRaises(ConfigUnavailable):
            RestConfigSource("https://example.supabase.co").fetch_settings()

    @patch("masjid_display.sync.requests.get")
    def test_non_object_row_is_unavailable(self, mock_get):
        mock_get.return_value = _response(["not a row"])
        with self.assertRaises(ConfigUnavailable):
            RestConfigSource("https://example.supabase.co").fetch_settings()

    @patch("masjid_display.sync.requests.get")
    def test_connection_error_is_disconnect(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(ChannelDisconnected):
            RestConfigSource("https://example.supabase.co").fetch_settings()

    @patch("masjid_display.sync.requests.get")
    def test_http_error_is_unavailable(self, mock_get):
        resp = _response(None)
        resp.raise_for_status.side_effect = requests.HTTPError("500")
        mock_get.return_value = resp
        with self.assertRaises(ConfigUnavailable) as ctx:
            RestConfigSource("https://example.supabase.co").fetch_settings()
        self.assertNotIsInstance(ctx.exception, ChannelDisconnected)

    @patch("masjid_display.sync.requests.get")
    def test_bad_json_is_unavailable(self, mock_get):
        resp = _response(None)
        resp.json.side_effect = ValueError("Expecting value")
        mock_get.return_value = resp
        with self.assertRaises(ConfigUnavailable):
            RestConfigSource("https://example.supabase.co").fetch_roster()


class TestConfigSyncChannel(unittest.TestCase):
    def test_default_snapshot_before_any_push(self):
        channel = ConfigSyncChannel()
        self.assertEqual(channel.current().version, 0)
        self.assertEqual(channel.roster(), ())

    def test_update_replaces_whole_snapshot(self):
        channel = ConfigSyncChannel()
        channel.push_snapshot(dict(SETTINGS_ROW, fajr_offset=3))
        updated = channel.push_update({"id": 1, "dhuhr_offset": 2})
        self.assertIs(channel.current(), updated)
        self.assertEqual(updated.version, 2)
        self.assertEqual(updated.offsets.fajr, 0)
        self.assertEqual(updated.offsets.dhuhr, 2)

    def test_subscribers_receive_new_snapshot(self):
        channel = ConfigSyncChannel()
        received = []
        channel.subscribe(received.append)
        settings = channel.push_snapshot(SETTINGS_ROW)
        self.assertEqual(received, [settings])

    def test_cancelled_subscription_stops_delivery(self):
        channel = ConfigSyncChannel()
        callback = MagicMock()
        subscription = channel.subscribe(callback)
        subscription.cancel()
        channel.push_snapshot(SETTINGS_ROW)
        callback.assert_not_called()

    def test_failing_subscriber_does_not_stop_others(self):
        channel = ConfigSyncChannel()
        channel.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        good = MagicMock()
        channel.subscribe(good)
        channel.push_snapshot(SETTINGS_ROW)
        good.assert_called_once()

    def test_subscriber_may_read_channel(self):
        channel = ConfigSyncChannel()
        seen = []
        channel.subscribe(lambda settings: seen.append(channel.current() is settings))
        channel.push_snapshot(SETTINGS_ROW)
        self.assertEqual(seen, [True])

    def test_roster_lookup(self):
        channel = ConfigSyncChannel()
        channel.push_roster(ROSTER_ROWS + [{"imam_name": "no day"}])
        self.assertEqual(len(channel.roster()), 2)
        self.assertEqual(channel.roster_lookup("Jumat", "Jumat").khatib_name, "Ustadz K")
        self.assertIsNone(channel.roster_lookup("Selasa", "Subuh"))

    def test_degraded_flag(self):
        channel = ConfigSyncChannel()
        channel.mark_degraded("timeout")
        self.assertTrue(channel.degraded)
        channel.mark_healthy()
        self.assertFalse(channel.degraded)


class FakeSource(ConfigSource):
    def __init__(self):
        self.row = dict(SETTINGS_ROW)
        self.roster = list(ROSTER_ROWS)
        self.error = None

    def fetch_settings(self):
        if self.error:
            raise self.error
        return copy.copy(self.row)

    def fetch_roster(self):
        if self.error:
            raise self.error
        return list(self.roster)


class TestPollingSubscriber(unittest.TestCase):
    def setUp(self):
        self.source = FakeSource()
        self.channel = ConfigSyncChannel()
        self.poller = PollingSubscriber(self.source, self.channel, interval=0.01)

    def test_poll_pushes_only_changes(self):
        self.assertTrue(self.poller.poll_once())
        self.assertEqual(self.channel.current().version, 1)
        self.assertFalse(self.poller.poll_once())
        self.assertEqual(self.channel.current().version, 1)

        self.source.row["is_ramadan_mode_active"] = True
        self.assertTrue(self.poller.poll_once())
        self.assertTrue(self.channel.current().ramadan_mode)
        self.assertEqual(self.channel.current().version, 2)

    def test_failure_keeps_last_good_snapshot(self):
        self.poller.poll_once()
        good = self.channel.current()
        self.source.error = ChannelDisconnected("offline")
        with self.assertRaises(ChannelDisconnected):
            self.poller.poll_once()
        self.assertIs(self.channel.current(), good)

    def test_background_loop_marks_degraded_and_recovers(self):
        self.source.error = ChannelDisconnected("offline")
        recovered = threading.Event()
        self.channel.subscribe(lambda settings: recovered.set())
        poller = PollingSubscriber(self.source, self.channel, interval=0.01, initial_backoff=0.01, max_backoff=0.02)
        poller.start()
        try:
            for _ in range(200):
                if self.channel.degraded:
                    break
                threading.Event().wait(0.01)
            self.assertTrue(self.channel.degraded)
            self.source.error = None
            self.assertTrue(recovered.wait(2))
        finally:
            poller.cancel()
        self.assertFalse(self.channel.degraded)

    def test_nan_value_falls_back_to_default(self):
        self.source.row = dict(SETTINGS_ROW, iqomah_countdown_duration="nan")
        self.assertTrue(self.poller.poll_once())
        self.assertEqual(self.channel.current().iqomah_seconds, 300)

    def test_unusable_row_does_not_stop_polling(self):
        self.source.row = ["not", "a", "row"]
        applied = threading.Event()
        self.channel.subscribe(lambda settings: settings.ramadan_mode and applied.set())
        poller = PollingSubscriber(self.source, self.channel, interval=0.01, initial_backoff=0.01, max_backoff=0.02)
        poller.start()
        try:
            for _ in range(200):
                if self.channel.degraded:
                    break
                threading.Event().wait(0.01)
            self.assertTrue(self.channel.degraded)
            self.source.row = dict(SETTINGS_ROW, is_ramadan_mode_active=True)
            self.assertTrue(applied.wait(2))
        finally:
            poller.cancel()
        self.assertTrue(self.channel.current().ramadan_mode)
        self.assertFalse(self.channel.degraded)

    def test_cancel_interrupts_wait(self):
        poller = PollingSubscriber(self.source, self.channel, interval=60)
        poller.start()
        poller.cancel()
        self.assertIsNone(poller._thread)


if __name__ == "__main__":
    unittest.main()
