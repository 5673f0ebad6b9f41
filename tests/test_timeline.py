"""Tests for the timeline module."""

import datetime
import unittest

import pytz

from masjid_display.config import PrayerKind, Settings, settings_from_row
from masjid_display.schedule import ResolvedPrayer
from masjid_display.timeline import (
    TriggerDispatcher,
    TriggerEvent,
    TriggerKind,
    derive_events,
    format_clock,
    format_countdown,
    upcoming_imsak,
)

WIB = pytz.timezone("Asia/Jakarta")
MAGHRIB_AT = WIB.localize(datetime.datetime(2024, 3, 14, 18, 5))
IMSAK_AT = WIB.localize(datetime.datetime(2024, 3, 15, 4, 30))
MAGHRIB = ResolvedPrayer(PrayerKind.MAGHRIB, "Maghrib", MAGHRIB_AT)


def kinds(events):
    return [(e.kind, e.prayer_kind) for e in events]


class TestFormatCountdown(unittest.TestCase):
    def test_months_and_days(self):
        self.assertEqual(format_countdown(datetime.timedelta(days=95)), "3 bulan 5 hari")

    def test_days_hours_minutes(self):
        delta = datetime.timedelta(days=2, hours=3, minutes=10)
        self.assertEqual(format_countdown(delta), "2 hari 03 jam 10 menit")

    def test_under_a_day(self):
        delta = datetime.timedelta(hours=5, minutes=3, seconds=9)
        self.assertEqual(format_countdown(delta), "05:03:09")

    def test_week_or_more_drops_clock(self):
        self.assertEqual(format_countdown(datetime.timedelta(days=10, hours=4)), "10 hari")

    def test_years(self):
        self.assertEqual(format_countdown(datetime.timedelta(days=365 + 31)), "1 tahun 1 bulan 1 hari")

    def test_past_is_zero(self):
        self.assertEqual(format_countdown(datetime.timedelta(seconds=-30)), "00:00:00")

    def test_clock(self):
        self.assertEqual(format_clock(datetime.timedelta(minutes=4, seconds=5)), "04:05")
        self.assertEqual(format_clock(datetime.timedelta(seconds=-1)), "00:00")


class TestDeriveEvents(unittest.TestCase):
    def test_adhan_and_iqomah_always_present(self):
        events = derive_events(Settings(), MAGHRIB, IMSAK_AT)
        self.assertIn((TriggerKind.ADHAN, "maghrib"), kinds(events))
        iqomah = [e for e in events if e.kind is TriggerKind.IQOMAH_START][0]
        self.assertEqual(iqomah.fire_at, MAGHRIB_AT)
        self.assertEqual(iqomah.window_end, MAGHRIB_AT + datetime.timedelta(seconds=300))

    def test_inactive_audio_never_emitted(self):
        events = derive_events(Settings(), MAGHRIB, IMSAK_AT)
        for event in events:
            self.assertNotIn(event.kind, (TriggerKind.MUROTTAL_START, TriggerKind.TARHIM_START))

    def test_active_murottal_and_tarhim(self):
        settings = settings_from_row(
            {
                "murottal_active_maghrib": True,
                "murottal_pre_adhan_duration_maghrib": 10,
                "tarhim_active_maghrib": True,
                "tarhim_pre_adhan_duration_maghrib": 300,
            }
        )
        events = derive_events(settings, MAGHRIB, IMSAK_AT)
        murottal = [e for e in events if e.kind is TriggerKind.MUROTTAL_START][0]
        tarhim = [e for e in events if e.kind is TriggerKind.TARHIM_START][0]
        self.assertEqual(murottal.fire_at, MAGHRIB_AT - datetime.timedelta(minutes=10))
        self.assertEqual(murottal.window_end, MAGHRIB_AT)
        self.assertEqual(tarhim.fire_at, MAGHRIB_AT - datetime.timedelta(seconds=300))

    def test_master_audio_off_silences_everything(self):
        settings = settings_from_row(
            {"murottal_active": True, "tarhim_active": True, "is_master_audio_active": False}
        )
        events = derive_events(settings, MAGHRIB, IMSAK_AT)
        self.assertEqual(
            sorted(e.kind.value for e in events),
            ["adhan", "imsak-window", "iqomah-start"],
        )

    def test_imsak_murottal_only_in_ramadan(self):
        row = {"murottal_active_imsak": True, "murottal_pre_adhan_duration_imsak": 5}
        plain = derive_events(settings_from_row(row), MAGHRIB, IMSAK_AT)
        ramadan = derive_events(settings_from_row(dict(row, is_ramadan_mode_active=True)), MAGHRIB, IMSAK_AT)
        self.assertNotIn((TriggerKind.MUROTTAL_START, "imsak"), kinds(plain))
        self.assertIn((TriggerKind.MUROTTAL_START, "imsak"), kinds(ramadan))

    def test_imsak_window(self):
        events = derive_events(Settings(imsak_overlay_seconds=10), MAGHRIB, IMSAK_AT)
        window = [e for e in events if e.kind is TriggerKind.IMSAK_WINDOW][0]
        self.assertEqual(window.window(), (IMSAK_AT, IMSAK_AT + datetime.timedelta(seconds=10)))

    def test_sorted_and_deterministic(self):
        settings = settings_from_row({"murottal_active": True, "tarhim_active": True})
        first = derive_events(settings, MAGHRIB, IMSAK_AT)
        self.assertEqual(first, derive_events(settings, MAGHRIB, IMSAK_AT))
        self.assertEqual([e.fire_at for e in first], sorted(e.fire_at for e in first))

    def test_previous_prayer_included(self):
        asr = ResolvedPrayer(PrayerKind.ASR, "Ashar", WIB.localize(datetime.datetime(2024, 3, 14, 15, 15)))
        events = derive_events(Settings(), MAGHRIB, IMSAK_AT, previous_prayer=asr)
        self.assertIn((TriggerKind.ADHAN, "asr"), kinds(events))
        self.assertIn((TriggerKind.ADHAN, "maghrib"), kinds(events))


class TestUpcomingImsak(unittest.TestCase):
    def test_today_until_window_ends(self):
        today = WIB.localize(datetime.datetime(2024, 3, 14, 4, 30))
        tomorrow = IMSAK_AT
        self.assertEqual(upcoming_imsak(today + datetime.timedelta(seconds=9), today, tomorrow, 10), today)
        self.assertEqual(upcoming_imsak(today + datetime.timedelta(seconds=10), today, tomorrow, 10), tomorrow)


class TestTriggerDispatcher(unittest.TestCase):
    def setUp(self):
        self.dispatcher = TriggerDispatcher()
        self.events = derive_events(Settings(), MAGHRIB, IMSAK_AT)

    def test_fires_once_at_instant(self):
        before = self.dispatcher.evaluate(self.events, MAGHRIB_AT - datetime.timedelta(seconds=1))
        self.assertEqual(before, [])
        fired = self.dispatcher.evaluate(self.events, MAGHRIB_AT)
        self.assertEqual(sorted(e.kind.value for e in fired), ["adhan", "iqomah-start"])
        again = self.dispatcher.evaluate(self.events, MAGHRIB_AT + datetime.timedelta(seconds=1))
        self.assertEqual(again, [])

    def test_late_tick_within_grace_still_fires_adhan(self):
        fired = self.dispatcher.evaluate(self.events, MAGHRIB_AT + datetime.timedelta(seconds=2))
        self.assertIn(TriggerKind.ADHAN, [e.kind for e in fired])

    def test_imsak_window_is_not_fired(self):
        fired = self.dispatcher.evaluate(self.events, IMSAK_AT)
        self.assertEqual(fired, [])

    def test_config_change_moves_pending_event(self):
        row = {"murottal_active_maghrib": True, "murottal_pre_adhan_duration_maghrib": 10}
        now = MAGHRIB_AT - datetime.timedelta(minutes=12)
        self.assertEqual(self.dispatcher.evaluate(derive_events(settings_from_row(row), MAGHRIB, IMSAK_AT), now), [])
        # Lead raised to 15 minutes: the lead-in is now already running.
        row["murottal_pre_adhan_duration_maghrib"] = 15
        fired = self.dispatcher.evaluate(derive_events(settings_from_row(row), MAGHRIB, IMSAK_AT), now)
        self.assertEqual(kinds(fired), [(TriggerKind.MUROTTAL_START, "maghrib")])

    def test_changed_lead_does_not_replay_started_murottal(self):
        row = {"murottal_active_maghrib": True, "murottal_pre_adhan_duration_maghrib": 10}
        now = MAGHRIB_AT - datetime.timedelta(minutes=5)
        fired = self.dispatcher.evaluate(derive_events(settings_from_row(row), MAGHRIB, IMSAK_AT), now)
        self.assertEqual(len(fired), 1)
        row["murottal_pre_adhan_duration_maghrib"] = 8
        again = self.dispatcher.evaluate(derive_events(settings_from_row(row), MAGHRIB, IMSAK_AT), now)
        self.assertEqual(again, [])

    def test_disabled_murottal_never_fires(self):
        row = {"murottal_active_maghrib": True, "murottal_pre_adhan_duration_maghrib": 10}
        now = MAGHRIB_AT - datetime.timedelta(minutes=5)
        row["murottal_active_maghrib"] = False
        fired = self.dispatcher.evaluate(derive_events(settings_from_row(row), MAGHRIB, IMSAK_AT), now)
        self.assertEqual(fired, [])

    def test_event_is_due_window(self):
        event = TriggerEvent(TriggerKind.ADHAN, "fajr", MAGHRIB_AT)
        self.assertFalse(event.is_due(MAGHRIB_AT - datetime.timedelta(microseconds=1)))
        self.assertTrue(event.is_due(MAGHRIB_AT))
        self.assertFalse(event.is_due(MAGHRIB_AT + datetime.timedelta(seconds=5)))


if __name__ == "__main__":
    unittest.main()
