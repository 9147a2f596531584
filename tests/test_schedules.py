import unittest
from datetime import datetime, timedelta, timezone

from kitchen_ops.errors import NotFoundError, ValidationError
from kitchen_ops.models import Partner, Schedule
from kitchen_ops.schedules import ScheduleService, should_send

from support import StoreTestCase

# 09:00 in Asia/Kolkata
MORNING_IST = datetime(2024, 5, 1, 3, 30, tzinfo=timezone.utc)


class TestShouldSend(unittest.TestCase):

    def setUp(self):
        self.schedule = Schedule(id="veg", label="Vegetables", time="09:00", message="Check list", interval_days=1)
        self.partner = Partner(id="1", name="Asha", tz="Asia/Kolkata")

    def test_matches_partner_local_minute_only(self):
        self.assertTrue(should_send(self.schedule, self.partner, MORNING_IST, None))
        self.assertFalse(should_send(self.schedule, self.partner, MORNING_IST + timedelta(minutes=1), None))
        utc_partner = Partner(id="2", name="Sam", tz="UTC")
        self.assertFalse(should_send(self.schedule, utc_partner, MORNING_IST, None))

    def test_same_day_is_suppressed(self):
        last = (MORNING_IST - timedelta(seconds=30)).isoformat()
        self.assertFalse(should_send(self.schedule, self.partner, MORNING_IST, last))

    def test_interval_days(self):
        self.schedule.interval_days = 3
        last = (MORNING_IST - timedelta(days=2)).isoformat()
        self.assertFalse(should_send(self.schedule, self.partner, MORNING_IST, last))
        last = (MORNING_IST - timedelta(days=3)).isoformat()
        self.assertTrue(should_send(self.schedule, self.partner, MORNING_IST, last))


class TestScheduleService(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.add_partner("1", "Asha", tz="Asia/Kolkata")
        self.add_partner("2", "Sam", tz="UTC")
        self.service = ScheduleService(self.store, self.notifier)
        self.service.upsert("veg", 1, "09:00", "Check the vegetable list", "1", MORNING_IST)

    def test_tick_sends_once_per_partner_per_day(self):
        self.assertEqual(self.service.tick(MORNING_IST), 1)
        self.assertEqual(self.sent()[0][0], "1")
        self.assertIn("Check the vegetable list", self.sent_texts()[0])
        self.assertIn("veg__1", self.store.doc["lastSent"])

        self.assertEqual(self.service.tick(MORNING_IST + timedelta(seconds=30)), 0)
        self.assertEqual(self.service.tick(MORNING_IST + timedelta(days=1)), 1)

    def test_upsert_updates_existing(self):
        schedule = self.service.upsert("veg", 2, "08:30", "New text", "1", MORNING_IST)
        self.assertEqual((schedule.interval_days, schedule.time, schedule.message), (2, "08:30", "New text"))
        self.assertEqual(len(self.store.schedules()), 1)

    def test_upsert_rejects_bad_time(self):
        with self.assertRaises(ValidationError):
            self.service.upsert("x", 1, "nine", "msg", "1", MORNING_IST)

    def test_bad_stored_time_is_skipped(self):
        with self.store.transaction():
            self.store.put_schedule(Schedule(id="bad", label="Bad", time="xx", message="m"))
        self.assertEqual(self.service.tick(MORNING_IST), 1)

    def test_send_test_goes_to_every_partner(self):
        self.assertEqual(self.service.send_test("veg", MORNING_IST), 2)
        self.assertTrue(all("TEST" in t for t in self.sent_texts()))
        with self.assertRaises(NotFoundError):
            self.service.send_test("nope", MORNING_IST)

    def test_list_text(self):
        self.assertIn("every 1 day(s) at 09:00", self.service.list_text())


if __name__ == "__main__":
    unittest.main()
