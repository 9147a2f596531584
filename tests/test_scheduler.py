import unittest
from datetime import timedelta
from unittest.mock import MagicMock, Mock

from kitchen_ops.confirmations import ConfirmationTracker
from kitchen_ops.heartbeat import HeartbeatMonitor
from kitchen_ops.inventory import InventoryMonitor
from kitchen_ops.reminders import ReminderEngine
from kitchen_ops.scheduler import SchedulerTick
from kitchen_ops.schedules import ScheduleService
from kitchen_ops.sessions import SessionManager
from kitchen_ops.staff import StaffService

from support import T0, StoreTestCase

STEP_ORDER = [
    "refresh", "schedules", "veg_daily", "veg_followups", "reminders", "attendance_prompt",
    "daily_payments", "monthly_payroll", "inventory", "heartbeat", "sessions",
]


class TestSchedulerTickOrdering(unittest.TestCase):

    def setUp(self):
        self.calls = []
        self.parts = {}
        for name in ("store", "schedules", "confirmations", "reminders", "staff", "inventory",
                     "heartbeat", "sessions"):
            self.parts[name] = MagicMock(name=name)
        wiring = {
            "refresh": (self.parts["store"], "refresh"),
            "schedules": (self.parts["schedules"], "tick"),
            "veg_daily": (self.parts["confirmations"], "maybe_initiate_daily"),
            "veg_followups": (self.parts["confirmations"], "tick"),
            "reminders": (self.parts["reminders"], "tick"),
            "attendance_prompt": (self.parts["staff"], "prompt_attendance"),
            "daily_payments": (self.parts["staff"], "check_daily_payments"),
            "monthly_payroll": (self.parts["staff"], "check_monthly_payroll"),
            "inventory": (self.parts["inventory"], "evaluate_all"),
            "heartbeat": (self.parts["heartbeat"], "check"),
            "sessions": (self.parts["sessions"], "purge_expired"),
        }
        for step, (part, method) in wiring.items():
            setattr(part, method, Mock(side_effect=lambda *a, _step=step: self.calls.append(_step)))
        self.tick = SchedulerTick(**self.parts)

    def test_steps_run_in_order(self):
        self.tick.run_once(T0)
        self.assertEqual(self.calls, STEP_ORDER)
        self.assertEqual(self.tick.last_run, T0)
        self.assertEqual(self.tick.last_errors, {})

    def test_failing_step_does_not_stop_the_rest(self):
        self.parts["reminders"].tick.side_effect = RuntimeError("boom")
        results = self.tick.run_once(T0)
        self.assertEqual(self.calls, [s for s in STEP_ORDER if s != "reminders"])
        self.assertEqual(self.tick.last_errors, {"reminders": "boom"})
        self.assertNotIn("reminders", results)

    def test_clock_is_used_when_no_time_given(self):
        self.tick.clock = lambda: T0
        self.tick.run_once()
        self.parts["heartbeat"].check.assert_called_once_with(T0)

    def test_sessions_step_is_optional(self):
        self.parts["sessions"] = None
        tick = SchedulerTick(**self.parts)
        self.assertNotIn("sessions", [name for name, _ in tick.steps()])


class TestSchedulerTickIntegration(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.add_partner("1", "Asha", tz="Asia/Kolkata")
        self.inventory = InventoryMonitor(self.store, self.notifier)
        self.reminders = ReminderEngine(self.store, self.notifier)
        self.tick = SchedulerTick(
            self.store,
            ScheduleService(self.store, self.notifier),
            ConfirmationTracker(self.store, self.notifier),
            self.reminders,
            StaffService(self.store, self.notifier),
            self.inventory,
            HeartbeatMonitor(self.store, self.notifier),
            SessionManager(self.store),
        )

    def test_one_tick_drives_every_engine(self):
        self.inventory.add_item("Onion", "kg", 10, 5, "1", T0)
        self.reminders.create("1", "1", "Close shop", T0, "once", T0)

        results = self.tick.run_once(T0)

        self.assertEqual(self.tick.last_errors, {})
        self.assertEqual(results["veg_daily"], 1)
        self.assertEqual(results["reminders"], 1)
        self.assertEqual(results["inventory"], 2)
        texts = "\n".join(self.sent_texts())
        self.assertIn("Vegetable List Check", texts)
        self.assertIn("Close shop", texts)
        self.assertIn("LOW STOCK", texts)
        self.assertIn("CRITICAL STOCK", texts)

    def test_second_tick_is_quiet(self):
        self.inventory.add_item("Onion", "kg", 10, 5, "1", T0)
        self.tick.run_once(T0)
        self.reset_sends()
        self.tick.run_once(T0 + timedelta(seconds=30))
        self.client.send_message.assert_not_called()


if __name__ == "__main__":
    unittest.main()
