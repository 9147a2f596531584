import unittest
from datetime import timedelta

from kitchen_ops.inventory import InventoryMonitor
from kitchen_ops.models import Session
from kitchen_ops.sessions import FLOWS, FlowContext, SessionManager, advance, first_open_step, is_expired

from support import T0, StoreTestCase


class TestFlowHelpers(unittest.TestCase):

    def test_first_open_step_skips_prefilled_fields(self):
        self.assertEqual(first_open_step("set_usage", {}), 0)
        self.assertEqual(first_open_step("set_usage", {"item": "abc"}), 1)
        self.assertEqual(first_open_step("pay_partial", {"amount": 5}), 1)

    def test_is_expired(self):
        session = Session(action="purchase", updated_at=T0.isoformat())
        self.assertFalse(is_expired(session, T0 + timedelta(minutes=30)))
        self.assertTrue(is_expired(session, T0 + timedelta(minutes=31)))
        self.assertFalse(is_expired(Session(action="purchase"), T0 + timedelta(days=1)))

    def test_every_flow_has_steps(self):
        for action, steps in FLOWS.items():
            self.assertTrue(steps, action)


class TestAdvance(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.ctx = FlowContext(self.store, T0, tz="UTC", user_id="1")
        self.monitor = InventoryMonitor(self.store, self.notifier)
        self.onion = self.monitor.add_item("Onion", "kg", 20, 5, "1", T0)

    def test_bad_input_keeps_step_and_replies_with_error(self):
        session = Session(action="purchase", step=0, updated_at=T0.isoformat())
        result = advance(session, "Garlic", self.ctx)
        self.assertIs(result.session, session)
        self.assertEqual(result.reply, "❌ Item 'Garlic' not found")
        self.assertIsNone(result.completed)

    def test_purchase_flow_completes(self):
        session = Session(action="purchase", step=0, updated_at=T0.isoformat())
        result = advance(session, "onion", self.ctx)
        self.assertEqual(result.session.step, 1)
        self.assertEqual(result.session.temp, {"item": self.onion.id})
        self.assertIn("How much", result.reply)

        result = advance(result.session, "-3", self.ctx)
        self.assertEqual(result.reply, "❌ Please enter an amount greater than 0")

        result = advance(result.session, "2.5", self.ctx)
        self.assertIsNone(result.session)
        self.assertEqual(result.completed, {"item": self.onion.id, "quantity": 2.5})

    def test_add_item_rejects_existing_name(self):
        session = Session(action="add_item", step=0)
        result = advance(session, "ONION", self.ctx)
        self.assertIs(result.session, session)
        self.assertIn("already exists", result.reply)

    def test_reminder_target_me_resolves_to_user(self):
        session = Session(action="add_reminder", step=3, temp={"text": "x", "when": T0.isoformat(), "repeat": "once"})
        result = advance(session, "me", self.ctx)
        self.assertEqual(result.completed["target"], "1")

    def test_reminder_when_is_stored_as_iso(self):
        session = Session(action="add_reminder", step=1, temp={"text": "Call supplier"})
        result = advance(session, "in 30m", self.ctx)
        self.assertEqual(result.session.temp["when"], (T0 + timedelta(minutes=30)).isoformat())
        self.assertEqual(result.session.step, 2)

    def test_stale_step_is_rejected(self):
        result = advance(Session(action="purchase", step=9), "x", self.ctx)
        self.assertIsNone(result.session)
        self.assertIsNone(result.completed)


class TestSessionManager(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.manager = SessionManager(self.store)
        self.ctx = FlowContext(self.store, T0, user_id="1")

    def test_start_with_prefill_skips_answered_steps(self):
        prompt = self.manager.start("1", "pay_partial", T0)
        self.assertIn("How much", prompt)
        prompt = self.manager.start("1", "set_usage", T0, temp={"item": "abc"})
        self.assertIn("usage per day", prompt)
        self.assertEqual(self.store.get_session("1").step, 1)

    def test_unknown_flow(self):
        with self.assertRaises(KeyError):
            self.manager.start("1", "launch_rockets", T0)

    def test_handle_to_completion_clears_session(self):
        self.manager.start("1", "pay_partial", T0)
        result = self.manager.handle("1", "abc", self.ctx)
        self.assertIsNotNone(self.store.get_session("1"))
        result = self.manager.handle("1", "150", self.ctx)
        self.assertEqual(result.completed, {"amount": 150.0})
        self.assertIsNone(self.store.get_session("1"))

    def test_handle_without_session(self):
        result = self.manager.handle("1", "150", self.ctx)
        self.assertIsNone(result.completed)
        self.assertIn("timed out", result.reply)

    def test_expiry_and_purge(self):
        self.manager.start("1", "pay_partial", T0)
        self.manager.start("2", "pay_partial", T0 + timedelta(minutes=20))

        session, expired = self.manager.active("1", T0 + timedelta(minutes=10))
        self.assertIsNotNone(session)
        self.assertFalse(expired)

        self.assertEqual(self.manager.purge_expired(T0 + timedelta(minutes=45)), 1)
        self.assertIsNone(self.store.get_session("1"))
        self.assertIsNotNone(self.store.get_session("2"))

        session, expired = self.manager.active("2", T0 + timedelta(hours=2))
        self.assertIsNone(session)
        self.assertTrue(expired)

    def test_cancel(self):
        self.manager.start("1", "admin_login", T0)
        self.assertEqual(self.manager.cancel("1"), "admin_login")
        self.assertIsNone(self.manager.cancel("1"))


if __name__ == "__main__":
    unittest.main()
