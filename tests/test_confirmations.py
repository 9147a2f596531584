import unittest
from datetime import timedelta

from kitchen_ops.confirmations import ConfirmationTracker
from kitchen_ops.errors import AuthorizationError, ValidationError
from kitchen_ops.models import ConfirmationKey, PendingConfirmation

from support import T0, StoreTestCase

DATE = "2024-05-01"


def minutes(n):
    return T0 + timedelta(minutes=n)


class TestConfirmationTracker(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.add_partner("1", "Asha")
        self.add_partner("2", "Ravi", role="admin")
        self.tracker = ConfirmationTracker(self.store, self.notifier)

    def entry(self, partner_id="1"):
        return self.store.get_confirmation(ConfirmationKey(DATE, partner_id))

    def open_check(self, partner_id="1"):
        with self.store.transaction():
            self.store.put_confirmation(
                ConfirmationKey(DATE, partner_id),
                PendingConfirmation(status="pending", last_updated=T0.isoformat()),
            )

    def test_initiate_prompts_every_partner_with_buttons(self):
        self.assertEqual(self.tracker.initiate(DATE, T0), 2)
        chat_ids = [chat for chat, _, _ in self.sent()]
        self.assertEqual(sorted(chat_ids), ["1", "2"])
        keyboard = self.sent()[0][2]
        payloads = [b["callback_data"] for b in keyboard["inline_keyboard"][0]]
        self.assertEqual(payloads, [f"veg:{DATE}:yes", f"veg:{DATE}:no", f"veg:{DATE}:notyet"])
        entry = self.entry()
        self.assertEqual(entry.status, "pending")
        self.assertIsNone(entry.next_check)

    def test_initiate_skips_confirmed_partners(self):
        self.tracker.initiate(DATE, T0)
        self.tracker.on_response(DATE, "1", "yes", T0)
        self.reset_sends()
        self.assertEqual(self.tracker.initiate(DATE, minutes(5)), 1)
        self.assertEqual(self.sent()[0][0], "2")

    def test_yes_after_no_confirms_and_leaves_tracking(self):
        self.tracker.initiate(DATE, T0)
        self.tracker.on_response(DATE, "1", "no", T0)
        self.tracker.on_response(DATE, "1", "yes", minutes(10))
        self.assertEqual(self.entry().status, "confirmed")

        self.tracker.on_response(DATE, "2", "yes", minutes(10))
        self.reset_sends()
        self.assertEqual(self.tracker.tick(minutes(500)), 0)
        self.assertIsNone(self.entry())
        self.assertEqual(self.store.doc["pendingConfirmations"], {})

    def test_no_gets_one_soft_reminder_then_escalates_at_ninety_minutes(self):
        self.open_check()
        self.tracker.on_response(DATE, "1", "no", T0)

        self.assertEqual(self.tracker.tick(minutes(29)), 0)

        self.assertEqual(self.tracker.tick(minutes(30)), 1)
        self.assertIn("not ready", self.sent_texts()[-1])
        self.reset_sends()

        for n in (31, 60, 89):
            self.assertEqual(self.tracker.tick(minutes(n)), 0)

        self.assertEqual(self.tracker.tick(minutes(90)), 2)
        self.assertTrue(all("URGENT" in t for t in self.sent_texts()))
        self.assertIsNone(self.entry())

        self.reset_sends()
        self.assertEqual(self.tracker.tick(minutes(200)), 0)

    def test_no_after_escalation_does_not_escalate_again(self):
        self.open_check()
        self.tracker.on_response(DATE, "1", "no", T0)
        self.tracker.tick(minutes(30))
        self.assertEqual(self.tracker.tick(minutes(90)), 2)

        reply = self.tracker.on_response(DATE, "1", "no", minutes(100))
        self.assertIn("already escalated", reply)
        self.assertIsNone(self.entry())
        self.reset_sends()
        self.assertEqual(self.tracker.tick(minutes(130)), 0)
        self.assertEqual(self.tracker.tick(minutes(190)), 0)
        self.assertFalse(any("URGENT" in t for t in self.sent_texts()))

        self.assertEqual(self.tracker.initiate(DATE, minutes(200)), 1)
        self.assertEqual(self.sent()[0][0], "2")

    def test_yes_after_escalation_still_confirms(self):
        self.open_check()
        self.tracker.on_response(DATE, "1", "no", T0)
        self.tracker.tick(minutes(30))
        self.tracker.tick(minutes(90))
        self.assertIn("confirmed", self.tracker.on_response(DATE, "1", "yes", minutes(100)))
        self.assertEqual(self.entry().status, "confirmed")

    def test_answer_for_unopened_date_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.tracker.on_response("2031-01-01", "1", "no", T0)
        self.assertEqual(self.store.doc["pendingConfirmations"], {})

    def test_confirmed_partner_is_not_reprompted_after_tick(self):
        self.tracker.initiate(DATE, T0)
        self.tracker.on_response(DATE, "1", "yes", T0)
        self.tracker.tick(T0 + timedelta(seconds=30))
        self.assertIsNone(self.entry())

        self.reset_sends()
        self.assertEqual(self.tracker.initiate(DATE, minutes(5)), 1)
        self.assertEqual([chat for chat, _, _ in self.sent()], ["2"])
        self.assertIn("already confirmed", self.tracker.on_response(DATE, "1", "no", minutes(6)))
        self.assertIsNone(self.entry())

    def test_scenario_stale_no_escalates_and_stays_silent(self):
        with self.store.transaction():
            self.store.put_confirmation(
                ConfirmationKey(DATE, "1"),
                PendingConfirmation(status="no", last_updated=T0.isoformat(), next_check=None),
            )
        self.assertEqual(self.tracker.tick(minutes(95)), 2)
        self.assertTrue(all("URGENT" in t for t in self.sent_texts()))
        self.assertIsNone(self.entry())
        self.reset_sends()
        self.assertEqual(self.tracker.tick(minutes(200)), 0)

    def test_notyet_is_reprompted_every_followup(self):
        self.open_check()
        self.tracker.on_response(DATE, "1", "notyet", T0)
        self.assertEqual(self.tracker.tick(minutes(30)), 1)
        self.assertEqual(self.tracker.tick(minutes(45)), 0)
        self.assertEqual(self.tracker.tick(minutes(60)), 1)
        self.assertEqual(self.entry().status, "notyet")

    def test_unanswered_prompt_is_repeated_after_first_window(self):
        self.tracker.initiate(DATE, T0)
        self.reset_sends()
        self.assertEqual(self.tracker.tick(minutes(29)), 0)
        self.assertEqual(self.tracker.tick(minutes(30)), 2)
        self.assertTrue(all("Reminder" in t for t in self.sent_texts()))

    def test_unknown_answer_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.tracker.on_response(DATE, "1", "maybe", T0)

    def test_non_partner_cannot_answer(self):
        with self.assertRaises(AuthorizationError):
            self.tracker.on_response(DATE, "999", "yes", T0)

    def test_daily_trigger_fires_once_per_business_date(self):
        before = T0.replace(hour=4, minute=0)  # 09:30 IST, before 10:00
        self.assertEqual(self.tracker.maybe_initiate_daily(before), 0)
        self.assertEqual(self.tracker.maybe_initiate_daily(T0), 2)
        self.assertEqual(self.tracker.maybe_initiate_daily(minutes(1)), 0)
        self.assertIn("vegConfirm__2024-05-01", self.store.doc["lastSent"])


if __name__ == "__main__":
    unittest.main()
