import unittest
from datetime import date, datetime, timedelta, timezone

from kitchen_ops.errors import NotFoundError, ValidationError
from kitchen_ops.staff import StaffService, format_money, next_payday, payday_in_month

from support import T0, StoreTestCase

# 21:00 in Asia/Kolkata
EVENING = datetime(2024, 5, 1, 15, 30, tzinfo=timezone.utc)


class TestPaydayHelpers(unittest.TestCase):

    def test_payday_clamps_to_month_end(self):
        self.assertEqual(payday_in_month(2024, 2, 31), date(2024, 2, 29))
        self.assertEqual(payday_in_month(2023, 4, 31), date(2023, 4, 30))

    def test_next_payday_rolls_into_next_month(self):
        self.assertEqual(next_payday(date(2024, 1, 31), 30), date(2024, 2, 29))
        self.assertEqual(next_payday(date(2024, 12, 20), 5), date(2025, 1, 5))
        self.assertEqual(next_payday(date(2024, 5, 5), 5), date(2024, 5, 5))

    def test_format_money(self):
        self.assertEqual(format_money(1500), "₹1,500")
        self.assertEqual(format_money(99.5), "₹99.50")


class TestStaffService(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.add_partner("1", "Asha", role="owner")
        self.add_partner("2", "Ravi", role="staff")
        self.service = StaffService(self.store, self.notifier)

    def test_ensure_staff_creates_once(self):
        first = self.service.ensure_staff("7", "Kiran", T0)
        second = self.service.ensure_staff("7", "Someone else", T0)
        self.assertEqual(first.id, second.id)
        self.assertEqual(second.name, "Kiran")
        self.assertEqual(second.salary_type, "daily")
        self.assertEqual(second.salary_amount, 0)

    def test_clock_in_and_out(self):
        self.service.ensure_staff("7", "Kiran", T0)
        self.assertIn("Clocked in", self.service.clock_in("7", T0))
        self.assertIn("Already clocked in", self.service.clock_in("7", T0 + timedelta(minutes=5)))
        reply = self.service.clock_out("7", T0 + timedelta(hours=8))
        self.assertIn("8.0 hours", reply)
        entry = self.store.get_staff("7").attendance["2024-05-01"]
        self.assertEqual(entry.status, "present")
        self.assertIsNotNone(entry.clock_out)

    def test_clock_out_before_clock_in_is_rejected(self):
        self.service.ensure_staff("7", "Kiran", T0)
        with self.assertRaises(ValidationError):
            self.service.clock_out("7", T0)

    def test_mark_attendance_keeps_clock_times(self):
        self.service.ensure_staff("7", "Kiran", T0)
        self.service.clock_in("7", T0)
        self.service.mark_attendance("7", "leave", "1", T0)
        entry = self.store.get_staff("7").attendance["2024-05-01"]
        self.assertEqual(entry.status, "leave")
        self.assertIsNotNone(entry.clock_in)
        with self.assertRaises(ValidationError):
            self.service.mark_attendance("7", "sick", "1", T0)

    def test_attendance_prompt_once_per_day_for_unmarked_staff(self):
        self.service.ensure_staff("7", "Kiran", T0)
        self.service.ensure_staff("8", "Meena", T0)
        self.service.clock_in("8", T0)

        before = T0.replace(hour=4, minute=30)  # 10:00 IST
        self.assertEqual(self.service.prompt_attendance(before), 0)

        self.assertEqual(self.service.prompt_attendance(T0), 1)
        chat_id, text, keyboard = self.sent()[0]
        self.assertEqual(chat_id, "1")
        self.assertIn("Kiran", text)
        payloads = [b["callback_data"] for b in keyboard["inline_keyboard"][0]]
        self.assertEqual(payloads, ["att:7:present", "att:7:absent", "att:7:leave"])

        self.assertEqual(self.service.prompt_attendance(T0 + timedelta(minutes=1)), 0)

    def test_daily_wage_prompt_and_full_payment(self):
        self.service.add_employee("7", "Kiran", "daily", 600, 1, "1", T0)
        self.service.clock_in("7", T0)

        self.assertEqual(self.service.check_daily_payments(EVENING), 1)
        keyboard = self.sent()[0][2]
        self.assertEqual(keyboard["inline_keyboard"][0][0]["callback_data"], "pay:7:yes")
        self.assertEqual(self.service.check_daily_payments(EVENING + timedelta(minutes=1)), 0)

        reply, needs_amount = self.service.answer_payment("7", "yes", "1", EVENING)
        self.assertFalse(needs_amount)
        self.assertIn("₹600", reply)
        record = self.store.get_staff("7")
        self.assertEqual([(p.amount, p.kind) for p in record.payments], [(600, "full")])
        self.assertEqual(self.store.get_payment_prompt("2024-05-01__7").status, "paid")

        with self.assertRaises(NotFoundError):
            self.service.answer_payment("7", "yes", "1", EVENING)

    def test_absent_daily_staff_is_not_asked(self):
        self.service.add_employee("7", "Kiran", "daily", 600, 1, "1", T0)
        self.service.mark_attendance("7", "absent", "1", T0)
        self.assertEqual(self.service.check_daily_payments(EVENING), 0)

    def test_partial_payment(self):
        self.service.add_employee("7", "Kiran", "daily", 600, 1, "1", T0)
        self.service.clock_in("7", T0)
        self.service.check_daily_payments(EVENING)

        reply, needs_amount = self.service.answer_payment("7", "partial", "1", EVENING)
        self.assertTrue(needs_amount)
        self.assertEqual(self.store.get_payment_prompt("2024-05-01__7").status, "asked")

        reply = self.service.record_partial_payment("7", 250, "1", EVENING)
        self.assertIn("Remaining: ₹350", reply)
        self.assertEqual(self.store.get_payment_prompt("2024-05-01__7").status, "partial")
        self.assertEqual(self.store.get_staff("7").payments[0].kind, "partial")

    def test_not_paid(self):
        self.service.add_employee("7", "Kiran", "daily", 600, 1, "1", T0)
        self.service.clock_in("7", T0)
        self.service.check_daily_payments(EVENING)
        self.service.answer_payment("7", "no", "1", EVENING)
        self.assertEqual(self.store.get_payment_prompt("2024-05-01__7").status, "unpaid")
        self.assertEqual(self.store.get_staff("7").payments, [])

    def test_monthly_heads_up_and_payday(self):
        self.service.add_employee("9", "Meena", "monthly", 15000, 5, "1", T0)

        heads_up_day = datetime(2024, 5, 2, 6, 0, tzinfo=timezone.utc)
        self.assertEqual(self.service.check_monthly_payroll(heads_up_day), 1)
        self.assertIn("Upcoming payday", self.sent_texts()[-1])
        self.assertEqual(self.service.check_monthly_payroll(heads_up_day + timedelta(hours=1)), 0)

        quiet_day = datetime(2024, 5, 3, 6, 0, tzinfo=timezone.utc)
        self.assertEqual(self.service.check_monthly_payroll(quiet_day), 0)

        payday = datetime(2024, 5, 5, 6, 0, tzinfo=timezone.utc)
        self.assertEqual(self.service.check_monthly_payroll(payday), 1)
        prompt = self.store.get_payment_prompt("2024-05-05__9")
        self.assertEqual((prompt.kind, prompt.amount, prompt.status), ("monthly", 15000, "asked"))

    def test_set_role_promotes_staff_to_partner(self):
        self.service.ensure_staff("7", "Kiran", T0)
        self.service.set_role("7", "admin", "1", T0)
        partner = self.store.get_partner("7")
        self.assertEqual(partner.role, "admin")
        self.assertEqual(self.store.get_staff("7").role, "admin")

    def test_set_role_validation(self):
        with self.assertRaises(ValidationError):
            self.service.set_role("2", "chef", "1", T0)
        with self.assertRaises(NotFoundError):
            self.service.set_role("404", "admin", "1", T0)

    def test_set_salary(self):
        self.service.ensure_staff("7", "Kiran", T0)
        record = self.service.set_salary("7", "monthly", 12000, 28, "1", T0)
        self.assertEqual((record.salary_type, record.salary_amount, record.payday), ("monthly", 12000, 28))
        with self.assertRaises(ValidationError):
            self.service.set_salary("7", "weekly", 100, 1, "1", T0)

    def test_summaries(self):
        self.service.add_employee("7", "Kiran", "daily", 600, 1, "1", T0)
        self.service.clock_in("7", T0)
        self.assertIn("Present: 1", self.service.attendance_summary("7", "2024-05"))
        self.assertIn("₹600", self.service.salary_summary("7"))


if __name__ == "__main__":
    unittest.main()
