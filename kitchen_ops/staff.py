"""
Staff records, attendance and payroll.

Attendance is kept per staff-local calendar day. Owners and admins are asked
every morning to mark anyone who has not clocked in, and are asked to pay
daily-wage staff at the end of the day and monthly staff on payday.
"""

import calendar
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from .config import (
    ATTENDANCE_STATUSES,
    ROLES,
    SALARY_TYPES,
    business_date,
    business_now,
    reached_time_of_day,
    to_iso,
    to_zone,
)
from .errors import NotFoundError, ValidationError
from .models import AttendanceEntry, Partner, Payment, PaymentPrompt, StaffRecord, sent_key
from .notify import OutgoingMessage, _ik

DIVIDER = "━━━━━━━━━━━━━━━━━━━━━━━━━━━━"
PAY_ANSWERS = ("yes", "partial", "no")


def format_money(amount: float) -> str:
    text = f"{amount:,.2f}"
    if text.endswith(".00"):
        text = text[:-3]
    return f"₹{text}"


def staff_date(record: StaffRecord, now: datetime) -> str:
    """Calendar date in the staff member's own timezone."""
    return to_zone(now, record.tz).strftime("%Y-%m-%d")


def payday_in_month(year: int, month: int, payday: int) -> date:
    """Payday for a month, clamped to the month's last day."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(max(payday, 1), last_day))


def next_payday(today: date, payday: int) -> date:
    this_month = payday_in_month(today.year, today.month, payday)
    if this_month >= today:
        return this_month
    year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
    return payday_in_month(year, month, payday)


def attendance_keyboard(staff_id: str) -> dict:
    return _ik([[
        ("✅ Present", f"att:{staff_id}:present"),
        ("❌ Absent", f"att:{staff_id}:absent"),
        ("🏖 Leave", f"att:{staff_id}:leave"),
    ]])


def pay_keyboard(staff_id: str) -> dict:
    return _ik([[
        ("✅ Paid", f"pay:{staff_id}:yes"),
        ("➗ Partial", f"pay:{staff_id}:partial"),
        ("❌ Not paid", f"pay:{staff_id}:no"),
    ]])


class StaffService:
    """Attendance and payroll operations plus their daily prompts."""

    def __init__(self, store, notifier):
        self.store = store
        self.notifier = notifier
        self.logger = logging.getLogger("business")

    # ===== RECORDS =====

    def ensure_staff(self, user_id, name: str, now: datetime) -> StaffRecord:
        """Return the staff record for a user, creating it on first contact."""
        with self.store.transaction():
            record = self.store.get_staff(user_id)
            if record is not None:
                return record
            partner = self.store.get_partner(user_id)
            record = StaffRecord(id=str(user_id), name=name or str(user_id))
            if partner is not None:
                record.tz = partner.tz
                record.role = partner.role
            self.store.put_staff(record)
            self.store.audit(user_id, "staff_registered", {"name": record.name}, now)
        self.logger.info(f"Registered staff member {record.name} ({record.id})")
        return record

    def add_employee(self, staff_id, name: str, salary_type: str, amount: float, payday: int,
                     actor, now: datetime) -> StaffRecord:
        self._validate_salary(salary_type, amount, payday)
        with self.store.transaction():
            record = self.store.get_staff(staff_id) or StaffRecord(id=str(staff_id), name=name)
            record.name = name
            record.salary_type = salary_type
            record.salary_amount = amount
            record.payday = payday
            self.store.put_staff(record)
            self.store.audit(actor, "employee_added", {
                "id": record.id, "name": name, "salaryType": salary_type, "salaryAmount": amount,
            }, now)
        return record

    def set_salary(self, staff_id, salary_type: str, amount: float, payday: int,
                   actor, now: datetime) -> StaffRecord:
        self._validate_salary(salary_type, amount, payday)
        with self.store.transaction():
            record = self._require_staff(staff_id)
            record.salary_type = salary_type
            record.salary_amount = amount
            record.payday = payday
            self.store.put_staff(record)
            self.store.audit(actor, "salary_set", {
                "id": record.id, "salaryType": salary_type, "salaryAmount": amount, "payday": payday,
            }, now)
        return record

    def set_role(self, user_id, role: str, actor, now: datetime) -> str:
        """
        Change a user's role on both their partner and staff records.

        Promoting a staff-only user to owner/admin also registers them as a
        partner so they receive broadcasts.
        """
        if role not in ROLES:
            raise ValidationError(f"Role must be one of: {', '.join(ROLES)}")

        with self.store.transaction():
            partner = self.store.get_partner(user_id)
            record = self.store.get_staff(user_id)
            if partner is None and record is None:
                raise NotFoundError(f"User {user_id} is not registered")

            if record is not None:
                record.role = role
                self.store.put_staff(record)
            if partner is not None:
                partner.role = role
                self.store.put_partner(partner)
            elif role in ("owner", "admin"):
                partner = Partner(id=record.id, name=record.name, role=role, tz=record.tz)
                self.store.put_partner(partner)
            self.store.audit(actor, "role_set", {"id": str(user_id), "role": role}, now)
        name = partner.name if partner else record.name
        return f"✅ {name} is now <b>{role}</b>"

    def _require_staff(self, staff_id) -> StaffRecord:
        record = self.store.get_staff(staff_id)
        if record is None:
            raise NotFoundError(f"Staff member {staff_id} not found")
        return record

    @staticmethod
    def _validate_salary(salary_type: str, amount: float, payday: int):
        if salary_type not in SALARY_TYPES:
            raise ValidationError(f"Salary type must be one of: {', '.join(SALARY_TYPES)}")
        if amount <= 0:
            raise ValidationError("Salary amount must be greater than 0")
        if not 1 <= payday <= 31:
            raise ValidationError("Payday must be a day of the month (1-31)")

    # ===== ATTENDANCE =====

    def clock_in(self, user_id, now: datetime) -> str:
        with self.store.transaction():
            record = self._require_staff(user_id)
            day = staff_date(record, now)
            entry = record.attendance.setdefault(day, AttendanceEntry())
            if entry.clock_in:
                return f"ℹ️ Already clocked in at {to_zone(datetime.fromisoformat(entry.clock_in), record.tz):%H:%M}"
            entry.clock_in = to_iso(now)
            entry.status = "present"
            self.store.put_staff(record)
            self.store.audit(record.id, "clock_in", {"date": day}, now)
        local = to_zone(now, record.tz)
        self.logger.info(f"{record.name} clocked in for {day}")
        return f"✅ Clocked in at {local:%H:%M} ({day})"

    def clock_out(self, user_id, now: datetime) -> str:
        with self.store.transaction():
            record = self._require_staff(user_id)
            day = staff_date(record, now)
            entry = record.attendance.get(day)
            if entry is None or not entry.clock_in:
                raise ValidationError("You have not clocked in today. Use /clockin first")
            entry.clock_out = to_iso(now)
            self.store.put_staff(record)
            self.store.audit(record.id, "clock_out", {"date": day}, now)
        worked = now - datetime.fromisoformat(entry.clock_in)
        hours = worked.total_seconds() / 3600
        local = to_zone(now, record.tz)
        self.logger.info(f"{record.name} clocked out for {day} after {hours:.1f}h")
        return f"👋 Clocked out at {local:%H:%M}. Worked {hours:.1f} hours today"

    def mark_attendance(self, staff_id, status: str, actor, now: datetime) -> str:
        if status not in ATTENDANCE_STATUSES:
            raise ValidationError(f"Attendance must be one of: {', '.join(ATTENDANCE_STATUSES)}")
        with self.store.transaction():
            record = self._require_staff(staff_id)
            day = staff_date(record, now)
            entry = record.attendance.setdefault(day, AttendanceEntry())
            entry.status = status
            self.store.put_staff(record)
            self.store.audit(actor, "attendance_marked", {"id": record.id, "date": day, "status": status}, now)
        self.logger.info(f"Attendance for {record.name} on {day}: {status}")
        return f"📝 {record.name}: <b>{status}</b> on {day}"

    def attendance_summary(self, staff_id, month: str) -> str:
        with self.store.read():
            record = self._require_staff(staff_id)

        days = sorted((d, e) for d, e in record.attendance.items() if d.startswith(month))
        counts = {status: 0 for status in ATTENDANCE_STATUSES}
        lines = [f"🗓 <b>Attendance - {record.name}</b>", f"Month: {month}", DIVIDER]
        for day, entry in days:
            if entry.status in counts:
                counts[entry.status] += 1
            times = ""
            if entry.clock_in:
                times = f" {to_zone(datetime.fromisoformat(entry.clock_in), record.tz):%H:%M}"
                if entry.clock_out:
                    times += f"-{to_zone(datetime.fromisoformat(entry.clock_out), record.tz):%H:%M}"
            lines.append(f"• {day}: {entry.status or '—'}{times}")
        if not days:
            lines.append("No attendance recorded")
        lines.append(DIVIDER)
        lines.append(" • ".join(f"{status.title()}: {count}" for status, count in counts.items()))
        return "\n".join(lines)

    def salary_summary(self, staff_id) -> str:
        with self.store.read():
            record = self._require_staff(staff_id)

        lines = [
            f"💰 <b>Salary - {record.name}</b>",
            DIVIDER,
            f"Type: {record.salary_type}",
            f"Amount: {format_money(record.salary_amount)}",
        ]
        if record.salary_type == "monthly":
            lines.append(f"Payday: day {record.payday} of the month")
        lines.append("")
        lines.append("<b>Recent payments</b>")
        for payment in record.payments[-5:][::-1]:
            lines.append(f"• {payment.date}: {format_money(payment.amount)} ({payment.kind})")
        if not record.payments:
            lines.append("• none yet")
        return "\n".join(lines)

    # ===== PAYROLL ANSWERS =====

    def answer_payment(self, staff_id, answer: str, actor, now: datetime) -> Tuple[str, bool]:
        """
        Apply an owner's answer to the latest open payment prompt.

        Returns:
            Tuple[str, bool]: (reply text, whether a partial amount is needed)
        """
        if answer not in PAY_ANSWERS:
            raise ValidationError(f"Unknown payment answer '{answer}'")

        with self.store.transaction():
            record = self._require_staff(staff_id)
            prompt = self.store.latest_open_payment_prompt(record.id)
            if prompt is None:
                raise NotFoundError(f"No open payment for {record.name}")

            if answer == "partial":
                return f"➗ How much was paid to {record.name}? (due {format_money(prompt.amount)})", True

            if answer == "yes":
                self._add_payment(record, prompt, prompt.amount, "full", actor, now)
                prompt.status = "paid"
                reply = f"✅ Recorded {format_money(prompt.amount)} paid to {record.name} for {prompt.date}"
            else:
                prompt.status = "unpaid"
                reply = f"📝 Marked {record.name} as not paid for {prompt.date}"
            self.store.put_payment_prompt(prompt)
            self.store.put_staff(record)
            self.store.audit(actor, "payment_answer", {"id": record.id, "date": prompt.date, "answer": answer}, now)
        self.logger.info(f"Payment for {record.name} ({prompt.date}): {answer}")
        return reply, False

    def record_partial_payment(self, staff_id, amount: float, actor, now: datetime) -> str:
        if amount <= 0:
            raise ValidationError("Amount must be greater than 0")
        with self.store.transaction():
            record = self._require_staff(staff_id)
            prompt = self.store.latest_open_payment_prompt(record.id)
            if prompt is None:
                raise NotFoundError(f"No open payment for {record.name}")
            self._add_payment(record, prompt, amount, "partial", actor, now)
            prompt.status = "partial"
            self.store.put_payment_prompt(prompt)
            self.store.put_staff(record)
            self.store.audit(actor, "payment_partial", {"id": record.id, "date": prompt.date, "amount": amount}, now)
        remaining = max(prompt.amount - amount, 0)
        return (f"✅ Recorded partial payment of {format_money(amount)} to {record.name}. "
                f"Remaining: {format_money(remaining)}")

    def _add_payment(self, record: StaffRecord, prompt: PaymentPrompt, amount: float, kind: str,
                     actor, now: datetime):
        record.payments.append(Payment(
            id=self.store.new_id(),
            date=prompt.date,
            amount=amount,
            kind=kind,
            by=str(actor),
            when=to_iso(now),
        ))

    # ===== SCHEDULED PROMPTS =====

    def _due_today(self, now: datetime, setting: str, kind: str) -> Optional[str]:
        """Return today's business date if a daily prompt should run now (and mark it)."""
        if not reached_time_of_day(business_now(now), self.store.settings[setting]):
            return None
        today = business_date(now)
        key = sent_key(kind, today)
        if self.store.last_sent(key):
            return None
        self.store.mark_sent(key, now)
        return today

    def prompt_attendance(self, now: datetime) -> int:
        """Ask owners/admins to mark every staff member who has no status today."""
        outbox: List[OutgoingMessage] = []
        with self.store.transaction():
            if self._due_today(now, "attendancePromptTime", "attendancePrompt") is None:
                return 0
            recipients = [p.id for p in self.store.privileged_partners()]
            for record in self.store.staff_records():
                day = staff_date(record, now)
                entry = record.attendance.get(day)
                if entry is not None and entry.status:
                    continue
                outbox.append(OutgoingMessage(
                    recipients,
                    f"🗓 <b>Attendance</b> • {day}\nIs <b>{record.name}</b> working today?",
                    attendance_keyboard(record.id), tag="attendance_prompt",
                ))
        self.logger.info(f"Attendance prompt: {len(outbox)} staff member(s) unmarked")
        return self.notifier.dispatch(outbox)

    def check_daily_payments(self, now: datetime) -> int:
        """End-of-day pay question for daily-wage staff who were present."""
        outbox: List[OutgoingMessage] = []
        with self.store.transaction():
            if self._due_today(now, "endOfDayPaymentCheck", "endOfDayPayment") is None:
                return 0
            recipients = [p.id for p in self.store.privileged_partners()]
            for record in self.store.staff_records():
                if record.salary_type != "daily" or record.salary_amount <= 0:
                    continue
                day = staff_date(record, now)
                entry = record.attendance.get(day)
                if entry is None or entry.status != "present":
                    continue
                prompt = PaymentPrompt(staff_id=record.id, date=day, amount=record.salary_amount,
                                       kind="daily", asked_at=to_iso(now))
                if self.store.get_payment_prompt(prompt.key):
                    continue
                self.store.put_payment_prompt(prompt)
                outbox.append(OutgoingMessage(
                    recipients,
                    f"💰 <b>Daily wage</b> • {day}\n"
                    f"Has <b>{record.name}</b> been paid {format_money(record.salary_amount)} for today?",
                    pay_keyboard(record.id), tag="pay_daily",
                ))
        return self.notifier.dispatch(outbox)

    def check_monthly_payroll(self, now: datetime) -> int:
        """Payday heads-up N days ahead, and the pay question on payday."""
        outbox: List[OutgoingMessage] = []
        with self.store.transaction():
            if self._due_today(now, "attendancePromptTime", "monthlyPayroll") is None:
                return 0
            days_before = int(self.store.settings["monthlyReminderDaysBefore"])
            recipients = [p.id for p in self.store.privileged_partners()]
            for record in self.store.staff_records():
                if record.salary_type != "monthly" or record.salary_amount <= 0:
                    continue
                today = datetime.strptime(staff_date(record, now), "%Y-%m-%d").date()
                payday = next_payday(today, record.payday)
                if payday == today:
                    prompt = PaymentPrompt(staff_id=record.id, date=payday.isoformat(),
                                           amount=record.salary_amount, kind="monthly", asked_at=to_iso(now))
                    if self.store.get_payment_prompt(prompt.key):
                        continue
                    self.store.put_payment_prompt(prompt)
                    outbox.append(OutgoingMessage(
                        recipients,
                        f"💰 <b>Payday</b> • {payday.isoformat()}\n"
                        f"Monthly salary for <b>{record.name}</b>: {format_money(record.salary_amount)}\n"
                        "Has it been paid?",
                        pay_keyboard(record.id), tag="pay_monthly",
                    ))
                elif payday - today == timedelta(days=days_before):
                    outbox.append(OutgoingMessage(
                        recipients,
                        f"📅 <b>Upcoming payday</b>\n"
                        f"{record.name}: {format_money(record.salary_amount)} due on {payday.isoformat()} "
                        f"({days_before} day{'s' if days_before != 1 else ''} from now)",
                        tag="pay_headsup",
                    ))
        return self.notifier.dispatch(outbox)
