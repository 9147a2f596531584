"""
Static schedules evaluated against each partner's local clock.

A schedule fires for a partner when the partner-local HH:MM equals the
schedule's time and at least ``intervalDays`` local calendar days have passed
since it last fired for that partner.
"""

import logging
from datetime import datetime
from typing import List, Optional

from .config import BUSINESS_TIMEZONE, parse_hhmm, parse_iso, to_zone
from .errors import NotFoundError, ValidationError
from .models import Partner, Schedule, sent_key
from .notify import OutgoingMessage


def should_send(schedule: Schedule, partner: Partner, now: datetime, last_sent: Optional[str]) -> bool:
    target = parse_hhmm(schedule.time)
    local_now = to_zone(now, partner.tz)
    if (local_now.hour, local_now.minute) != (target.hour, target.minute):
        return False
    if not last_sent:
        return True
    last_local = to_zone(parse_iso(last_sent), partner.tz)
    return (local_now.date() - last_local.date()).days >= max(schedule.interval_days, 1)


def format_schedule_message(schedule: Schedule, partner: Partner, now: datetime, test: bool = False) -> str:
    local = to_zone(now, partner.tz)
    business = to_zone(now, BUSINESS_TIMEZONE)
    header = f"🔔 <b>TEST - {schedule.label}</b>" if test else f"🔔 <b>{schedule.label} Reminder</b>"
    return (
        f"{header}\n\n"
        f"{schedule.message}\n\n"
        f"<i>Local time: {local:%Y-%m-%d %H:%M} ({local.tzname()})</i>\n"
        f"<i>Business time: {business:%Y-%m-%d %H:%M} ({business.tzname()})</i>"
    )


class ScheduleService:

    def __init__(self, store, notifier):
        self.store = store
        self.notifier = notifier
        self.logger = logging.getLogger("business")

    def tick(self, now: datetime) -> int:
        outbox: List[OutgoingMessage] = []
        with self.store.transaction():
            schedules = self.store.schedules()
            for partner in self.store.partners():
                for schedule in schedules:
                    key = sent_key("schedule", schedule.id, partner.id)
                    try:
                        due = should_send(schedule, partner, now, self.store.last_sent(key))
                    except ValueError as e:
                        self.logger.warning(f"Schedule {schedule.id} has a bad time '{schedule.time}': {e}")
                        continue
                    if not due:
                        continue
                    self.store.mark_sent(key, now)
                    outbox.append(OutgoingMessage(
                        [partner.id], format_schedule_message(schedule, partner, now), tag=f"schedule:{schedule.id}",
                    ))
                    self.logger.info(f"Schedule {schedule.id} due for {partner.name} ({partner.id})")
        return self.notifier.dispatch(outbox)

    def list_text(self) -> str:
        with self.store.read():
            schedules = self.store.schedules()
        if not schedules:
            return "📅 No schedules configured. Add one with /setschedule"
        lines = ["📅 <b>Current schedules</b>"]
        for s in schedules:
            lines.append(f"• {s.label} ({s.id}) - every {s.interval_days} day(s) at {s.time}")
        return "\n".join(lines)

    def upsert(self, schedule_id: str, interval_days: int, time_str: str, message: str,
               actor, now: datetime) -> Schedule:
        try:
            parse_hhmm(time_str)
        except ValueError:
            raise ValidationError(f"Invalid time '{time_str}', use HH:MM")

        with self.store.transaction():
            schedule = self.store.get_schedule(schedule_id) or Schedule(
                id=schedule_id, label=schedule_id, time=time_str, message=message,
            )
            schedule.interval_days = max(interval_days, 1)
            schedule.time = time_str
            schedule.message = message or f"Check {schedule_id}"
            self.store.put_schedule(schedule)
            self.store.audit(actor, "schedule_set", schedule.to_dict(), now)
        self.logger.info(f"Schedule set: {schedule.id} every {schedule.interval_days} day(s) at {schedule.time}")
        return schedule

    def send_test(self, schedule_id: str, now: datetime) -> int:
        with self.store.read():
            schedule = self.store.get_schedule(schedule_id)
            if schedule is None:
                raise NotFoundError(f"Schedule not found: {schedule_id}")
            outbox = [
                OutgoingMessage([p.id], format_schedule_message(schedule, p, now, test=True), tag="schedule_test")
                for p in self.store.partners()
            ]
        return self.notifier.dispatch(outbox)
