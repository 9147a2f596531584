"""
User reminders: one-shot or daily, fired by the scheduler tick.

A reminder is due when ``when <= now + 1 minute`` so the 30-second tick never
fires it late by a whole interval. Daily reminders move forward in whole
days from their original time, which keeps them from drifting.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import List

from .config import REMINDER_LOOKAHEAD_SECONDS, get_zone, parse_iso, to_iso
from .errors import AuthorizationError, NotFoundError, ValidationError
from .models import Reminder
from .notify import OutgoingMessage, _ik

REPEAT_TYPES = ("once", "daily")
RELATIVE_RE = re.compile(r"^in\s+(\d+)\s*(m|min|mins|minutes?|h|hr|hrs|hours?)$", re.IGNORECASE)


def parse_when(text: str, tz: str, now: datetime) -> datetime:
    """
    Parse a reminder due time typed by a user.

    Accepted forms:
    - ``YYYY-MM-DD HH:MM`` in the user's timezone
    - ``HH:MM`` today, or tomorrow when that time has already passed
    - ``in 30m`` / ``in 2h`` relative to now

    Raises:
        ValueError: Unrecognized format
    """
    text = (text or "").strip()
    zone = get_zone(tz)

    match = RELATIVE_RE.match(text)
    if match:
        amount = int(match.group(1))
        minutes = amount * 60 if match.group(2).lower().startswith("h") else amount
        if minutes <= 0:
            raise ValueError("Relative time must be positive")
        return now + timedelta(minutes=minutes)

    try:
        return datetime.strptime(text, "%Y-%m-%d %H:%M").replace(tzinfo=zone)
    except ValueError:
        pass

    clock = datetime.strptime(text, "%H:%M")
    local_now = now.astimezone(zone)
    candidate = local_now.replace(hour=clock.hour, minute=clock.minute, second=0, microsecond=0)
    if candidate <= local_now:
        candidate += timedelta(days=1)
    return candidate


def done_keyboard(reminder_id: str) -> dict:
    return _ik([[("✅ Done", f"remdone:{reminder_id}")]])


class ReminderEngine:

    def __init__(self, store, notifier):
        self.store = store
        self.notifier = notifier
        self.logger = logging.getLogger("business")

    def create(self, created_by, target: str, text: str, when: datetime, repeat: str,
               now: datetime) -> Reminder:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Reminder text is required")
        if repeat not in REPEAT_TYPES:
            raise ValidationError(f"Repeat must be one of: {', '.join(REPEAT_TYPES)}")

        with self.store.transaction():
            reminder = Reminder(
                id=self.store.new_id(),
                created_by=str(created_by),
                target=str(target),
                text=text,
                when=to_iso(when),
                repeat=repeat,
            )
            self.store.put_reminder(reminder)
            self.store.audit(created_by, "reminder_created", reminder.to_dict(), now)
        self.logger.info(f"Reminder {reminder.id} created by {created_by} for {target} at {reminder.when}")
        return reminder

    def mark_done(self, reminder_id: str, actor, now: datetime) -> Reminder:
        """
        Acknowledge a reminder; this stops daily repeats too.

        Allowed for the creator and the target. An ``all`` reminder may also
        be closed by any partner.
        """
        actor = str(actor)
        with self.store.transaction():
            reminder = self.store.get_reminder(reminder_id)
            if reminder is None:
                raise NotFoundError("Reminder already completed")
            allowed = actor in (reminder.created_by, reminder.target) or (
                reminder.target == "all" and self.store.get_partner(actor) is not None
            )
            if not allowed:
                raise AuthorizationError("Not your reminder")
            reminder.done = True
            self.store.put_reminder(reminder)
            self.store.audit(actor, "reminder_done", {"id": reminder.id}, now)
        return reminder

    def for_user(self, user_id) -> List[Reminder]:
        with self.store.read():
            return [
                r for r in self.store.reminders()
                if not r.done and (r.created_by == str(user_id) or r.target in (str(user_id), "all"))
            ]

    def tick(self, now: datetime) -> int:
        """Fire due reminders; returns messages sent."""
        horizon = now + timedelta(seconds=REMINDER_LOOKAHEAD_SECONDS)
        outbox: List[OutgoingMessage] = []

        with self.store.transaction():
            partners = {p.id: p for p in self.store.partners()}
            for reminder in self.store.reminders():
                if reminder.done:
                    continue
                when = parse_iso(reminder.when)
                if when > horizon:
                    continue

                targets = list(partners) if reminder.target == "all" else [reminder.target]
                creator = partners.get(reminder.created_by)
                byline = f"\n\n<i>from {creator.name}</i>" if creator else ""
                outbox.append(OutgoingMessage(
                    targets, f"🔔 <b>Reminder</b>\n{reminder.text}{byline}",
                    done_keyboard(reminder.id), tag=f"reminder:{reminder.id}",
                ))

                if reminder.repeat == "daily":
                    skipped = -1
                    while when <= horizon:
                        when += timedelta(days=1)
                        skipped += 1
                    if skipped:
                        self.logger.warning(f"Reminder {reminder.id} skipped {skipped} missed occurrence(s)")
                    reminder.when = to_iso(when)
                else:
                    reminder.done = True
                self.store.put_reminder(reminder)

            purged = self.store.purge_done_reminders()
            if purged:
                self.logger.debug(f"Purged {purged} completed reminder(s)")

        return self.notifier.dispatch(outbox)
