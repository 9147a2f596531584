"""
Daily vegetable-list confirmation.

Every partner is asked once per business date. Per (date, partner) the entry
moves ``pending -> confirmed | no | notyet``; "not yet" and unanswered
prompts are repeated, a "no" gets one soft reminder and then an URGENT
broadcast to all partners. Confirmed and escalated entries leave tracking,
and a ``lastSent`` marker per (date, partner) remembers which way they left:
confirmed partners are not asked again, escalated partners are not escalated
twice.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Tuple

from .config import business_date, business_now, parse_iso, reached_time_of_day, to_iso
from .errors import AuthorizationError, ValidationError
from .models import ConfirmationKey, PendingConfirmation, sent_key
from .notify import OutgoingMessage, _ik

VEG_ACTIONS = ("yes", "no", "notyet")
DIVIDER = "━━━━━━━━━━━━━━━━━━━━━━━━━━━━"


def veg_keyboard(date: str) -> dict:
    return _ik([[
        ("✅ Yes", f"veg:{date}:yes"),
        ("❌ No", f"veg:{date}:no"),
        ("⏳ Not yet", f"veg:{date}:notyet"),
    ]])


def format_prompt(name: str, date: str, repeat: bool = False) -> str:
    header = "⏳ <b>Vegetable List Reminder</b>" if repeat else "🥬 <b>Vegetable List Check</b>"
    return (
        f"{header}\n"
        f"{DIVIDER}\n"
        f"Hi {name}, is the vegetable list for <b>{date}</b> done and confirmed?"
    )


class ConfirmationTracker:
    """Confirmation state machine over ``pendingConfirmations``."""

    def __init__(self, store, notifier):
        self.store = store
        self.notifier = notifier
        self.logger = logging.getLogger("business")

    def _followups(self) -> Tuple[int, int]:
        veg = self.store.settings["vegConfirm"]
        return int(veg["followupMinutes1"]), int(veg["followupMinutes2"])

    def _is_confirmed(self, key: ConfirmationKey) -> bool:
        if self.store.last_sent(sent_key("vegConfirmed", key.date, key.partner_id)):
            return True
        existing = self.store.get_confirmation(key)
        return existing is not None and existing.status == "confirmed"

    def _is_escalated(self, key: ConfirmationKey) -> bool:
        return bool(self.store.last_sent(sent_key("vegEscalated", key.date, key.partner_id)))

    # ===== OPERATIONS =====

    def initiate(self, date: str, now: datetime) -> int:
        """
        Prompt every partner who has neither confirmed ``date`` nor been
        escalated for it.

        Returns:
            int: Number of prompts delivered
        """
        outbox: List[OutgoingMessage] = []
        with self.store.transaction():
            for partner in self.store.partners():
                key = ConfirmationKey(date, partner.id)
                if self._is_confirmed(key) or self._is_escalated(key):
                    continue
                self.store.put_confirmation(key, PendingConfirmation(
                    status="pending", last_updated=to_iso(now), next_check=None,
                ))
                outbox.append(OutgoingMessage(
                    [partner.id], format_prompt(partner.name, date), veg_keyboard(date), tag="veg_prompt",
                ))
            self.store.audit("system", "veg_initiate", {"date": date, "prompted": len(outbox)}, now)

        self.logger.info(f"Vegetable check for {date}: prompting {len(outbox)} partner(s)")
        return self.notifier.dispatch(outbox)

    def maybe_initiate_daily(self, now: datetime) -> int:
        """Start today's check once the business clock reaches confirmTime."""
        confirm_time = self.store.settings["vegConfirm"]["confirmTime"]
        if not reached_time_of_day(business_now(now), confirm_time):
            return 0

        date = business_date(now)
        key = sent_key("vegConfirm", date)
        with self.store.transaction():
            if self.store.last_sent(key):
                return 0
            self.store.mark_sent(key, now)
        return self.initiate(date, now)

    def on_response(self, date: str, partner_id, action: str, now: datetime) -> str:
        """
        Record a partner's button press.

        Returns:
            str: Acknowledgement text for the sender

        Raises:
            ValidationError: Unknown action, or no check was opened for ``date``
            AuthorizationError: Sender is not a partner
        """
        if action not in VEG_ACTIONS:
            raise ValidationError(f"Unknown vegetable-check answer '{action}'")

        followup1, _ = self._followups()
        with self.store.transaction():
            partner = self.store.get_partner(partner_id)
            if partner is None:
                raise AuthorizationError("Only partners can answer the vegetable check")

            key = ConfirmationKey(date, partner.id)
            entry = self.store.get_confirmation(key)
            confirmed = self._is_confirmed(key)
            escalated = self._is_escalated(key)
            if entry is None and not confirmed and not escalated:
                raise ValidationError(f"No vegetable check is open for {date}")

            if confirmed:
                return f"✅ Vegetable list for {date} is already confirmed."
            if escalated and action != "yes":
                return f"🚨 The vegetable list for {date} was already escalated. Tap Yes once it is confirmed."

            entry = entry or PendingConfirmation()
            entry.last_updated = to_iso(now)
            if action == "yes":
                entry.status = "confirmed"
                entry.next_check = None
                self.store.mark_sent(sent_key("vegConfirmed", date, partner.id), now)
            else:
                entry.status = action
                entry.next_check = to_iso(now + timedelta(minutes=followup1))
            self.store.put_confirmation(key, entry)
            self.store.audit(partner.id, "veg_response", {"date": date, "answer": action}, now)

        self.logger.info(f"Vegetable check {date}: {partner.name} answered '{action}'")
        if action == "yes":
            return f"✅ Thanks {partner.name}! Vegetable list for {date} confirmed."
        if action == "no":
            return f"❌ Noted. I'll check back with you in {followup1} minutes."
        return f"⏳ OK, I'll remind you again in {followup1} minutes."

    def tick(self, now: datetime) -> int:
        """Process due follow-ups and escalations; returns messages sent."""
        followup1, followup2 = self._followups()
        outbox: List[OutgoingMessage] = []

        with self.store.transaction():
            for key, entry in self.store.confirmations():
                if entry.status == "confirmed":
                    self.store.remove_confirmation(key)
                    continue

                last_updated = parse_iso(entry.last_updated) or now
                next_check = parse_iso(entry.next_check) or (last_updated + timedelta(minutes=followup1))
                if now < next_check:
                    continue

                partner = self.store.get_partner(key.partner_id)
                if partner is None:
                    self.logger.warning(f"Dropping confirmation for unknown partner {key.partner_id}")
                    self.store.remove_confirmation(key)
                    continue

                if entry.status in ("pending", "notyet"):
                    outbox.append(OutgoingMessage(
                        [partner.id], format_prompt(partner.name, key.date, repeat=True),
                        veg_keyboard(key.date), tag="veg_followup",
                    ))
                    entry.next_check = to_iso(now + timedelta(minutes=followup1))
                    self.store.put_confirmation(key, entry)
                    continue

                elapsed = (now - last_updated).total_seconds() / 60
                if elapsed < followup2:
                    outbox.append(OutgoingMessage(
                        [partner.id],
                        f"🥬 <b>Reminder</b>\nYou said the vegetable list for <b>{key.date}</b> "
                        "is not ready. Please confirm as soon as it is done.",
                        veg_keyboard(key.date), tag="veg_soft",
                    ))
                    entry.next_check = to_iso(now + timedelta(minutes=followup2))
                    self.store.put_confirmation(key, entry)
                else:
                    outbox.append(OutgoingMessage(
                        [p.id for p in self.store.partners()],
                        "🚨 <b>URGENT: VEGETABLE LIST NOT CONFIRMED</b>\n"
                        f"{DIVIDER}\n"
                        f"{partner.name} answered <b>No</b> for {key.date} and has not confirmed "
                        f"for {int(elapsed)} minutes.\n"
                        "Please check the vegetable list immediately.",
                        tag="veg_escalation",
                    ))
                    self.store.remove_confirmation(key)
                    self.store.mark_sent(sent_key("vegEscalated", key.date, partner.id), now)
                    self.store.audit("system", "veg_escalated", {"date": key.date, "partner": partner.id}, now)
                    self.logger.warning(f"Vegetable check {key.date}: escalated for {partner.name}")

        return self.notifier.dispatch(outbox)
