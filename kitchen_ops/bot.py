"""
Kitchen Ops Bot - Telegram front-end
====================================

Long-polling loop, command routing, inline-button callbacks and the glue
between conversational flows and the domain services. Every handler runs
inside a catch-all so a bad update never stops the loop.
"""

import hmac
import logging
import re
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional, Tuple

from .config import (
    ADMIN_PASSWORD,
    BUSINESS_TIMEZONE,
    DEFAULT_PARTNER_TIMEZONE,
    ERROR_MESSAGES,
    RATE_LIMIT_COMMANDS_PER_MINUTE,
    ROLES,
    SYSTEM_VERSION,
    business_date,
    business_now,
    is_valid_timezone,
    parse_iso,
    to_zone,
    utc_now,
)
from .errors import AuthorizationError, KitchenOpsError
from .inventory import days_left, format_days, format_quantity
from .models import Partner
from .notify import _ik
from .sessions import FlowContext

DIVIDER = "━━━━━━━━━━━━━━━━━━━━━━━━━━━━"

CALLBACK_ARITY = {"veg": 2, "pay": 2, "att": 2, "inv": 2, "remdone": 1}
INVENTORY_FLOWS = {"buy": "purchase", "use": "use_stock", "usage": "set_usage"}

# Access levels: any registered chat, any partner, owner/admin partners
ANY, PARTNER, PRIVILEGED = "any", "partner", "privileged"


def sanitize_user_input(text: str, max_length: int = 500) -> str:
    """Strip control characters and clamp length of inbound text."""
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text or "")
    return text.strip()[:max_length]


def parse_callback(data: str) -> Tuple[str, List[str]]:
    """
    Split a callback payload like ``veg:2024-05-01:yes`` into kind and args.

    Raises:
        ValueError: Unknown kind or wrong number of parts
    """
    parts = (data or "").split(":")
    kind, args = parts[0], parts[1:]
    if kind not in CALLBACK_ARITY or len(args) != CALLBACK_ARITY[kind] or not all(args):
        raise ValueError(f"Malformed callback payload '{data}'")
    return kind, args


def item_keyboard(item_id: str) -> dict:
    return _ik([[
        ("🛒 Bought", f"inv:buy:{item_id}"),
        ("🍳 Used", f"inv:use:{item_id}"),
        ("📉 Usage", f"inv:usage:{item_id}"),
    ]])


class KitchenOpsBot:
    """Telegram bot: commands, callbacks and conversational flows."""

    def __init__(self, client, store, notifier, sessions, confirmations, inventory, reminders,
                 staff, schedules, admin_password: str = ADMIN_PASSWORD,
                 clock: Callable[[], datetime] = utc_now):
        self.client = client
        self.store = store
        self.notifier = notifier
        self.sessions = sessions
        self.confirmations = confirmations
        self.inventory = inventory
        self.reminders = reminders
        self.staff = staff
        self.schedules = schedules
        self.admin_password = admin_password
        self.clock = clock
        self.tick = None
        self.logger = logging.getLogger("telegram")

        self.running = False
        self.user_commands: Dict[str, Deque[datetime]] = {}
        self.rate_limit_exempt_commands = {"/cancel", "/help"}

        self.handlers: Dict[str, Tuple[Callable[[Dict], None], str]] = {
            "/start": (self._handle_start, ANY),
            "/help": (self._handle_help, ANY),
            "/whoami": (self._handle_whoami, ANY),
            "/status": (self._handle_status, PARTNER),
            "/cancel": (self._handle_cancel, ANY),
            "/login": (self._handle_login, ANY),
            "/settz": (self._handle_settz, ANY),
            "/addpartner": (self._handle_addpartner, PRIVILEGED),
            "/vegcheck": (self._handle_vegcheck, PRIVILEGED),
            "/stock": (self._handle_stock, PARTNER),
            "/additem": (self._flow_command("add_item"), PARTNER),
            "/buy": (self._flow_command("purchase", "item"), PARTNER),
            "/use": (self._flow_command("use_stock", "item"), PARTNER),
            "/setusage": (self._flow_command("set_usage", "item"), PARTNER),
            "/thresholds": (self._handle_thresholds, PRIVILEGED),
            "/remind": (self._flow_command("add_reminder"), ANY),
            "/reminders": (self._handle_reminders, ANY),
            "/clockin": (self._handle_clockin, ANY),
            "/clockout": (self._handle_clockout, ANY),
            "/attendance": (self._handle_attendance, ANY),
            "/salary": (self._handle_salary, ANY),
            "/addemployee": (self._flow_command("add_employee"), PRIVILEGED),
            "/setrole": (self._flow_command("set_role"), PRIVILEGED),
            "/setsalary": (self._flow_command("set_salary"), PRIVILEGED),
            "/schedules": (self._handle_schedules, ANY),
            "/setschedule": (self._handle_setschedule, PARTNER),
            "/test": (self._handle_test, PARTNER),
        }

        self.flow_effects: Dict[str, Callable[[str, Dict], str]] = {
            "add_item": self._complete_add_item,
            "purchase": self._complete_purchase,
            "use_stock": self._complete_use_stock,
            "set_usage": self._complete_set_usage,
            "add_reminder": self._complete_add_reminder,
            "admin_login": self._complete_admin_login,
            "pay_partial": self._complete_pay_partial,
            "add_employee": self._complete_add_employee,
            "set_role": self._complete_set_role,
            "set_salary": self._complete_set_salary,
        }

    # ===== HELPERS =====

    def send(self, chat_id, text: str, keyboard: Optional[Dict] = None) -> bool:
        return self.notifier.send(chat_id, text, keyboard)

    def _partner(self, user_id) -> Optional[Partner]:
        with self.store.read():
            return self.store.get_partner(user_id)

    def _authorized(self, user_id, access: str) -> bool:
        if access == ANY:
            return True
        partner = self._partner(user_id)
        if partner is None:
            return False
        return access == PARTNER or partner.is_privileged

    def _user_tz(self, user_id) -> str:
        with self.store.read():
            partner = self.store.get_partner(user_id)
            if partner is not None:
                return partner.tz
            record = self.store.get_staff(user_id)
            return record.tz if record else DEFAULT_PARTNER_TIMEZONE

    @staticmethod
    def _args(message: Dict) -> List[str]:
        return message.get("text", "").split()[1:]

    @staticmethod
    def _display_name(user: Dict) -> str:
        name = " ".join(filter(None, [user.get("first_name"), user.get("last_name")]))
        return name or user.get("username") or str(user.get("id"))

    # ===== RATE LIMITING =====

    def _check_rate_limit(self, user_id: str, command: str, now: datetime) -> bool:
        """Sliding one-minute window; exempt commands and active flows pass."""
        if command in self.rate_limit_exempt_commands:
            return True
        with self.store.read():
            if self.store.get_session(user_id) is not None:
                return True

        window = self.user_commands.setdefault(user_id, deque())
        cutoff = now - timedelta(seconds=60)
        while window and window[0] <= cutoff:
            window.popleft()
        if len(window) >= RATE_LIMIT_COMMANDS_PER_MINUTE:
            return False
        window.append(now)
        return True

    # ===== POLLING WITH ERROR RECOVERY =====

    def start_polling(self):
        """Poll until stopped, backing off on repeated errors."""
        self.running = True
        self.logger.info("Telegram polling started")

        backoff = 1
        consecutive_errors = 0
        max_consecutive_errors = 10

        while self.running:
            try:
                updates = self.client.get_updates(timeout=25)
                consecutive_errors = 0
                backoff = 1
                for update in updates:
                    self.process_update(update)
            except Exception as e:
                consecutive_errors += 1
                self.logger.error(f"Polling error ({consecutive_errors}): {e}", exc_info=True)
                if consecutive_errors >= max_consecutive_errors:
                    self.logger.critical("Too many consecutive polling errors, pausing 5 minutes")
                    time.sleep(300)
                    consecutive_errors = 0
                time.sleep(min(backoff, 30))
                backoff = min(backoff * 2, 30)

    def stop(self):
        self.running = False
        self.logger.info("Telegram bot stopping...")

    # ===== UPDATE PROCESSING =====

    def process_update(self, update: Dict):
        """Dispatch one update; never raises."""
        try:
            if "callback_query" in update:
                self._handle_callback_safe(update["callback_query"])
                return

            message = update.get("message")
            if not message or "text" not in message:
                return
            text = sanitize_user_input(message["text"])
            if not text:
                return
            message = dict(message, text=text)

            chat_id = message["chat"]["id"]
            user_id = str(message["from"]["id"])
            now = self.clock()

            if text.startswith("/"):
                command = text.split()[0].lower().split("@")[0]
                if not self._check_rate_limit(user_id, command, now):
                    self.send(chat_id, ERROR_MESSAGES["rate_limited"])
                    return
                self._route_command(message, command)
                return

            session, expired = self.sessions.active(user_id, now)
            if expired:
                self.send(chat_id, ERROR_MESSAGES["session_expired"])
                return
            if session is not None:
                self._handle_flow_input_safe(message, user_id, now)
                return

            self.send(chat_id, "Type /help to see available commands.")

        except Exception as e:
            self.logger.error(f"Error in process_update: {e}", exc_info=True)
            chat_id = (update.get("message") or {}).get("chat", {}).get("id")
            if chat_id:
                self.send(chat_id, ERROR_MESSAGES["system_error"])

    def _route_command(self, message: Dict, command: str):
        chat_id = message["chat"]["id"]
        user_id = str(message["from"]["id"])

        entry = self.handlers.get(command)
        if entry is None:
            self._handle_unknown(message)
            return

        handler, access = entry
        if not self._authorized(user_id, access):
            self.logger.info(f"Unauthorized {command} from {user_id}")
            self.send(chat_id, ERROR_MESSAGES["not_authorized"])
            return

        try:
            handler(message)
        except AuthorizationError:
            self.send(chat_id, ERROR_MESSAGES["not_authorized"])
        except KitchenOpsError as e:
            self.send(chat_id, f"❌ {e}")
        except Exception as e:
            self.logger.error(f"Error in {command}: {e}", exc_info=True)
            self.send(chat_id, f"⚠️ Error executing {command}. Please try again.")

    def _handle_flow_input_safe(self, message: Dict, user_id: str, now: datetime):
        chat_id = message["chat"]["id"]
        try:
            ctx = FlowContext(store=self.store, now=now, tz=self._user_tz(user_id), user_id=user_id)
            session, _ = self.sessions.active(user_id, now)
            result = self.sessions.handle(user_id, message["text"], ctx)
            if result.completed is None:
                self.send(chat_id, result.reply)
                return
            effect = self.flow_effects[session.action]
            self.send(chat_id, effect(user_id, result.completed))
        except AuthorizationError:
            self.send(chat_id, ERROR_MESSAGES["not_authorized"])
        except KitchenOpsError as e:
            self.send(chat_id, f"❌ {e}")
        except Exception as e:
            self.logger.error(f"Error in conversation: {e}", exc_info=True)
            self.send(chat_id, "⚠️ Error processing input. Please try /cancel and start over.")

    # ===== CALLBACK HANDLING =====

    def _handle_callback_safe(self, callback_query: Dict):
        chat_id = (callback_query.get("message") or {}).get("chat", {}).get("id")
        try:
            self._handle_callback(callback_query)
        except AuthorizationError:
            if chat_id:
                self.send(chat_id, ERROR_MESSAGES["not_authorized"])
        except KitchenOpsError as e:
            if chat_id:
                self.send(chat_id, f"❌ {e}")
        except Exception as e:
            self.logger.error(f"Error in callback: {e}", exc_info=True)
            if chat_id:
                self.send(chat_id, "⚠️ Error processing selection. Please try again.")

    def _handle_callback(self, callback_query: Dict):
        """Route inline keyboard callbacks by payload kind."""
        data = callback_query.get("data", "")
        chat_id = (callback_query.get("message") or {}).get("chat", {}).get("id")
        user_id = str(callback_query.get("from", {}).get("id"))
        now = self.clock()

        self.client.answer_callback_query(callback_query.get("id"))

        try:
            kind, args = parse_callback(data)
        except ValueError:
            self.logger.warning(f"Ignoring callback '{data}' from {user_id}")
            return

        if kind == "veg":
            date, action = args
            reply = self.confirmations.on_response(date, user_id, action, now)
        elif kind == "pay":
            self._require(user_id, PRIVILEGED)
            staff_id, answer = args
            reply, needs_amount = self.staff.answer_payment(staff_id, answer, user_id, now)
            if needs_amount:
                self.sessions.start(user_id, "pay_partial", now, temp={"staff_id": staff_id})
        elif kind == "att":
            self._require(user_id, PRIVILEGED)
            staff_id, status = args
            reply = self.staff.mark_attendance(staff_id, status, user_id, now)
        elif kind == "remdone":
            reminder = self.reminders.mark_done(args[0], user_id, now)
            reply = f"✅ Done: {reminder.text}"
        else:
            self._require(user_id, PARTNER)
            action, item_id = args
            if action not in INVENTORY_FLOWS:
                self.logger.warning(f"Unknown inventory action '{action}' from {user_id}")
                return
            reply = self.sessions.start(user_id, INVENTORY_FLOWS[action], now, temp={"item": item_id})

        if chat_id:
            self.send(chat_id, reply)

    def _require(self, user_id: str, access: str):
        if not self._authorized(user_id, access):
            raise AuthorizationError(access)

    # ===== COMMAND HANDLERS =====

    def _handle_start(self, message: Dict):
        chat_id = message["chat"]["id"]
        user = message["from"]
        self.staff.ensure_staff(user["id"], self._display_name(user), self.clock())
        text = (
            "🍽 <b>Kitchen Ops Bot</b>\n"
            f"{DIVIDER}\n"
            f"Version {SYSTEM_VERSION}\n\n"
            "📦 /stock • /buy • /use • /additem\n"
            "🕐 /clockin • /clockout • /attendance\n"
            "🔔 /remind • /reminders\n\n"
            "💡 Type /help for details • /cancel to exit"
        )
        self.send(chat_id, text)

    def _handle_help(self, message: Dict):
        chat_id = message["chat"]["id"]
        text = (
            "📚 <b>Command Reference</b>\n"
            f"{DIVIDER}\n\n"
            "📦 <b>Inventory</b>\n"
            "/stock - Stock levels and days left\n"
            "/additem - Add an item\n"
            "/buy [item] - Record a purchase\n"
            "/use [item] - Record usage\n"
            "/setusage [item] - Change daily usage\n"
            "/thresholds item warn critical - Alert levels (admin)\n\n"
            "👥 <b>Staff</b>\n"
            "/clockin • /clockout\n"
            "/attendance [YYYY-MM] [id]\n"
            "/salary [id]\n"
            "/addemployee • /setrole • /setsalary (admin)\n\n"
            "🔔 <b>Reminders & schedules</b>\n"
            "/remind • /reminders\n"
            "/schedules • /setschedule id days HH:MM message • /test id\n"
            "/vegcheck - Start today's vegetable check (admin)\n\n"
            "⚙️ <b>Account</b>\n"
            "/whoami • /settz Area/City • /login • /status\n"
            "/cancel - Exit the current conversation"
        )
        self.send(chat_id, text)

    def _handle_whoami(self, message: Dict):
        self.send(message["chat"]["id"], f"Your chat id: <code>{message['chat']['id']}</code>")

    def _handle_status(self, message: Dict):
        """System diagnostics."""
        chat_id = message["chat"]["id"]
        now = self.clock()
        with self.store.read():
            partners = len(self.store.partners())
            staff = len(self.store.staff_records())
            items = len(self.store.inventory_items())
            reminders = len([r for r in self.store.reminders() if not r.done])
            confirmations = len(self.store.confirmations())
            last_error = self.store.last_error

        last_tick = "never"
        if self.tick is not None and self.tick.last_run is not None:
            last_tick = f"{int((now - self.tick.last_run).total_seconds())}s ago"
        storage = "✅ OK" if last_error is None else f"⚠️ Last write failed: {last_error}"
        local = business_now(now)

        text = (
            "🔧 <b>System Diagnostics</b>\n"
            f"{DIVIDER}\n\n"
            "⚡ <b>Status Overview</b>\n"
            f"├ Storage: {storage}\n"
            f"├ Last tick: {last_tick}\n"
            f"├ Version: {SYSTEM_VERSION}\n"
            f"└ Mode: {'🧪 Test' if getattr(self.client, 'use_test_chat', False) else '🚀 Production'}\n\n"
            "📊 <b>Document</b>\n"
            f"├ Partners: {partners}\n"
            f"├ Staff: {staff}\n"
            f"├ Items: {items}\n"
            f"├ Active reminders: {reminders}\n"
            f"└ Open confirmations: {confirmations}\n\n"
            "🕐 <b>Time</b>\n"
            f"├ Business time: {local:%H:%M}\n"
            f"└ Timezone: {BUSINESS_TIMEZONE}"
        )
        self.send(chat_id, text)

    def _handle_cancel(self, message: Dict):
        chat_id = message["chat"]["id"]
        action = self.sessions.cancel(str(message["from"]["id"]))
        if action is None:
            self.send(chat_id, "ℹ️ No active operation to cancel")
            return
        self.send(chat_id, f"❌ <b>Operation Cancelled</b>\n{DIVIDER}\nCancelled: {action}\nNo data was saved")

    def _handle_unknown(self, message: Dict):
        self.send(message["chat"]["id"], ERROR_MESSAGES["invalid_command"])

    def _handle_login(self, message: Dict):
        chat_id = message["chat"]["id"]
        if not self.admin_password:
            self.send(chat_id, "🔐 Admin login is disabled")
            return
        self.send(chat_id, self.sessions.start(str(message["from"]["id"]), "admin_login", self.clock()))

    def _handle_settz(self, message: Dict):
        chat_id = message["chat"]["id"]
        user_id = str(message["from"]["id"])
        args = self._args(message)
        if len(args) != 1 or not is_valid_timezone(args[0]):
            self.send(chat_id, "Usage: /settz Area/City (e.g. Asia/Kolkata)")
            return
        tz = args[0]
        now = self.clock()
        with self.store.transaction():
            partner = self.store.get_partner(user_id)
            record = self.store.get_staff(user_id)
            if partner is None and record is None:
                raise KitchenOpsError("Send /start first")
            if partner is not None:
                partner.tz = tz
                self.store.put_partner(partner)
            if record is not None:
                record.tz = tz
                self.store.put_staff(record)
            self.store.audit(user_id, "timezone_set", {"tz": tz}, now)
        self.send(chat_id, f"🌍 Timezone set to {tz}")

    def _handle_addpartner(self, message: Dict):
        """/addpartner <chat_id> <role> <name...>"""
        chat_id = message["chat"]["id"]
        args = self._args(message)
        if len(args) < 3 or not args[0].lstrip("-").isdigit() or args[1].lower() not in ROLES:
            self.send(chat_id, f"Usage: /addpartner chat_id ({'|'.join(ROLES)}) name")
            return
        partner_id, role, name = args[0], args[1].lower(), " ".join(args[2:])
        now = self.clock()
        with self.store.transaction():
            existing = self.store.get_partner(partner_id)
            partner = Partner(id=partner_id, name=name, role=role,
                              tz=existing.tz if existing else DEFAULT_PARTNER_TIMEZONE)
            self.store.put_partner(partner)
            self.store.audit(message["from"]["id"], "partner_added", partner.to_dict(), now)
        self.logger.info(f"Partner {name} ({partner_id}) added as {role}")
        self.send(chat_id, f"✅ {name} added as <b>{role}</b>")

    def _handle_vegcheck(self, message: Dict):
        now = self.clock()
        sent = self.confirmations.initiate(business_date(now), now)
        self.send(message["chat"]["id"], f"🥬 Vegetable check sent to {sent} partner(s)")

    def _handle_stock(self, message: Dict):
        self.send(message["chat"]["id"], self.inventory.format_stock_report())

    def _flow_command(self, action: str, prefill_field: Optional[str] = None) -> Callable[[Dict], None]:
        """Build a handler that starts ``action``, optionally prefilled from the arguments."""
        def handler(message: Dict):
            chat_id = message["chat"]["id"]
            user_id = str(message["from"]["id"])
            temp = {}
            args = " ".join(self._args(message))
            if prefill_field and args:
                with self.store.read():
                    item = self.store.find_item(args)
                if item is None:
                    self.send(chat_id, ERROR_MESSAGES["item_not_found"].format(item=args))
                    return
                temp[prefill_field] = item.id
            self.send(chat_id, self.sessions.start(user_id, action, self.clock(), temp=temp))
        return handler

    def _handle_thresholds(self, message: Dict):
        """/thresholds <item> <warnDays> <criticalDays>"""
        chat_id = message["chat"]["id"]
        args = self._args(message)
        try:
            name = " ".join(args[:-2])
            warn, critical = float(args[-2]), float(args[-1])
        except (IndexError, ValueError):
            self.send(chat_id, "Usage: /thresholds item warnDays criticalDays")
            return
        with self.store.read():
            item = self.store.find_item(name)
        if item is None:
            self.send(chat_id, ERROR_MESSAGES["item_not_found"].format(item=name))
            return
        item = self.inventory.set_thresholds(item.id, warn, critical, message["from"]["id"], self.clock())
        self.send(chat_id, f"✅ {item.name}: warn at {format_quantity(warn)} days, critical at {format_quantity(critical)} days")

    def _handle_reminders(self, message: Dict):
        chat_id = message["chat"]["id"]
        user_id = str(message["from"]["id"])
        tz = self._user_tz(user_id)
        reminders = self.reminders.for_user(user_id)
        if not reminders:
            self.send(chat_id, "🔔 No active reminders. Create one with /remind")
            return
        lines = ["🔔 <b>Your reminders</b>"]
        for r in sorted(reminders, key=lambda r: r.when):
            local = to_zone(parse_iso(r.when), tz)
            lines.append(f"• {local:%Y-%m-%d %H:%M} ({r.repeat}, {r.target}) - {r.text}")
        self.send(chat_id, "\n".join(lines))

    def _handle_clockin(self, message: Dict):
        user = message["from"]
        now = self.clock()
        self.staff.ensure_staff(user["id"], self._display_name(user), now)
        self.send(message["chat"]["id"], self.staff.clock_in(user["id"], now))

    def _handle_clockout(self, message: Dict):
        user = message["from"]
        now = self.clock()
        self.staff.ensure_staff(user["id"], self._display_name(user), now)
        self.send(message["chat"]["id"], self.staff.clock_out(user["id"], now))

    def _staff_target(self, user_id: str, args: List[str]) -> str:
        """Own id, or another staff id for owners/admins."""
        others = [a for a in args if a.lstrip("-").isdigit()]
        if not others or others[0] == user_id:
            return user_id
        self._require(user_id, PRIVILEGED)
        return others[0]

    def _handle_attendance(self, message: Dict):
        """/attendance [YYYY-MM] [staff_id]"""
        user_id = str(message["from"]["id"])
        args = self._args(message)
        month = next((a for a in args if re.fullmatch(r"\d{4}-\d{2}", a)), business_date(self.clock())[:7])
        target = self._staff_target(user_id, [a for a in args if a != month])
        self.send(message["chat"]["id"], self.staff.attendance_summary(target, month))

    def _handle_salary(self, message: Dict):
        user_id = str(message["from"]["id"])
        target = self._staff_target(user_id, self._args(message))
        self.send(message["chat"]["id"], self.staff.salary_summary(target))

    def _handle_schedules(self, message: Dict):
        self.send(message["chat"]["id"], self.schedules.list_text())

    def _handle_setschedule(self, message: Dict):
        """/setschedule <id> <intervalDays> <HH:MM> <message...>"""
        chat_id = message["chat"]["id"]
        args = self._args(message)
        if len(args) < 3:
            self.send(chat_id, "Usage: /setschedule id intervalDays HH:MM Message...")
            return
        schedule_id, interval, time_str = args[0], args[1], args[2]
        interval_days = int(interval) if interval.isdigit() else 1
        schedule = self.schedules.upsert(
            schedule_id, interval_days, time_str, " ".join(args[3:]), message["from"]["id"], self.clock(),
        )
        self.send(chat_id, f"Schedule set: {schedule.id} every {schedule.interval_days} days at {schedule.time}")

    def _handle_test(self, message: Dict):
        chat_id = message["chat"]["id"]
        args = self._args(message)
        if not args:
            self.send(chat_id, "Usage: /test schedule_id")
            return
        sent = self.schedules.send_test(args[0], self.clock())
        self.send(chat_id, f"Test reminders sent to {sent} partner(s).")

    # ===== FLOW EFFECTS =====

    def _item_summary(self, item) -> str:
        days = days_left(item.stock, item.daily_usage)
        return (
            f"<b>{item.name}</b>: {format_quantity(item.stock)} {item.unit} "
            f"• {format_quantity(item.daily_usage)}/day • {format_days(days)} days left"
        )

    def _complete_add_item(self, user_id: str, temp: Dict) -> str:
        item = self.inventory.add_item(
            temp["name"], temp["unit"], temp["stock"], temp["daily_usage"], user_id, self.clock(),
        )
        self.send(user_id, f"✅ Added {self._item_summary(item)}", item_keyboard(item.id))
        return "📦 Use the buttons above to record purchases or usage"

    def _complete_purchase(self, user_id: str, temp: Dict) -> str:
        item = self.inventory.record_purchase(temp["item"], temp["quantity"], user_id, self.clock())
        return f"🛒 Purchase recorded. {self._item_summary(item)}"

    def _complete_use_stock(self, user_id: str, temp: Dict) -> str:
        item = self.inventory.record_usage(temp["item"], temp["quantity"], user_id, self.clock())
        return f"🍳 Usage recorded. {self._item_summary(item)}"

    def _complete_set_usage(self, user_id: str, temp: Dict) -> str:
        item = self.inventory.set_daily_usage(temp["item"], temp["daily_usage"], user_id, self.clock())
        return f"📉 Daily usage updated. {self._item_summary(item)}"

    def _complete_add_reminder(self, user_id: str, temp: Dict) -> str:
        if temp["target"] != user_id:
            self._require(user_id, PARTNER)
        reminder = self.reminders.create(
            user_id, temp["target"], temp["text"], parse_iso(temp["when"]), temp["repeat"], self.clock(),
        )
        local = to_zone(parse_iso(reminder.when), self._user_tz(user_id))
        return f"🔔 Reminder set for {local:%Y-%m-%d %H:%M} ({reminder.repeat})"

    def _complete_admin_login(self, user_id: str, temp: Dict) -> str:
        now = self.clock()
        if not self.admin_password or not hmac.compare_digest(temp["password"], self.admin_password):
            self.logger.warning(f"Failed admin login from {user_id}")
            with self.store.transaction():
                self.store.audit(user_id, "login_failed", {}, now)
            return ERROR_MESSAGES["not_authorized"]

        with self.store.transaction():
            partner = self.store.get_partner(user_id)
            record = self.store.get_staff(user_id)
            if partner is None:
                partner = Partner(
                    id=user_id,
                    name=record.name if record else user_id,
                    tz=record.tz if record else DEFAULT_PARTNER_TIMEZONE,
                )
            if not partner.is_privileged:
                partner.role = "admin"
            self.store.put_partner(partner)
            self.store.audit(user_id, "login", {"role": partner.role}, now)
        self.logger.info(f"{partner.name} ({user_id}) logged in as {partner.role}")
        return f"🔓 Logged in as <b>{partner.role}</b>"

    def _complete_pay_partial(self, user_id: str, temp: Dict) -> str:
        self._require(user_id, PRIVILEGED)
        return self.staff.record_partial_payment(temp["staff_id"], temp["amount"], user_id, self.clock())

    def _complete_add_employee(self, user_id: str, temp: Dict) -> str:
        self._require(user_id, PRIVILEGED)
        record = self.staff.add_employee(
            temp["staff_id"], temp["name"], temp["salary_type"], temp["amount"], temp["payday"],
            user_id, self.clock(),
        )
        return f"✅ Employee {record.name} ({record.id}) saved"

    def _complete_set_role(self, user_id: str, temp: Dict) -> str:
        self._require(user_id, PRIVILEGED)
        return self.staff.set_role(temp["user_id"], temp["role"], user_id, self.clock())

    def _complete_set_salary(self, user_id: str, temp: Dict) -> str:
        self._require(user_id, PRIVILEGED)
        record = self.staff.set_salary(
            temp["staff_id"], temp["salary_type"], temp["amount"], temp["payday"], user_id, self.clock(),
        )
        return f"✅ Salary for {record.name} updated"
