"""
Multi-step conversational flows.

Every flow is an ordered tuple of ``FlowStep``. A step parses the user's
text into one value of ``Session.temp``; a parse failure replies with the
step's error and leaves the session where it was. Finishing the last step
hands the collected values back to the bot, which applies the effect.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from .config import (
    ERROR_MESSAGES,
    ROLES,
    SALARY_TYPES,
    SESSION_TIMEOUT_MINUTES,
    parse_iso,
    to_iso,
)
from .errors import KitchenOpsError
from .models import Session
from .reminders import REPEAT_TYPES, parse_when


@dataclass
class FlowContext:
    """What a step parser may look at besides the text itself."""
    store: Any
    now: datetime
    tz: str = "UTC"
    user_id: str = ""


@dataclass(frozen=True)
class FlowStep:
    field: str
    prompt: str
    parse: Callable[[str, FlowContext], Any]
    error: str


@dataclass
class StepResult:
    session: Optional[Session]
    reply: str
    completed: Optional[Dict[str, Any]] = None


# ===== STEP PARSERS =====

def _text(value: str, ctx: FlowContext) -> str:
    value = value.strip()
    if not value:
        raise ValueError("empty")
    return value


def _number(value: str) -> float:
    number = float(value.strip().replace(",", ""))
    if number != number or number in (float("inf"), float("-inf")):
        raise ValueError("not finite")
    return number


def _non_negative(value: str, ctx: FlowContext) -> float:
    number = _number(value)
    if number < 0:
        raise ValueError("negative")
    return number


def _positive(value: str, ctx: FlowContext) -> float:
    number = _number(value)
    if number <= 0:
        raise ValueError("not positive")
    return number


def _new_item_name(value: str, ctx: FlowContext) -> str:
    name = _text(value, ctx)
    with ctx.store.read():
        if ctx.store.find_item(name):
            raise ValueError("exists")
    return name


def _existing_item(value: str, ctx: FlowContext) -> str:
    with ctx.store.read():
        item = ctx.store.find_item(value.strip())
    if item is None:
        raise ValueError("unknown item")
    return item.id


def _existing_staff(value: str, ctx: FlowContext) -> str:
    with ctx.store.read():
        record = ctx.store.get_staff(value.strip())
    if record is None:
        raise ValueError("unknown staff")
    return record.id


def _user_id(value: str, ctx: FlowContext) -> str:
    value = value.strip()
    if not value.lstrip("-").isdigit():
        raise ValueError("not a chat id")
    return value


def _choice(options: Tuple[str, ...]) -> Callable[[str, FlowContext], str]:
    def parse(value: str, ctx: FlowContext) -> str:
        value = value.strip().lower()
        if value not in options:
            raise ValueError("not an option")
        return value
    return parse


def _payday(value: str, ctx: FlowContext) -> int:
    day = int(value.strip())
    if not 1 <= day <= 31:
        raise ValueError("not a day of month")
    return day


def _when(value: str, ctx: FlowContext) -> str:
    return to_iso(parse_when(value, ctx.tz, ctx.now))


def _target(value: str, ctx: FlowContext) -> str:
    value = value.strip().lower()
    if value in ("me", "self"):
        return ctx.user_id
    if value == "all":
        return "all"
    return _user_id(value, ctx)


def _password(value: str, ctx: FlowContext) -> str:
    return value.strip()


# ===== FLOW DEFINITIONS =====

ITEM_STEP = FlowStep("item", "📦 Which item? (name)", _existing_item, ERROR_MESSAGES["item_not_found"])

FLOWS: Dict[str, Tuple[FlowStep, ...]] = {
    "add_item": (
        FlowStep("name", "📦 <b>New item</b>\nWhat is the item called?", _new_item_name,
                 "❌ That item already exists or the name is empty. Try another name"),
        FlowStep("unit", "📏 Unit? (kg, l, pcs, ...)", _text, "❌ Please enter a unit"),
        FlowStep("stock", "🔢 Current stock?", _non_negative, ERROR_MESSAGES["invalid_quantity"]),
        FlowStep("daily_usage", "📉 Usage per day?", _non_negative, ERROR_MESSAGES["invalid_quantity"]),
    ),
    "purchase": (
        ITEM_STEP,
        FlowStep("quantity", "🛒 How much was bought?", _positive, ERROR_MESSAGES["invalid_amount"]),
    ),
    "use_stock": (
        ITEM_STEP,
        FlowStep("quantity", "🍳 How much was used?", _positive, ERROR_MESSAGES["invalid_amount"]),
    ),
    "set_usage": (
        ITEM_STEP,
        FlowStep("daily_usage", "📉 New usage per day?", _non_negative, ERROR_MESSAGES["invalid_quantity"]),
    ),
    "add_reminder": (
        FlowStep("text", "🔔 <b>New reminder</b>\nWhat should I remind about?", _text,
                 "❌ Please enter the reminder text"),
        FlowStep("when", "🕐 When? (YYYY-MM-DD HH:MM, HH:MM or 'in 30m')", _when, ERROR_MESSAGES["invalid_date"]),
        FlowStep("repeat", "🔁 Repeat? (once / daily)", _choice(REPEAT_TYPES), "❌ Please answer 'once' or 'daily'"),
        FlowStep("target", "👥 For whom? (me / all / chat id)", _target, "❌ Please answer 'me', 'all' or a chat id"),
    ),
    "admin_login": (
        FlowStep("password", "🔐 Enter the admin password", _password, "❌ Please enter the password"),
    ),
    "pay_partial": (
        FlowStep("amount", "➗ How much was paid?", _positive, ERROR_MESSAGES["invalid_amount"]),
    ),
    "add_employee": (
        FlowStep("staff_id", "👤 <b>New employee</b>\nTheir Telegram chat id?", _user_id,
                 "❌ Please enter a numeric chat id"),
        FlowStep("name", "📝 Their name?", _text, "❌ Please enter a name"),
        FlowStep("salary_type", "💼 Salary type? (daily / monthly)", _choice(SALARY_TYPES),
                 "❌ Please answer 'daily' or 'monthly'"),
        FlowStep("amount", "💰 Salary amount?", _positive, ERROR_MESSAGES["invalid_amount"]),
        FlowStep("payday", "📅 Payday (day of month, 1-31)?", _payday, "❌ Please enter a day between 1 and 31"),
    ),
    "set_role": (
        FlowStep("user_id", "👤 Whose role? (chat id)", _user_id, "❌ Please enter a numeric chat id"),
        FlowStep("role", f"🎭 New role? ({' / '.join(ROLES)})", _choice(ROLES),
                 f"❌ Please answer one of: {', '.join(ROLES)}"),
    ),
    "set_salary": (
        FlowStep("staff_id", "👤 Whose salary? (chat id)", _existing_staff, ERROR_MESSAGES["staff_not_found"]),
        FlowStep("salary_type", "💼 Salary type? (daily / monthly)", _choice(SALARY_TYPES),
                 "❌ Please answer 'daily' or 'monthly'"),
        FlowStep("amount", "💰 Salary amount?", _positive, ERROR_MESSAGES["invalid_amount"]),
        FlowStep("payday", "📅 Payday (day of month, 1-31)?", _payday, "❌ Please enter a day between 1 and 31"),
    ),
}


def first_open_step(action: str, temp: Dict[str, Any]) -> int:
    """Index of the first step whose field is not already filled in."""
    for idx, step in enumerate(FLOWS[action]):
        if step.field not in temp:
            return idx
    return len(FLOWS[action])


def is_expired(session: Session, now: datetime, timeout_minutes: int = SESSION_TIMEOUT_MINUTES) -> bool:
    updated = parse_iso(session.updated_at)
    if updated is None:
        return False
    return now - updated > timedelta(minutes=timeout_minutes)


def advance(session: Session, text: str, ctx: FlowContext) -> StepResult:
    """
    Feed one message into a flow.

    Returns a ``StepResult`` whose ``session`` is the next state (None when
    the flow finished or was rejected) and whose ``completed`` holds the
    collected values once the last step parsed.
    """
    steps = FLOWS.get(session.action)
    if steps is None or not 0 <= session.step < len(steps):
        return StepResult(None, "⚠️ That conversation is no longer valid. Please start over.")

    step = steps[session.step]
    try:
        value = step.parse(text or "", ctx)
    except (ValueError, TypeError, KitchenOpsError):
        reply = step.error.format(item=(text or "").strip(), staff=(text or "").strip())
        return StepResult(session, reply)

    temp = dict(session.temp, **{step.field: value})
    next_step = first_open_step(session.action, temp)
    if next_step >= len(steps):
        return StepResult(None, "", completed=temp)

    nxt = Session(action=session.action, step=next_step, temp=temp, updated_at=to_iso(ctx.now))
    return StepResult(nxt, steps[next_step].prompt)


class SessionManager:
    """Session persistence on top of the document store."""

    def __init__(self, store):
        self.store = store
        self.logger = logging.getLogger("business")

    def start(self, user_id, action: str, now: datetime, temp: Optional[Dict[str, Any]] = None) -> str:
        """Begin (or restart) a flow and return its first prompt."""
        if action not in FLOWS:
            raise KeyError(action)
        temp = dict(temp or {})
        step = first_open_step(action, temp)
        with self.store.transaction():
            self.store.put_session(user_id, Session(action=action, step=step, temp=temp, updated_at=to_iso(now)))
        self.logger.debug(f"Session {action} started for {user_id} at step {step}")
        return FLOWS[action][step].prompt

    def active(self, user_id, now: datetime) -> Tuple[Optional[Session], bool]:
        """
        Return the user's live session.

        Returns:
            Tuple[Optional[Session], bool]: (session, whether one just expired)
        """
        with self.store.transaction():
            session = self.store.get_session(user_id)
            if session is None:
                return None, False
            if is_expired(session, now):
                self.store.clear_session(user_id)
                self.logger.info(f"Session {session.action} for {user_id} expired")
                return None, True
        return session, False

    def handle(self, user_id, text: str, ctx: FlowContext) -> StepResult:
        with self.store.transaction():
            session = self.store.get_session(user_id)
            if session is None:
                return StepResult(None, ERROR_MESSAGES["session_expired"])
            result = advance(session, text, ctx)
            if result.session is None:
                self.store.clear_session(user_id)
            elif result.session is not session:
                self.store.put_session(user_id, result.session)
        if result.completed is not None:
            self.logger.debug(f"Session {session.action} for {user_id} completed")
        return result

    def cancel(self, user_id) -> Optional[str]:
        """Drop the user's session; returns the cancelled action."""
        with self.store.transaction():
            session = self.store.get_session(user_id)
            if session is None:
                return None
            self.store.clear_session(user_id)
        return session.action

    def purge_expired(self, now: datetime) -> int:
        with self.store.transaction() as doc:
            expired = [
                user_id for user_id, raw in doc["sessions"].items()
                if is_expired(Session.from_dict(raw), now)
            ]
            for user_id in expired:
                self.store.clear_session(user_id)
        if expired:
            self.logger.info(f"Cleaned up {len(expired)} expired conversation(s)")
        return len(expired)
