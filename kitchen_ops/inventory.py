"""
Inventory tracking and low/critical stock alerts.

Days of stock left is ``stock / dailyUsage``. An item alerts once when it
falls to ``warnDays`` and once when it falls to ``criticalDays``; each latch
clears only after the level recovers above its threshold, so a later drop
alerts again.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .config import to_iso
from .errors import NotFoundError, ValidationError
from .models import InventoryItem
from .notify import OutgoingMessage

DIVIDER = "━━━━━━━━━━━━━━━━━━━━━━━━━━━━"


@dataclass(frozen=True)
class AlertState:
    warned: bool
    critical: bool
    send_warning: bool = False
    send_critical: bool = False


def days_left(stock: float, daily_usage: float) -> float:
    if daily_usage > 0:
        return stock / daily_usage
    return math.inf


def derive_alert_state(days: float, warn_days: float, critical_days: float,
                       warned: bool, critical: bool) -> AlertState:
    """
    Derive the next latch state from the current level and previous latches.

    Infinite days (no usage) never alerts and releases both latches.
    """
    if math.isinf(days):
        return AlertState(warned=False, critical=False)

    send_warning = days <= warn_days and not warned
    send_critical = days <= critical_days and not critical
    return AlertState(
        warned=days <= warn_days,
        critical=days <= critical_days,
        send_warning=send_warning,
        send_critical=send_critical,
    )


def format_days(days: float) -> str:
    return "∞" if math.isinf(days) else f"{days:.1f}"


def format_quantity(qty: float) -> str:
    return f"{qty:g}"


class InventoryMonitor:
    """Inventory mutations plus the threshold monitor run on every tick."""

    def __init__(self, store, notifier):
        self.store = store
        self.notifier = notifier
        self.logger = logging.getLogger("business")

    # ===== THRESHOLD MONITOR =====

    def _evaluate_item(self, item: InventoryItem, recipients: List[str]) -> List[OutgoingMessage]:
        days = days_left(item.stock, item.daily_usage)
        state = derive_alert_state(days, item.warn_days, item.critical_days, item.warned, item.critical)

        outbox = []
        if state.send_warning:
            outbox.append(OutgoingMessage(
                recipients,
                "⚠️ <b>LOW STOCK</b>\n"
                f"{DIVIDER}\n"
                f"<b>{item.name}</b>: {format_quantity(item.stock)} {item.unit} left\n"
                f"Usage: {format_quantity(item.daily_usage)} {item.unit}/day\n"
                f"Days remaining: <b>{format_days(days)}</b> (warning at {format_quantity(item.warn_days)})",
                tag="low_stock",
            ))
        if state.send_critical:
            outbox.append(OutgoingMessage(
                recipients,
                "🚨 <b>CRITICAL STOCK</b>\n"
                f"{DIVIDER}\n"
                f"<b>{item.name}</b>: {format_quantity(item.stock)} {item.unit} left\n"
                f"Days remaining: <b>{format_days(days)}</b> (critical at {format_quantity(item.critical_days)})\n"
                "📞 Reorder immediately",
                tag="critical_stock",
            ))

        if (state.warned, state.critical) != (item.warned, item.critical):
            if item.warned and not state.warned:
                self.logger.info(f"{item.name} recovered above warning level ({format_days(days)} days)")
            item.warned = state.warned
            item.critical = state.critical
            self.store.put_item(item)
        return outbox

    def evaluate(self, item_id: str) -> int:
        """Evaluate one item; returns alerts sent."""
        with self.store.transaction():
            item = self.store.get_item(item_id)
            if item is None:
                raise NotFoundError(f"Item {item_id} not found")
            outbox = self._evaluate_item(item, [p.id for p in self.store.partners()])
        return self.notifier.dispatch(outbox)

    def evaluate_all(self) -> int:
        """Evaluate every item, persisting latches before any alert is sent."""
        with self.store.transaction():
            recipients = [p.id for p in self.store.partners()]
            outbox = []
            for item in self.store.inventory_items():
                outbox.extend(self._evaluate_item(item, recipients))
        if outbox:
            self.logger.info(f"Inventory check raised {len(outbox)} alert(s)")
        return self.notifier.dispatch(outbox)

    # ===== MUTATIONS =====

    def add_item(self, name: str, unit: str, stock: float, daily_usage: float,
                 actor, now: datetime, warn_days: Optional[float] = None,
                 critical_days: Optional[float] = None) -> InventoryItem:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Item name is required")
        if stock < 0 or daily_usage < 0:
            raise ValidationError("Stock and daily usage cannot be negative")

        with self.store.transaction():
            if self.store.find_item(name):
                raise ValidationError(f"Item '{name}' already exists")
            defaults = self.store.settings["inventory"]
            item = InventoryItem(
                id=self.store.new_id(),
                name=name,
                stock=stock,
                unit=(unit or "").strip(),
                daily_usage=daily_usage,
                warn_days=defaults["warnDays"] if warn_days is None else warn_days,
                critical_days=defaults["criticalDays"] if critical_days is None else critical_days,
                last_updated=to_iso(now),
            )
            self.store.put_item(item)
            self.store.audit(actor, "item_added", item.to_dict(), now)
        self.logger.info(f"Inventory item added: {item.name} ({item.stock:g} {item.unit})")
        return item

    def _update(self, item_id: str, actor, now: datetime, action: str, mutate) -> InventoryItem:
        with self.store.transaction():
            item = self.store.get_item(item_id)
            if item is None:
                raise NotFoundError(f"Item {item_id} not found")
            details = mutate(item)
            item.last_updated = to_iso(now)
            self.store.put_item(item)
            self.store.audit(actor, action, dict(details, item=item.id), now)
        self.logger.info(f"{action}: {item.name} -> stock {item.stock:g}, usage {item.daily_usage:g}/day")
        return item

    def record_purchase(self, item_id: str, quantity: float, actor, now: datetime) -> InventoryItem:
        if quantity <= 0:
            raise ValidationError("Purchase quantity must be greater than 0")

        def mutate(item):
            item.stock += quantity
            return {"quantity": quantity}
        return self._update(item_id, actor, now, "purchase", mutate)

    def record_usage(self, item_id: str, quantity: float, actor, now: datetime) -> InventoryItem:
        if quantity <= 0:
            raise ValidationError("Used quantity must be greater than 0")

        def mutate(item):
            if quantity > item.stock:
                self.logger.warning(f"Usage of {quantity:g} exceeds stock of {item.name} ({item.stock:g}); flooring at 0")
            item.stock = max(item.stock - quantity, 0.0)
            return {"quantity": quantity}
        return self._update(item_id, actor, now, "usage", mutate)

    def set_daily_usage(self, item_id: str, daily_usage: float, actor, now: datetime) -> InventoryItem:
        if daily_usage < 0:
            raise ValidationError("Daily usage cannot be negative")

        def mutate(item):
            previous = item.daily_usage
            item.daily_usage = daily_usage
            return {"from": previous, "to": daily_usage}
        return self._update(item_id, actor, now, "set_usage", mutate)

    def set_thresholds(self, item_id: str, warn_days: float, critical_days: float,
                       actor, now: datetime) -> InventoryItem:
        if critical_days < 0 or warn_days < critical_days:
            raise ValidationError("Thresholds must satisfy 0 <= critical <= warn")

        def mutate(item):
            item.warn_days = warn_days
            item.critical_days = critical_days
            return {"warnDays": warn_days, "criticalDays": critical_days}
        return self._update(item_id, actor, now, "set_thresholds", mutate)

    # ===== REPORTING =====

    def format_stock_report(self) -> str:
        with self.store.read():
            items = self.store.inventory_items()

        if not items:
            return "📦 No inventory items yet. Add one with /additem"

        lines = ["📦 <b>INVENTORY</b>", DIVIDER]
        for item in sorted(items, key=lambda i: days_left(i.stock, i.daily_usage)):
            days = days_left(item.stock, item.daily_usage)
            if not math.isinf(days) and days <= item.critical_days:
                indicator = "🔴"
            elif not math.isinf(days) and days <= item.warn_days:
                indicator = "🟡"
            else:
                indicator = "🟢"
            lines.append(
                f"{indicator} <b>{item.name}</b>: {format_quantity(item.stock)} {item.unit} "
                f"• {format_quantity(item.daily_usage)}/day • {format_days(days)} days"
            )
        lines.append(DIVIDER)
        lines.append("🔴 Critical • 🟡 Low • 🟢 OK")
        return "\n".join(lines)
