"""
Data model for everything kept in the JSON document.

Each dataclass mirrors one persisted entity and converts to and from the
camelCase dict layout stored on disk. The document itself stays plain JSON;
these classes are the typed view the engines work with.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional

from .config import DEFAULT_PARTNER_TIMEZONE

# ===== COMPOSITE KEYS =====


class SentKey(NamedTuple):
    """
    Key of a lastSent marker.

    ``kind`` names the feature ("schedule", "vegConfirm", ...) and ``parts``
    the identifiers that scope it. Schedule markers encode without the kind
    so they keep the ``<scheduleId>__<partnerId>`` layout.
    """
    kind: str
    parts: tuple

    def encode(self) -> str:
        if self.kind == "schedule":
            return "__".join(str(p) for p in self.parts)
        return "__".join([self.kind] + [str(p) for p in self.parts])


def sent_key(kind: str, *parts: Any) -> SentKey:
    return SentKey(kind, tuple(parts))


class ConfirmationKey(NamedTuple):
    date: str
    partner_id: str


# ===== ENTITIES =====

@dataclass
class Partner:
    id: str
    name: str
    role: str = "staff"
    tz: str = DEFAULT_PARTNER_TIMEZONE

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Partner":
        return cls(
            id=str(raw["id"]),
            name=raw.get("name") or str(raw["id"]),
            role=raw.get("role", "staff"),
            tz=raw.get("tz") or DEFAULT_PARTNER_TIMEZONE,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "role": self.role, "tz": self.tz}

    @property
    def is_privileged(self) -> bool:
        return self.role in ("owner", "admin")


@dataclass
class AttendanceEntry:
    status: Optional[str] = None
    clock_in: Optional[str] = None
    clock_out: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AttendanceEntry":
        return cls(status=raw.get("status"), clock_in=raw.get("in"), clock_out=raw.get("out"))

    def to_dict(self) -> Dict[str, Any]:
        return {"in": self.clock_in, "out": self.clock_out, "status": self.status}


@dataclass
class Payment:
    id: str
    date: str
    amount: float
    kind: str  # full | partial
    by: str
    when: str

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Payment":
        return cls(
            id=raw["id"],
            date=raw["date"],
            amount=float(raw.get("amount", 0)),
            kind=raw.get("kind", "full"),
            by=str(raw.get("by", "")),
            when=raw.get("when", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "amount": self.amount,
            "kind": self.kind,
            "by": self.by,
            "when": self.when,
        }


@dataclass
class StaffRecord:
    id: str
    name: str
    role: str = "staff"
    tz: str = DEFAULT_PARTNER_TIMEZONE
    salary_type: str = "daily"
    salary_amount: float = 0.0
    payday: int = 1
    attendance: Dict[str, AttendanceEntry] = field(default_factory=dict)
    payments: List[Payment] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "StaffRecord":
        return cls(
            id=str(raw["id"]),
            name=raw.get("name") or str(raw["id"]),
            role=raw.get("role", "staff"),
            tz=raw.get("tz") or DEFAULT_PARTNER_TIMEZONE,
            salary_type=raw.get("salaryType", "daily"),
            salary_amount=float(raw.get("salaryAmount", 0) or 0),
            payday=int(raw.get("payday", 1) or 1),
            attendance={d: AttendanceEntry.from_dict(e) for d, e in (raw.get("attendance") or {}).items()},
            payments=[Payment.from_dict(p) for p in raw.get("payments") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "tz": self.tz,
            "salaryType": self.salary_type,
            "salaryAmount": self.salary_amount,
            "payday": self.payday,
            "attendance": {d: e.to_dict() for d, e in self.attendance.items()},
            "payments": [p.to_dict() for p in self.payments],
        }


@dataclass
class PaymentPrompt:
    """An open or answered payroll question, keyed by (date, staff id)."""
    staff_id: str
    date: str
    amount: float
    kind: str  # daily | monthly
    status: str = "asked"  # asked | paid | partial | unpaid
    asked_at: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.date}__{self.staff_id}"

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "PaymentPrompt":
        return cls(
            staff_id=str(raw["staffId"]),
            date=raw["date"],
            amount=float(raw.get("amount", 0)),
            kind=raw.get("kind", "daily"),
            status=raw.get("status", "asked"),
            asked_at=raw.get("askedAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "staffId": self.staff_id,
            "date": self.date,
            "amount": self.amount,
            "kind": self.kind,
            "status": self.status,
            "askedAt": self.asked_at,
        }


@dataclass
class InventoryItem:
    """
    A stocked item with its usage rate and alert latches.

    ``warned``/``critical`` are the persisted ``_warned``/``_critical`` flags
    that keep an alert from repeating until stock recovers.
    """
    id: str
    name: str
    stock: float
    unit: str
    daily_usage: float = 0.0
    warn_days: float = 4
    critical_days: float = 2
    last_updated: Optional[str] = None
    warned: bool = False
    critical: bool = False

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "InventoryItem":
        return cls(
            id=str(raw["id"]),
            name=raw.get("name", str(raw["id"])),
            stock=float(raw.get("stock", 0) or 0),
            unit=raw.get("unit", ""),
            daily_usage=float(raw.get("dailyUsage", 0) or 0),
            warn_days=float(raw.get("warnDays", 4)),
            critical_days=float(raw.get("criticalDays", 2)),
            last_updated=raw.get("lastUpdated"),
            warned=bool(raw.get("_warned", False)),
            critical=bool(raw.get("_critical", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "stock": self.stock,
            "unit": self.unit,
            "dailyUsage": self.daily_usage,
            "warnDays": self.warn_days,
            "criticalDays": self.critical_days,
            "lastUpdated": self.last_updated,
            "_warned": self.warned,
            "_critical": self.critical,
        }


@dataclass
class PendingConfirmation:
    status: str = "pending"  # pending | confirmed | no | notyet
    last_updated: Optional[str] = None
    next_check: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "PendingConfirmation":
        return cls(
            status=raw.get("status", "pending"),
            last_updated=raw.get("lastUpdated"),
            next_check=raw.get("nextCheck"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "lastUpdated": self.last_updated, "nextCheck": self.next_check}


@dataclass
class Reminder:
    id: str
    created_by: str
    target: str  # user id or "all"
    text: str
    when: str
    repeat: str = "once"  # once | daily
    done: bool = False

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Reminder":
        return cls(
            id=str(raw["id"]),
            created_by=str(raw.get("createdBy", "")),
            target=str(raw.get("target", "all")),
            text=raw.get("text", ""),
            when=raw["when"],
            repeat=raw.get("repeat", "once"),
            done=bool(raw.get("done", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "createdBy": self.created_by,
            "target": self.target,
            "text": self.text,
            "when": self.when,
            "repeat": self.repeat,
            "done": self.done,
        }


@dataclass
class Schedule:
    id: str
    label: str
    time: str
    message: str
    interval_days: int = 1

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Schedule":
        return cls(
            id=str(raw["id"]),
            label=raw.get("label") or str(raw["id"]),
            time=raw.get("time", "00:00"),
            message=raw.get("message", ""),
            interval_days=int(raw.get("intervalDays") or 1),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "time": self.time,
            "message": self.message,
            "intervalDays": self.interval_days,
        }


@dataclass
class Heartbeat:
    device_id: str
    last_seen: Optional[str] = None
    status: str = "unknown"
    down: bool = False

    @classmethod
    def from_dict(cls, device_id: str, raw: Dict[str, Any]) -> "Heartbeat":
        return cls(
            device_id=device_id,
            last_seen=raw.get("lastSeen"),
            status=raw.get("status", "unknown"),
            down=bool(raw.get("_down", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"lastSeen": self.last_seen, "status": self.status, "_down": self.down}


@dataclass
class Session:
    """Where a user currently is inside a multi-step flow."""
    action: str
    step: int = 0
    temp: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Session":
        return cls(
            action=raw["action"],
            step=int(raw.get("step", 0)),
            temp=dict(raw.get("temp") or {}),
            updated_at=raw.get("updatedAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "step": self.step, "temp": self.temp, "updatedAt": self.updated_at}


@dataclass
class AuditEntry:
    when: str
    actor: str
    action: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"when": self.when, "actor": self.actor, "action": self.action, "details": self.details}
