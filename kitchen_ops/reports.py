"""
Tabular views of the document for operators.

Pure functions from a document dict to pandas DataFrames; the dashboard
renders them and tests check them without Streamlit.
"""

import json
import math
from typing import Any, Dict, Optional

import pandas as pd

from .inventory import days_left
from .models import InventoryItem, Reminder, StaffRecord
from .store import normalize_document

STATUS_ORDER = ["Critical", "Low", "OK", "No usage"]
STATUS_COLORS = {
    "Critical": "#FF3547",
    "Low": "#FFB300",
    "OK": "#00C851",
    "No usage": "#6C757D",
}


def load_document(path: str) -> Dict[str, Any]:
    """Read the document without taking ownership of it."""
    with open(path, "r", encoding="utf-8") as fh:
        return normalize_document(json.load(fh))


def stock_status(item: InventoryItem) -> str:
    days = days_left(item.stock, item.daily_usage)
    if math.isinf(days):
        return "No usage"
    if days <= item.critical_days:
        return "Critical"
    if days <= item.warn_days:
        return "Low"
    return "OK"


def inventory_frame(doc: Dict[str, Any]) -> pd.DataFrame:
    rows = []
    for raw in doc.get("inventory", []):
        item = InventoryItem.from_dict(raw)
        days = days_left(item.stock, item.daily_usage)
        rows.append({
            "id": item.id,
            "item": item.name,
            "stock": item.stock,
            "unit": item.unit,
            "daily_usage": item.daily_usage,
            "days_left": None if math.isinf(days) else round(days, 2),
            "warn_days": item.warn_days,
            "critical_days": item.critical_days,
            "status": stock_status(item),
            "last_updated": item.last_updated,
        })
    columns = ["id", "item", "stock", "unit", "daily_usage", "days_left",
               "warn_days", "critical_days", "status", "last_updated"]
    df = pd.DataFrame(rows, columns=columns)
    if not df.empty:
        df["status"] = pd.Categorical(df["status"], categories=STATUS_ORDER, ordered=True)
        df = df.sort_values(["status", "days_left"], na_position="last").reset_index(drop=True)
    return df


def attendance_frame(doc: Dict[str, Any], month: Optional[str] = None) -> pd.DataFrame:
    """One row per staff member per recorded day, optionally for one YYYY-MM."""
    rows = []
    for raw in doc.get("staff", []):
        record = StaffRecord.from_dict(raw)
        for day, entry in record.attendance.items():
            if month and not day.startswith(month):
                continue
            hours = None
            if entry.clock_in and entry.clock_out:
                delta = pd.Timestamp(entry.clock_out) - pd.Timestamp(entry.clock_in)
                hours = round(delta.total_seconds() / 3600, 2)
            rows.append({
                "staff_id": record.id,
                "name": record.name,
                "date": day,
                "status": entry.status,
                "clock_in": entry.clock_in,
                "clock_out": entry.clock_out,
                "hours": hours,
            })
    columns = ["staff_id", "name", "date", "status", "clock_in", "clock_out", "hours"]
    return pd.DataFrame(rows, columns=columns).sort_values(["date", "name"]).reset_index(drop=True)


def attendance_totals(frame: pd.DataFrame) -> pd.DataFrame:
    """Days per status for each staff member."""
    if frame.empty:
        return pd.DataFrame(columns=["name", "present", "absent", "leave"])
    totals = frame.pivot_table(index="name", columns="status", values="date", aggfunc="count", fill_value=0)
    for status in ("present", "absent", "leave"):
        if status not in totals.columns:
            totals[status] = 0
    return totals[["present", "absent", "leave"]].reset_index()


def payments_frame(doc: Dict[str, Any]) -> pd.DataFrame:
    rows = []
    for raw in doc.get("staff", []):
        record = StaffRecord.from_dict(raw)
        for payment in record.payments:
            rows.append(dict(payment.to_dict(), staff_id=record.id, name=record.name))
    columns = ["staff_id", "name", "date", "amount", "kind", "by", "when", "id"]
    return pd.DataFrame(rows, columns=columns).sort_values("date", ascending=False).reset_index(drop=True)


def confirmations_frame(doc: Dict[str, Any]) -> pd.DataFrame:
    names = {str(p.get("id")): p.get("name") for p in doc.get("partners", [])}
    rows = [
        {
            "date": date,
            "partner_id": partner_id,
            "partner": names.get(str(partner_id), partner_id),
            "status": entry.get("status"),
            "last_updated": entry.get("lastUpdated"),
            "next_check": entry.get("nextCheck"),
        }
        for date, by_partner in doc.get("pendingConfirmations", {}).items()
        for partner_id, entry in by_partner.items()
    ]
    return pd.DataFrame(rows, columns=["date", "partner_id", "partner", "status", "last_updated", "next_check"])


def reminders_frame(doc: Dict[str, Any]) -> pd.DataFrame:
    rows = [Reminder.from_dict(raw).to_dict() for raw in doc.get("reminders", [])]
    columns = ["id", "createdBy", "target", "text", "when", "repeat", "done"]
    return pd.DataFrame(rows, columns=columns).sort_values("when").reset_index(drop=True)


def audit_frame(doc: Dict[str, Any], limit: int = 200) -> pd.DataFrame:
    rows = doc.get("audit", [])[-limit:][::-1]
    return pd.DataFrame(
        [dict(entry, details=json.dumps(entry.get("details", {}), ensure_ascii=False)) for entry in rows],
        columns=["when", "actor", "action", "details"],
    )
