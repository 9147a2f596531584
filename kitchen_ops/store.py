"""
Kitchen Ops Bot - Document Store
================================

Single JSON document holding all mutable state. The store is the only owner
of the in-memory copy: the bot, the scheduler and the heartbeat endpoint all
read and write through ``transaction()``, which serializes access with a
re-entrant lock and writes the document back on exit.

Top-level keys: lastSent, partners, schedules, pendingConfirmations,
inventory, reminders, staff, payments, heartbeats, settings, audit, sessions.
"""

import copy
import json
import logging
import os
import tempfile
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .config import AUDIT_RETENTION_ENTRIES, default_settings, to_iso, utc_now
from .errors import KitchenOpsError
from .models import (
    AuditEntry,
    ConfirmationKey,
    Heartbeat,
    InventoryItem,
    Partner,
    PaymentPrompt,
    PendingConfirmation,
    Reminder,
    Schedule,
    SentKey,
    Session,
    StaffRecord,
)

DOCUMENT_DEFAULTS = {
    "lastSent": dict,
    "partners": list,
    "schedules": list,
    "pendingConfirmations": dict,
    "inventory": list,
    "reminders": list,
    "staff": list,
    "payments": dict,
    "heartbeats": dict,
    "settings": default_settings,
    "audit": list,
    "sessions": dict,
}


def _merge_defaults(defaults: Dict[str, Any], current: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge user settings over defaults, keeping unknown keys."""
    merged = copy.deepcopy(defaults)
    for key, value in (current or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_defaults(merged[key], value)
        else:
            merged[key] = value
    return merged


def normalize_document(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Fill in every missing top-level key and default setting."""
    doc = dict(raw or {})
    for key, factory in DOCUMENT_DEFAULTS.items():
        if not isinstance(doc.get(key), type(factory())):
            doc[key] = factory()
    doc["settings"] = _merge_defaults(default_settings(), doc["settings"])
    return doc


class DocumentStore:
    """
    Load/save wrapper around the JSON document with typed accessors.

    Accessor methods operate on the live document and are meant to be called
    inside ``transaction()``; the lock is re-entrant so nesting is safe.
    """

    def __init__(self, path: str):
        self.path = path
        self.logger = logging.getLogger("store")
        self._lock = threading.RLock()
        self._mtime: Optional[float] = None
        self.last_error: Optional[str] = None
        self._depth = 0
        self.doc: Dict[str, Any] = normalize_document({})

    # ===== PERSISTENCE =====

    def load(self) -> Dict[str, Any]:
        """
        Read the document from disk, creating it with defaults if missing.

        A file that is not valid JSON is moved aside to ``<path>.corrupt``
        and replaced with an empty document so the bot keeps running.
        """
        with self._lock:
            if not os.path.exists(self.path):
                self.logger.critical(f"Document {self.path} not found - creating with defaults")
                self.doc = normalize_document({})
                self.save()
                return self.doc

            try:
                with open(self.path, "r", encoding="utf-8") as fh:
                    raw = json.load(fh)
            except json.JSONDecodeError as e:
                backup = f"{self.path}.corrupt"
                self.logger.critical(f"Document {self.path} is not valid JSON ({e}); moving to {backup}")
                os.replace(self.path, backup)
                self.doc = normalize_document({})
                self.save()
                return self.doc

            self.doc = normalize_document(raw)
            self._mtime = self._current_mtime()
            self.logger.debug(f"Document loaded from {self.path}")
            return self.doc

    def save(self) -> bool:
        """
        Atomically write the document (temp file + rename).

        Returns:
            bool: False if the write failed; the in-memory state is kept and
            will be persisted by the next successful save.
        """
        with self._lock:
            directory = os.path.dirname(os.path.abspath(self.path))
            tmp_path = None
            try:
                fd, tmp_path = tempfile.mkstemp(prefix=".db-", suffix=".json", dir=directory)
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(self.doc, fh, indent=2, ensure_ascii=False)
                os.replace(tmp_path, self.path)
                self._mtime = self._current_mtime()
                self.last_error = None
                return True
            except (OSError, TypeError, ValueError) as e:
                self.last_error = str(e)
                self.logger.error(f"Failed to write document {self.path}: {e}", exc_info=True)
                if tmp_path and os.path.exists(tmp_path):
                    os.remove(tmp_path)
                return False

    def refresh(self) -> bool:
        """Reload if the file was changed by someone other than this store."""
        with self._lock:
            mtime = self._current_mtime()
            if mtime is None or mtime == self._mtime:
                return False
            self.logger.info("Document changed on disk - reloading")
            self.load()
            return True

    def _current_mtime(self) -> Optional[float]:
        try:
            return os.path.getmtime(self.path)
        except OSError:
            return None

    @contextmanager
    def transaction(self) -> Iterator[Dict[str, Any]]:
        """
        Hold the lock, yield the live document, save on success.

        Only the outermost transaction saves, and only when the document
        changed or a previous save failed. An exception restores the
        document as it was on entry, unsaved changes from earlier included.
        """
        with self._lock:
            outermost = self._depth == 0
            before = copy.deepcopy(self.doc) if outermost else None
            self._depth += 1
            try:
                yield self.doc
            except Exception as e:
                if outermost:
                    self.doc = before
                    if isinstance(e, KitchenOpsError):
                        self.logger.debug(f"Transaction rejected: {e}")
                    else:
                        self.logger.warning(f"Transaction aborted ({e}) - changes discarded")
                raise
            finally:
                self._depth -= 1
            if outermost and (self.doc != before or self.last_error is not None):
                self.save()

    @contextmanager
    def read(self) -> Iterator[Dict[str, Any]]:
        """Hold the lock for a read-only look at the document."""
        with self._lock:
            yield self.doc

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self.doc)

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex[:8]

    # ===== SETTINGS & MARKERS =====

    @property
    def settings(self) -> Dict[str, Any]:
        return self.doc["settings"]

    def last_sent(self, key: SentKey) -> Optional[str]:
        return self.doc["lastSent"].get(key.encode())

    def mark_sent(self, key: SentKey, moment: datetime):
        self.doc["lastSent"][key.encode()] = to_iso(moment)

    def audit(self, actor: Any, action: str, details: Optional[Dict[str, Any]] = None,
              now: Optional[datetime] = None):
        """Append to the operator audit trail (never read back by logic)."""
        entry = AuditEntry(
            when=to_iso(now or utc_now()),
            actor=str(actor),
            action=action,
            details=details or {},
        )
        trail = self.doc["audit"]
        trail.append(entry.to_dict())
        if len(trail) > AUDIT_RETENTION_ENTRIES:
            del trail[: len(trail) - AUDIT_RETENTION_ENTRIES]

    # ===== PARTNERS =====

    def partners(self) -> List[Partner]:
        return [Partner.from_dict(p) for p in self.doc["partners"]]

    def get_partner(self, partner_id: Any) -> Optional[Partner]:
        for raw in self.doc["partners"]:
            if str(raw.get("id")) == str(partner_id):
                return Partner.from_dict(raw)
        return None

    def put_partner(self, partner: Partner):
        self._upsert_list("partners", partner.id, partner.to_dict())

    def privileged_partners(self) -> List[Partner]:
        return [p for p in self.partners() if p.is_privileged]

    # ===== STAFF =====

    def staff_records(self) -> List[StaffRecord]:
        return [StaffRecord.from_dict(s) for s in self.doc["staff"]]

    def get_staff(self, staff_id: Any) -> Optional[StaffRecord]:
        for raw in self.doc["staff"]:
            if str(raw.get("id")) == str(staff_id):
                return StaffRecord.from_dict(raw)
        return None

    def put_staff(self, record: StaffRecord):
        self._upsert_list("staff", record.id, record.to_dict())

    def get_payment_prompt(self, key: str) -> Optional[PaymentPrompt]:
        raw = self.doc["payments"].get(key)
        return PaymentPrompt.from_dict(raw) if raw else None

    def put_payment_prompt(self, prompt: PaymentPrompt):
        self.doc["payments"][prompt.key] = prompt.to_dict()

    def latest_open_payment_prompt(self, staff_id: Any) -> Optional[PaymentPrompt]:
        open_prompts = [
            PaymentPrompt.from_dict(raw) for raw in self.doc["payments"].values()
            if str(raw.get("staffId")) == str(staff_id) and raw.get("status") == "asked"
        ]
        if not open_prompts:
            return None
        return max(open_prompts, key=lambda p: p.date)

    # ===== INVENTORY =====

    def inventory_items(self) -> List[InventoryItem]:
        return [InventoryItem.from_dict(i) for i in self.doc["inventory"]]

    def get_item(self, item_id: Any) -> Optional[InventoryItem]:
        for raw in self.doc["inventory"]:
            if str(raw.get("id")) == str(item_id):
                return InventoryItem.from_dict(raw)
        return None

    def find_item(self, name_or_id: str) -> Optional[InventoryItem]:
        needle = (name_or_id or "").strip().lower()
        for item in self.inventory_items():
            if item.id == name_or_id or item.name.lower() == needle:
                return item
        return None

    def put_item(self, item: InventoryItem):
        self._upsert_list("inventory", item.id, item.to_dict())

    # ===== REMINDERS & SCHEDULES =====

    def reminders(self) -> List[Reminder]:
        return [Reminder.from_dict(r) for r in self.doc["reminders"]]

    def get_reminder(self, reminder_id: Any) -> Optional[Reminder]:
        for raw in self.doc["reminders"]:
            if str(raw.get("id")) == str(reminder_id):
                return Reminder.from_dict(raw)
        return None

    def put_reminder(self, reminder: Reminder):
        self._upsert_list("reminders", reminder.id, reminder.to_dict())

    def purge_done_reminders(self) -> int:
        before = len(self.doc["reminders"])
        self.doc["reminders"] = [r for r in self.doc["reminders"] if not r.get("done")]
        return before - len(self.doc["reminders"])

    def schedules(self) -> List[Schedule]:
        return [Schedule.from_dict(s) for s in self.doc["schedules"]]

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        for raw in self.doc["schedules"]:
            if str(raw.get("id")) == str(schedule_id):
                return Schedule.from_dict(raw)
        return None

    def put_schedule(self, schedule: Schedule):
        self._upsert_list("schedules", schedule.id, schedule.to_dict())

    # ===== CONFIRMATIONS =====

    def confirmations(self) -> List[Tuple[ConfirmationKey, PendingConfirmation]]:
        entries = []
        for date, by_partner in self.doc["pendingConfirmations"].items():
            for partner_id, raw in by_partner.items():
                entries.append((ConfirmationKey(date, str(partner_id)), PendingConfirmation.from_dict(raw)))
        return entries

    def get_confirmation(self, key: ConfirmationKey) -> Optional[PendingConfirmation]:
        raw = self.doc["pendingConfirmations"].get(key.date, {}).get(key.partner_id)
        return PendingConfirmation.from_dict(raw) if raw else None

    def put_confirmation(self, key: ConfirmationKey, entry: PendingConfirmation):
        self.doc["pendingConfirmations"].setdefault(key.date, {})[key.partner_id] = entry.to_dict()

    def remove_confirmation(self, key: ConfirmationKey):
        bucket = self.doc["pendingConfirmations"].get(key.date)
        if bucket is None:
            return
        bucket.pop(key.partner_id, None)
        if not bucket:
            del self.doc["pendingConfirmations"][key.date]

    # ===== HEARTBEATS =====

    def heartbeats(self) -> List[Heartbeat]:
        return [Heartbeat.from_dict(device_id, raw) for device_id, raw in self.doc["heartbeats"].items()]

    def get_heartbeat(self, device_id: str) -> Optional[Heartbeat]:
        raw = self.doc["heartbeats"].get(device_id)
        return Heartbeat.from_dict(device_id, raw) if raw else None

    def put_heartbeat(self, heartbeat: Heartbeat):
        self.doc["heartbeats"][heartbeat.device_id] = heartbeat.to_dict()

    # ===== SESSIONS =====

    def get_session(self, user_id: Any) -> Optional[Session]:
        raw = self.doc["sessions"].get(str(user_id))
        return Session.from_dict(raw) if raw else None

    def put_session(self, user_id: Any, session: Session):
        self.doc["sessions"][str(user_id)] = session.to_dict()

    def clear_session(self, user_id: Any) -> bool:
        return self.doc["sessions"].pop(str(user_id), None) is not None

    # ===== INTERNALS =====

    def _upsert_list(self, collection: str, entity_id: str, payload: Dict[str, Any]):
        rows = self.doc[collection]
        for idx, raw in enumerate(rows):
            if str(raw.get("id")) == str(entity_id):
                rows[idx] = payload
                return
        rows.append(payload)
