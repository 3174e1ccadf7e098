"""
💼 Lead Store
-------------
Authoritative set of Lead Records. Every mutation appends exactly one
history entry and re-persists the whole set under the ``leads`` key.

Save failures never raise: they are logged, surfaced through ``degraded``,
and the in-memory copy is kept until the next successful save.
"""

from __future__ import annotations

import secrets
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from leadbot.config import BACKUP_KEY_PREFIX, LEADS_KEY, local_tz
from leadbot.datastore import KeyValueStore, get_store
from leadbot.errors import NotFound, PersistenceFailure
from leadbot.models import ExtractedFields, LeadRecord
from leadbot.runtime import get_logger, iso_now, parse_iso
from leadbot.schema import HistoryAction, LeadStatus, Priority, coerce_priority, coerce_status

logger = get_logger("lead_store")

HIGH_AMOUNT = 100_000
MEDIUM_AMOUNT = 50_000


def new_lead_id() -> str:
    return f"LD-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def priority_category(fields: ExtractedFields) -> Priority:
    """Urgent or amount > 1,00,000 → High; amount > 50,000 → Medium; else Low."""
    amount = fields.amount or 0
    if fields.urgency or amount > HIGH_AMOUNT:
        return Priority.HIGH
    if amount > MEDIUM_AMOUNT:
        return Priority.MEDIUM
    return Priority.LOW


class LeadStore:
    def __init__(self, store: Optional[KeyValueStore] = None) -> None:
        self.store = store or get_store()
        self.degraded = False
        self._leads: Dict[str, LeadRecord] = {}
        self.reload()

    # --- persistence ---
    def reload(self) -> None:
        try:
            raw = self.store.load(LEADS_KEY, []) or []
        except PersistenceFailure as exc:
            logger.error("❌ Failed to load lead records: %s", exc)
            self.degraded = True
            return
        leads: Dict[str, LeadRecord] = {}
        for item in raw:
            try:
                record = LeadRecord.from_dict(item)
            except (KeyError, ValueError, TypeError) as exc:
                logger.warning("⚠️ Skipping malformed lead record: %s", exc)
                continue
            leads[record.id] = record
        self._leads = leads
        logger.info("📂 Loaded %s lead records", len(leads))

    def snapshot(self) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in self._leads.values()]

    def _persist(self) -> bool:
        try:
            self.store.save(LEADS_KEY, self.snapshot())
        except PersistenceFailure as exc:
            if not self.degraded:
                logger.error("❌ Lead persistence failed, keeping records in memory: %s", exc)
            self.degraded = True
            return False
        if self.degraded:
            logger.info("✅ Lead persistence recovered")
        self.degraded = False
        return True

    def backup(self, day: str) -> bool:
        """Write a dated snapshot under backup:leads:<day>."""
        try:
            self.store.save(f"{BACKUP_KEY_PREFIX}{day}", self.snapshot())
        except PersistenceFailure as exc:
            logger.error("❌ Lead backup for %s failed: %s", day, exc)
            return False
        logger.info("🗄️ Lead backup written for %s (%s records)", day, len(self._leads))
        return True

    # --- mutations ---
    def create(
        self,
        fields: ExtractedFields,
        *,
        conversation_id: str = "",
        source_description: str = "",
        sender_label: str = "",
        raw_message: str = "",
    ) -> LeadRecord:
        lead_id = new_lead_id()
        while lead_id in self._leads:
            lead_id = new_lead_id()

        record = LeadRecord(
            id=lead_id,
            conversation_id=conversation_id,
            source_description=source_description,
            sender_label=sender_label,
            raw_message=raw_message,
            priority_category=priority_category(fields),
            identifiers=fields.identifiers(),
            fields=fields.to_dict(),
            is_urgent=bool(fields.urgency),
        )
        record.created_at = record.updated_at = iso_now()
        record.append_history(HistoryAction.CREATED, {"source": source_description})
        self._leads[record.id] = record
        self._persist()
        logger.info("🆕 Lead %s created (%s) from %s", record.id, record.priority_category.value, source_description)
        return record

    def update(self, lead_id: str, patch: Dict[str, Any], *, action: HistoryAction = HistoryAction.UPDATED) -> LeadRecord:
        """
        Apply a patch (status, assignee, priority, fields, lastMessage, note).
        Raises NotFound for unknown ids and ValueError for invalid values,
        in both cases without touching the store.
        """
        record = self._leads.get(lead_id)
        if record is None:
            raise NotFound(lead_id)

        patch = dict(patch or {})
        status = coerce_status(patch["status"]) if patch.get("status") is not None else None
        priority = coerce_priority(patch["priority"]) if patch.get("priority") is not None else None

        detail: Dict[str, Any] = {}
        if status is not None and status is not record.status:
            detail["status"] = {"from": record.status.value, "to": status.value}
            record.status = status
        if priority is not None and priority is not record.priority_category:
            detail["priority"] = {"from": record.priority_category.value, "to": priority.value}
            record.priority_category = priority
        if "assignee" in patch and patch["assignee"] != record.assignee:
            detail["assignee"] = patch["assignee"]
            record.assignee = patch["assignee"]
        if patch.get("fields"):
            new_fields = {k: v for k, v in dict(patch["fields"]).items() if v not in (None, "")}
            record.fields.update(new_fields)
            detail["fields"] = sorted(new_fields)
        for key in ("lastMessage", "note", "handler"):
            if patch.get(key):
                detail[key] = patch[key]

        record.append_history(action, detail)
        self._persist()
        logger.info("✏️ Lead %s %s: %s", lead_id, action.value, ", ".join(detail) or "no changes")
        return record

    # --- queries ---
    def get(self, lead_id: str) -> Optional[LeadRecord]:
        return self._leads.get(lead_id)

    def all(self) -> List[LeadRecord]:
        return list(self._leads.values())

    def list(
        self,
        *,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        conversation_id: Optional[str] = None,
        since: Optional[datetime | str] = None,
        limit: Optional[int] = None,
    ) -> List[LeadRecord]:
        """Newest first, filtered by status / priority / conversation / created-since."""
        wanted_status = coerce_status(status) if status else None
        wanted_priority = coerce_priority(priority) if priority else None
        since_dt = parse_iso(since) if isinstance(since, str) else since
        if isinstance(since, str) and since.strip() and since_dt is None:
            raise ValueError(f"Invalid 'since' timestamp: {since!r}")
        if since_dt is not None and since_dt.tzinfo is None:
            since_dt = since_dt.replace(tzinfo=local_tz())

        out: List[LeadRecord] = []
        for record in self._leads.values():
            if wanted_status and record.status is not wanted_status:
                continue
            if wanted_priority and record.priority_category is not wanted_priority:
                continue
            if conversation_id and record.conversation_id != conversation_id:
                continue
            if since_dt is not None:
                created = parse_iso(record.created_at)
                if created is None or created < since_dt:
                    continue
            out.append(record)
        out.sort(key=lambda r: r.created_at, reverse=True)
        return out[:limit] if limit else out

    def stats(self) -> Dict[str, Any]:
        records = self.all()
        total = len(records)
        tz = local_tz()
        today = datetime.now(tz).date()

        by_status = {status.value: 0 for status in LeadStatus}
        by_priority = {priority.value: 0 for priority in Priority}
        created_today = 0
        urgent = 0
        for record in records:
            by_status[record.status.value] += 1
            by_priority[record.priority_category.value] += 1
            created = parse_iso(record.created_at)
            if created is not None and created.astimezone(tz).date() == today:
                created_today += 1
            if record.is_urgent:
                urgent += 1

        closed = by_status[LeadStatus.CLOSED.value]
        conversion = round(closed / total * 100, 2) if total else 0
        return {
            "total": total,
            "byStatus": by_status,
            "byPriority": by_priority,
            "today": created_today,
            "urgent": urgent,
            "conversionRate": conversion,
            "degraded": self.degraded,
        }

    def __len__(self) -> int:
        return len(self._leads)


__all__ = ["LeadStore", "new_lead_id", "priority_category"]
