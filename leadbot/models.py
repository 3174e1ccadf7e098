"""Data models for message events, extraction/classification results, and lead records."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields as dataclass_fields
from datetime import datetime
from typing import Any, Dict, List, Optional

from leadbot.runtime import iso_now, parse_iso, to_iso
from leadbot.schema import (
    IDENTIFIER_KEYS,
    Decision,
    HistoryAction,
    LeadStatus,
    Priority,
    coerce_priority,
    coerce_status,
)


# --- Inbound transport event ---

@dataclass(slots=True)
class MessageEvent:
    """One inbound chat message as delivered by the transport."""

    id: str
    conversation_id: str
    text: str
    sender_id: Optional[str] = None
    is_group: bool = False
    group_name: Optional[str] = None
    received_at: Optional[datetime] = None
    from_me: bool = False

    @property
    def sender_label(self) -> str:
        """Phone-ish part of a chat id ("9198...@s.whatsapp.net" → "9198...")."""
        raw = self.sender_id or self.conversation_id or "Unknown"
        return raw.split("@", 1)[0] or "Unknown"

    @property
    def source_description(self) -> str:
        if self.is_group:
            return f"Group: {self.group_name or self.conversation_id}"
        return f"Contact: {self.conversation_id}"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "MessageEvent":
        """Build from a transport JSON payload (camelCase or snake_case keys)."""

        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in payload and payload[key] not in (None, ""):
                    return payload[key]
            return default

        msg_id = pick("id", "messageId", "message_id")
        conversation_id = pick("conversationId", "conversation_id", "remoteJid", "chatId")
        if not msg_id or not conversation_id:
            raise ValueError("Inbound event requires 'id' and 'conversationId'")

        is_group = pick("isGroup", "is_group", default=None)
        if is_group is None:
            is_group = str(conversation_id).endswith("@g.us")

        received = pick("receivedAt", "received_at", "timestamp")
        received_at: Optional[datetime]
        if isinstance(received, (int, float)):
            received_at = datetime.fromtimestamp(
                received / 1000 if received > 1e11 else received
            ).astimezone()
        else:
            received_at = parse_iso(received) if received else None

        return cls(
            id=str(msg_id),
            conversation_id=str(conversation_id),
            text=str(pick("text", "body", "message", default="") or ""),
            sender_id=pick("senderId", "sender_id", "participant"),
            is_group=bool(is_group),
            group_name=pick("groupDisplayName", "group_name", "groupName"),
            received_at=received_at,
            from_me=bool(pick("fromMe", "from_me", default=False)),
        )


# --- Extraction / classification ---

@dataclass(slots=True)
class ExtractedFields:
    """Structured partial record parsed out of free text. Absent = None."""

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    government_id: Optional[str] = None
    amount: Optional[float] = None
    purpose: Optional[str] = None
    location_area: Optional[str] = None
    location_city: Optional[str] = None
    urgency: Optional[bool] = None
    crm_id: Optional[str] = None
    opp_id: Optional[str] = None
    deal_id: Optional[str] = None
    identifier_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v not in (None, "")}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExtractedFields":
        data = data or {}
        known = {f.name for f in dataclass_fields(cls)}
        values = {k: v for k, v in data.items() if k in known and v not in (None, "")}
        if "amount" in values:
            values["amount"] = float(values["amount"])
        return cls(**values)

    def identifiers(self) -> Dict[str, str]:
        return {key: getattr(self, key) for key in IDENTIFIER_KEYS if getattr(self, key)}

    def has_contact(self) -> bool:
        return bool(self.name or self.phone or self.email or self.government_id)

    def has_financial(self) -> bool:
        return bool(self.amount or self.purpose or self.crm_id or self.opp_id or self.deal_id)

    def has_location(self) -> bool:
        return bool(self.location_area or self.location_city)

    def has_structured(self) -> bool:
        """True when any field other than the urgency flag was extracted."""
        return self.has_contact() or self.has_financial() or self.has_location()


@dataclass(slots=True)
class ClassificationResult:
    is_lead: bool
    confidence: float
    priority: Priority
    fields: ExtractedFields = field(default_factory=ExtractedFields)
    reasoning: str = ""
    is_new_lead: bool = False
    related_to_existing: bool = False
    source: str = "quick"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isLead": self.is_lead,
            "confidence": self.confidence,
            "priority": self.priority.value,
            "fields": self.fields.to_dict(),
            "reasoning": self.reasoning,
            "isNewLead": self.is_new_lead,
            "relatedToExisting": self.related_to_existing,
            "source": self.source,
        }


# --- Persisted lead records ---

@dataclass(slots=True)
class HistoryEntry:
    action: str
    timestamp: str
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "timestamp": self.timestamp, "detail": dict(self.detail)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            action=str(data.get("action", "")),
            timestamp=str(data.get("timestamp", "")),
            detail=dict(data.get("detail") or {}),
        )


@dataclass
class LeadRecord:
    id: str
    conversation_id: str
    source_description: str
    sender_label: str
    raw_message: str
    priority_category: Priority
    status: LeadStatus = LeadStatus.NEW
    identifiers: Dict[str, str] = field(default_factory=dict)
    fields: Dict[str, Any] = field(default_factory=dict)
    is_urgent: bool = False
    assignee: Optional[str] = None
    created_at: str = field(default_factory=iso_now)
    updated_at: str = field(default_factory=iso_now)
    history: List[HistoryEntry] = field(default_factory=list)

    def append_history(self, action: HistoryAction | str, detail: Optional[Dict[str, Any]] = None) -> HistoryEntry:
        stamp = iso_now()
        entry = HistoryEntry(
            action=action.value if isinstance(action, HistoryAction) else str(action),
            timestamp=stamp,
            detail=dict(detail or {}),
        )
        self.history.append(entry)
        self.updated_at = stamp
        return entry

    @property
    def updated_dt(self) -> Optional[datetime]:
        return parse_iso(self.updated_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "sourceDescription": self.source_description,
            "senderLabel": self.sender_label,
            "rawMessage": self.raw_message,
            "priorityCategory": self.priority_category.value,
            "status": self.status.value,
            "identifiers": dict(self.identifiers),
            "fields": dict(self.fields),
            "isUrgent": self.is_urgent,
            "assignee": self.assignee,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "history": [entry.to_dict() for entry in self.history],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeadRecord":
        return cls(
            id=str(data["id"]),
            conversation_id=str(data.get("conversationId", "")),
            source_description=str(data.get("sourceDescription", "")),
            sender_label=str(data.get("senderLabel", "")),
            raw_message=str(data.get("rawMessage", "")),
            priority_category=coerce_priority(data.get("priorityCategory", Priority.LOW.value)),
            status=coerce_status(data.get("status", LeadStatus.NEW.value)),
            identifiers={k: str(v) for k, v in (data.get("identifiers") or {}).items() if v},
            fields=dict(data.get("fields") or {}),
            is_urgent=bool(data.get("isUrgent", False)),
            assignee=data.get("assignee"),
            created_at=str(data.get("createdAt") or iso_now()),
            updated_at=str(data.get("updatedAt") or data.get("createdAt") or iso_now()),
            history=[HistoryEntry.from_dict(h) for h in data.get("history") or []],
        )


# --- Tracker outputs ---

@dataclass(slots=True)
class HandlerClaim:
    handler_conversation_id: str
    claimed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"handlerConversationId": self.handler_conversation_id, "claimedAt": to_iso(self.claimed_at)}


@dataclass(slots=True)
class TrackDecision:
    decision: Decision
    lead: Optional[LeadRecord] = None
    reasoning: str = ""
    ambiguous: bool = False
    similarity: float = 0.0

    @property
    def is_new_lead(self) -> bool:
        return self.decision is Decision.NEW_LEAD

    @property
    def related_to_existing(self) -> bool:
        return self.decision in (Decision.FOLLOW_UP, Decision.RELATED)
