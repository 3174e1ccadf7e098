# leadbot/schema.py
"""Enumerations shared by the tracker, store, throttle and HTTP surface."""

from __future__ import annotations

from enum import Enum


class LeadStatus(str, Enum):
    NEW = "New"
    IN_PROGRESS = "InProgress"
    CLOSED = "Closed"
    LOST = "Lost"


class Priority(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class ResponseKind(str, Enum):
    ACKNOWLEDGEMENT = "acknowledgement"
    GREETING = "greeting"


class HistoryAction(str, Enum):
    CREATED = "Created"
    UPDATED = "Updated"
    FOLLOW_UP = "FollowUp"


class Decision(str, Enum):
    NEW_LEAD = "new_lead"
    FOLLOW_UP = "follow_up"
    RELATED = "related"
    NOT_LEAD = "not_lead"


class GreetingSlot(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    WEEKEND = "weekend"
    MONTH_END = "monthEnd"


IDENTIFIER_KEYS = ("phone", "email", "government_id", "crm_id", "opp_id", "deal_id")


def coerce_status(value: str) -> LeadStatus:
    """Accept enum values or loose spellings ("in progress", "closed")."""
    if isinstance(value, LeadStatus):
        return value
    norm = "".join(ch for ch in str(value).lower() if ch.isalnum())
    for status in LeadStatus:
        if status.value.lower() == norm or status.name.replace("_", "").lower() == norm:
            return status
    raise ValueError(f"Unknown lead status '{value}'. Allowed: {[s.value for s in LeadStatus]}")


def coerce_priority(value: str) -> Priority:
    if isinstance(value, Priority):
        return value
    for priority in Priority:
        if priority.value.lower() == str(value).strip().lower():
            return priority
    raise ValueError(f"Unknown priority '{value}'. Allowed: {[p.value for p in Priority]}")
