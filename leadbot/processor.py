# leadbot/processor.py
"""
Lead Engine Dispatcher
----------------------
Batch entry point for inbound chat events. One batch at a time: a batch
arriving while another is in flight is dropped and logged, never queued.

Per message: skip self/empty/duplicate/unmonitored → classify (quick, then
remote with fallback) → tracker decision → on a new lead create the record,
register identifiers, acknowledge/greet through the throttle, alert and notify.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from leadbot.ai.classifier import RemoteClassifier, classify_with_fallback
from leadbot.config import settings
from leadbot.errors import SessionInvalidated
from leadbot.idempotency import IdempotencyStore
from leadbot.lead_store import LeadStore
from leadbot.models import LeadRecord, MessageEvent
from leadbot.notifier import notify_new_lead
from leadbot.runtime import PerfTimer, get_logger
from leadbot.schema import Decision, GreetingSlot, ResponseKind
from leadbot.sender import GatewaySender
from leadbot.templates import ack_text, format_alert, get_greeting
from leadbot.throttle import OutboundThrottle
from leadbot.tracker import LeadTracker

logger = get_logger("processor")


# ---------------------------------------------------------------------------
@dataclass
class MonitorPolicy:
    groups: Tuple[str, ...]
    direct_messages: bool
    greetings_enabled: bool
    lead_alerts: bool
    admin_conversation_id: Optional[str]

    @classmethod
    def load_from_settings(cls):
        cfg = settings()
        return cls(
            groups=cfg.MONITORED_GROUPS,
            direct_messages=cfg.MONITOR_DIRECT_MESSAGES,
            greetings_enabled=cfg.GREETINGS_ENABLED,
            lead_alerts=cfg.LEAD_ALERTS_ENABLED,
            admin_conversation_id=cfg.ADMIN_CONVERSATION_ID,
        )

    def is_monitored(self, event: MessageEvent) -> bool:
        """Groups: empty allow-list means all; else exact name or substring match."""
        if not event.is_group:
            return self.direct_messages
        if not self.groups:
            return True
        name = event.group_name or event.conversation_id
        return any(name == group or group in name for group in self.groups)


# ---------------------------------------------------------------------------
class Dispatcher:
    def __init__(
        self,
        *,
        lead_store: Optional[LeadStore] = None,
        tracker: Optional[LeadTracker] = None,
        throttle: Optional[OutboundThrottle] = None,
        classifier: Optional[RemoteClassifier] = None,
        sender: Optional[GatewaySender] = None,
        idempotency: Optional[IdempotencyStore] = None,
        policy: Optional[MonitorPolicy] = None,
        notify: Optional[Callable[[LeadRecord, str], None]] = notify_new_lead,
    ) -> None:
        self.lead_store = lead_store or LeadStore()
        self.tracker = tracker or LeadTracker(self.lead_store)
        self.throttle = throttle or OutboundThrottle(self.lead_store.store)
        self.classifier = classifier
        self.sender = sender or GatewaySender()
        self.idempotency = idempotency or IdempotencyStore()
        self.policy = policy or MonitorPolicy.load_from_settings()
        self.notify = notify
        self.monitoring = True
        self.session_lost = False
        self._lock = asyncio.Lock()

    # -----------------------------------------------------------------
    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def toggle_monitoring(self, enabled: Optional[bool] = None) -> bool:
        self.monitoring = (not self.monitoring) if enabled is None else bool(enabled)
        logger.info("%s Lead monitoring %s", "▶️" if self.monitoring else "⏸️", "resumed" if self.monitoring else "paused")
        return self.monitoring

    async def handle_batch(self, events: Iterable[MessageEvent]) -> Dict[str, Any]:
        events = list(events)
        if self._lock.locked():
            logger.warning("⏳ Batch of %s dropped: another batch is in flight", len(events))
            return {"ok": False, "status": "busy", "dropped": len(events)}

        async with self._lock:
            results: List[Dict[str, Any]] = []
            with PerfTimer(f"batch[{len(events)}]"):
                for event in events:
                    try:
                        results.append(await self.process_event(event))
                    except SessionInvalidated:
                        self.monitoring = False
                        self.session_lost = True
                        raise
                    except Exception as exc:
                        logger.exception("❌ Failed processing message %s", getattr(event, "id", "?"))
                        results.append({"id": getattr(event, "id", None), "status": "error", "error": str(exc)})
        return {"ok": True, "status": "processed", "count": len(results), "results": results}

    # -----------------------------------------------------------------
    async def process_event(self, event: MessageEvent) -> Dict[str, Any]:
        base = {"id": event.id, "conversationId": event.conversation_id}
        if event.from_me:
            return {**base, "status": "skipped", "reason": "from_me"}
        if not (event.text or "").strip():
            return {**base, "status": "skipped", "reason": "empty"}
        if self.idempotency.seen(event.id):
            return {**base, "status": "duplicate"}
        if not self.monitoring:
            return {**base, "status": "skipped", "reason": "paused"}
        if not self.policy.is_monitored(event):
            return {**base, "status": "skipped", "reason": "not_monitored"}

        logger.info("📩 %s | %s: %s", event.source_description, event.sender_label, event.text[:80])
        classification = await classify_with_fallback(event.text, self.classifier)
        decision = self.tracker.evaluate(event, classification)
        classification = replace(
            classification,
            is_new_lead=decision.is_new_lead,
            related_to_existing=decision.related_to_existing,
        )
        base["classification"] = classification.to_dict()

        if decision.decision is Decision.NOT_LEAD:
            logger.info("❌ No lead signals (%s)", classification.reasoning)
            return {**base, "status": "not_lead"}

        if decision.decision is Decision.FOLLOW_UP:
            logger.info("🔁 Follow-up on %s → %s", decision.lead.id, decision.lead.status.value)
            return {**base, "status": "follow_up", "leadId": decision.lead.id, "reasoning": decision.reasoning}

        if decision.decision is Decision.RELATED:
            logger.info("🔗 Related to recent context, no new lead (%s)", decision.reasoning)
            return {**base, "status": "related", "reasoning": decision.reasoning}

        record = self.lead_store.create(
            classification.fields,
            conversation_id=event.conversation_id,
            source_description=event.source_description,
            sender_label=event.sender_label,
            raw_message=event.text,
        )
        self.tracker.register_lead(record, event.text)
        responses = await self._respond(event, record)
        return {**base, "status": "new_lead", "leadId": record.id, "priority": record.priority_category.value, "responses": responses}

    async def _respond(self, event: MessageEvent, record: LeadRecord) -> Dict[str, bool]:
        sent = {"acknowledgement": False, "greeting": False, "alert": False}
        conv = event.conversation_id

        if not self.tracker.conversation_claimed(conv) and self.throttle.may_respond(conv, ResponseKind.ACKNOWLEDGEMENT):
            if await self.sender.deliver(conv, ack_text()):
                self.throttle.record_response(conv, ResponseKind.ACKNOWLEDGEMENT)
                sent["acknowledgement"] = True

        if self.policy.greetings_enabled and self.throttle.may_respond(conv, ResponseKind.GREETING):
            if await self.sender.deliver(conv, get_greeting()):
                self.throttle.record_response(conv, ResponseKind.GREETING)
                sent["greeting"] = True

        alert = format_alert(record)
        if self.policy.lead_alerts and self.policy.admin_conversation_id:
            sent["alert"] = await self.sender.deliver(self.policy.admin_conversation_id, alert)

        if self.notify is not None:
            try:
                await asyncio.to_thread(self.notify, record, alert)
            except Exception:
                logger.exception("⚠️ Lead notification failed for %s", record.id)
        return sent

    # -----------------------------------------------------------------
    async def send_greeting(self, conversation_id: str, slot: Optional[GreetingSlot | str] = None, *, force: bool = False) -> bool:
        """Manual greeting (CLI). Respects the daily cap unless forced."""
        if not force and not self.throttle.may_respond(conversation_id, ResponseKind.GREETING):
            return False
        if not await self.sender.deliver(conversation_id, get_greeting(slot=slot)):
            return False
        self.throttle.record_response(conversation_id, ResponseKind.GREETING)
        return True

    def get_lead_stats(self) -> Dict[str, Any]:
        return self.lead_store.stats()

    def list_leads(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        filters = {k: v for k, v in (filters or {}).items() if v not in (None, "")}
        return [record.to_dict() for record in self.lead_store.list(**filters)]

    async def update_lead(self, lead_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a manual patch once any in-flight batch has finished."""
        async with self._lock:
            record = self.lead_store.update(lead_id, patch)
            self.tracker.index_record(record)
        return record.to_dict()


def build_dispatcher() -> Dispatcher:
    """Wire a Dispatcher from settings (remote classifier only when an API key is set)."""
    cfg = settings()
    classifier = RemoteClassifier() if (cfg.OPENAI_API_KEY and cfg.REMOTE_CLASSIFIER_ENABLED) else None
    dispatcher = Dispatcher(classifier=classifier)
    logger.info(
        "🚀 Dispatcher ready | leads=%s | remote=%s | groups=%s",
        len(dispatcher.lead_store),
        bool(classifier),
        len(dispatcher.policy.groups) or "all",
    )
    return dispatcher


__all__ = ["Dispatcher", "MonitorPolicy", "build_dispatcher"]
