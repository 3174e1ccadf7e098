# leadbot/tracker.py
"""
Lead Tracker / Dedup Engine
---------------------------
Decides whether a lead-classified message is a new lead, a follow-up on a
tracked lead (shared identifier), or related chatter (near-duplicate text of
something recently seen in the same conversation).

The identifier index is derived state: ``rebuild()`` reconstructs it from the
Lead Records on startup and ``register_lead()`` maintains it on writes. It is
never persisted on its own.
"""

from __future__ import annotations

import re
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from leadbot.config import settings
from leadbot.extractor import extract_identifiers as _extract_identifiers
from leadbot.lead_store import LeadStore
from leadbot.models import ClassificationResult, HandlerClaim, LeadRecord, MessageEvent, TrackDecision
from leadbot.runtime import get_logger, utc_now
from leadbot.schema import Decision, HistoryAction, LeadStatus

logger = get_logger("tracker")

STOPWORDS = {
    "a", "an", "the", "is", "are", "was", "be", "to", "of", "in", "on", "for", "and", "or", "with",
    "at", "by", "this", "that", "it", "as", "from", "pls", "please", "sir", "madam", "team", "hi",
    "hello", "ok", "okay", "plz", "kindly", "me", "my", "we", "our", "you", "your",
}
_TOKEN_RE = re.compile(r"[a-z0-9@.]+")


def tokens(text: str) -> Set[str]:
    words = (tok.strip(".") for tok in _TOKEN_RE.findall((text or "").lower()))
    return {w for w in words if w and w not in STOPWORDS}


def jaccard(a: str, b: str) -> float:
    left, right = tokens(a), tokens(b)
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def follow_up_status(text: str) -> LeadStatus:
    low = (text or "").lower()
    if re.search(r"\bapproved\b", low):
        return LeadStatus.CLOSED
    if re.search(r"\brejected\b", low):
        return LeadStatus.LOST
    return LeadStatus.IN_PROGRESS


@dataclass
class _Match:
    record: LeadRecord
    key: str


class LeadTracker:
    def __init__(
        self,
        store: LeadStore,
        *,
        context_size: Optional[int] = None,
        window: Optional[int] = None,
        threshold: Optional[float] = None,
        claim_ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        cfg = settings()
        self.store = store
        self.context_size = context_size or cfg.CONTEXT_SIZE
        self.window = window or cfg.SIMILARITY_WINDOW
        self.threshold = threshold if threshold is not None else cfg.SIMILARITY_THRESHOLD
        self.claim_ttl = claim_ttl or timedelta(minutes=cfg.CLAIM_TTL_MINUTES)
        self._clock = clock

        self.index: Dict[str, str] = {}
        self.active: Dict[str, Set[str]] = defaultdict(set)
        self.context: Dict[str, Deque[str]] = {}
        self.claims: Dict[str, HandlerClaim] = {}
        self.rebuild(store.all())

    # -----------------------------
    # Identifier index
    # -----------------------------
    @staticmethod
    def index_key(kind: str, value: str) -> str:
        return f"{kind}:{str(value).strip().lower()}"

    def extract_identifiers(self, text: str) -> Dict[str, str]:
        return _extract_identifiers(text)

    def rebuild(self, records: Iterable[LeadRecord]) -> None:
        """Reconstruct the identifier index and active sets from Lead Records."""
        self.index.clear()
        self.active.clear()
        count = 0
        for record in sorted(records, key=lambda r: r.updated_at):
            self.index_record(record)
            count += 1
        logger.info("🧭 Tracker rebuilt: %s leads, %s identifiers", count, len(self.index))

    def index_record(self, record: LeadRecord) -> None:
        for kind, value in (record.identifiers or {}).items():
            if value:
                self.index[self.index_key(kind, value)] = record.id
        if record.status not in (LeadStatus.CLOSED, LeadStatus.LOST):
            self.active[record.conversation_id].add(record.id)
        else:
            self.active[record.conversation_id].discard(record.id)

    def find_by_identifier(self, identifiers: Dict[str, str]) -> Tuple[Optional[LeadRecord], bool]:
        """
        Return (lead, ambiguous). With several distinct leads matching, the
        most recently updated one wins and ambiguous is True.
        """
        matches: Dict[str, _Match] = {}
        for kind, value in (identifiers or {}).items():
            if not value:
                continue
            key = self.index_key(kind, value)
            lead_id = self.index.get(key)
            if not lead_id or lead_id in matches:
                continue
            record = self.store.get(lead_id)
            if record is None:
                logger.warning("⚠️ Index entry %s points at missing lead %s", key, lead_id)
                continue
            matches[lead_id] = _Match(record, key)
        if not matches:
            return None, False
        if len(matches) == 1:
            return next(iter(matches.values())).record, False
        best = max(matches.values(), key=lambda m: m.record.updated_at)
        return best.record, True

    # -----------------------------
    # Conversation context
    # -----------------------------
    def remember(self, conversation_id: str, text: str) -> None:
        if not text:
            return
        ctx = self.context.get(conversation_id)
        if ctx is None:
            ctx = self.context[conversation_id] = deque(maxlen=self.context_size)
        ctx.append(text)

    def recent(self, conversation_id: str) -> List[str]:
        ctx = self.context.get(conversation_id) or ()
        return list(ctx)[-self.window:]

    def most_similar(self, conversation_id: str, text: str) -> float:
        return max((jaccard(text, prior) for prior in self.recent(conversation_id)), default=0.0)

    # -----------------------------
    # Handler claims
    # -----------------------------
    def claim(self, lead_id: str, conversation_id: str) -> HandlerClaim:
        claim = HandlerClaim(handler_conversation_id=conversation_id, claimed_at=self._clock())
        self.claims[lead_id] = claim
        return claim

    def is_claimed(self, lead_id: str) -> bool:
        claim = self.claims.get(lead_id)
        if claim is None:
            return False
        if self._clock() - claim.claimed_at > self.claim_ttl:
            self.claims.pop(lead_id, None)
            return False
        return True

    def conversation_claimed(self, conversation_id: str) -> bool:
        """True when a handler holds a live claim from this conversation or on one of its open leads."""
        for lead_id in list(self.claims):
            if not self.is_claimed(lead_id):
                continue
            if self.claims[lead_id].handler_conversation_id == conversation_id:
                return True
            if lead_id in self.active.get(conversation_id, ()):
                return True
        return False

    def release(self, lead_id: str) -> None:
        self.claims.pop(lead_id, None)

    def expire_claims(self) -> int:
        now = self._clock()
        stale = [lead_id for lead_id, c in self.claims.items() if now - c.claimed_at > self.claim_ttl]
        for lead_id in stale:
            self.claims.pop(lead_id, None)
        return len(stale)

    # -----------------------------
    # Decisions
    # -----------------------------
    def register_lead(self, record: LeadRecord, text: str) -> None:
        self.index_record(record)
        self.remember(record.conversation_id, text)

    def evaluate(self, event: MessageEvent, classification: ClassificationResult) -> TrackDecision:
        """Identifier match → follow-up; else similarity → related; else new lead."""
        if not classification.is_lead:
            return TrackDecision(Decision.NOT_LEAD, reasoning="not classified as lead")

        identifiers = classification.fields.identifiers() or {}
        try:
            if not identifiers:
                identifiers = self.extract_identifiers(event.text)
            lead, ambiguous = self.find_by_identifier(identifiers)
        except Exception:
            logger.exception("❌ Identifier lookup failed; treating as no match")
            lead, ambiguous = None, False

        if lead is not None:
            return self._follow_up(event, lead, ambiguous)

        try:
            similarity = self.most_similar(event.conversation_id, event.text)
        except Exception:
            logger.exception("❌ Similarity check failed; treating as no match")
            similarity = 0.0

        if similarity > self.threshold:
            self.remember(event.conversation_id, event.text)
            return TrackDecision(
                Decision.RELATED,
                reasoning=f"similar to recent context message (jaccard={similarity:.2f})",
                similarity=similarity,
            )

        return TrackDecision(Decision.NEW_LEAD, reasoning="no identifier or context match", similarity=similarity)

    def _follow_up(self, event: MessageEvent, lead: LeadRecord, ambiguous: bool) -> TrackDecision:
        status = follow_up_status(event.text)
        reasoning = f"identifier match on lead {lead.id}"
        if ambiguous:
            reasoning += " (ambiguous: several leads matched, most recently updated chosen)"
        updated = self.store.update(
            lead.id,
            {"status": status.value, "lastMessage": event.text, "handler": event.conversation_id},
            action=HistoryAction.FOLLOW_UP,
        )
        self.index_record(updated)
        self.claim(lead.id, event.conversation_id)
        self.remember(event.conversation_id, event.text)
        return TrackDecision(Decision.FOLLOW_UP, lead=updated, reasoning=reasoning, ambiguous=ambiguous)


__all__ = ["LeadTracker", "jaccard", "tokens", "follow_up_status", "STOPWORDS"]
