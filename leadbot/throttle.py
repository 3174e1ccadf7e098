"""Outbound throttle: acknowledgement cooldown, greeting gap and daily greeting cap per conversation."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from leadbot.config import LAST_GREETING_KEY, LAST_RESPONSE_KEY, MESSAGES_PER_DAY_KEY, local_tz, settings
from leadbot.datastore import KeyValueStore, get_store
from leadbot.errors import PersistenceFailure
from leadbot.runtime import get_logger, parse_iso, to_iso, utc_now
from leadbot.schema import ResponseKind

logger = get_logger("throttle")


class OutboundThrottle:
    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        *,
        ack_cooldown: Optional[timedelta] = None,
        greeting_gap: Optional[timedelta] = None,
        max_greetings_per_day: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        cfg = settings()
        self.store = store or get_store()
        self.ack_cooldown = ack_cooldown or timedelta(minutes=cfg.ACK_COOLDOWN_MINUTES)
        self.greeting_gap = greeting_gap if greeting_gap is not None else timedelta(minutes=cfg.GREETING_MIN_GAP_MINUTES)
        self.max_greetings = max_greetings_per_day if max_greetings_per_day is not None else cfg.MAX_GREETINGS_PER_DAY
        self._clock = clock
        self.last_response: Dict[str, str] = self._load(LAST_RESPONSE_KEY)
        self.last_greeting: Dict[str, str] = self._load(LAST_GREETING_KEY)
        self.messages_per_day: Dict[str, Dict[str, Any]] = self._load(MESSAGES_PER_DAY_KEY)

    # --- persistence ---
    def _load(self, key: str) -> Dict[str, Any]:
        try:
            value = self.store.load(key, {}) or {}
        except PersistenceFailure as exc:
            logger.error("❌ Failed to load throttle state %s: %s", key, exc)
            return {}
        return dict(value) if isinstance(value, dict) else {}

    def _save(self, key: str, value: Dict[str, Any]) -> None:
        try:
            self.store.save(key, value)
        except PersistenceFailure as exc:
            logger.error("❌ Failed to persist throttle state %s: %s", key, exc)

    # --- helpers ---
    def _today(self) -> str:
        return self._clock().astimezone(local_tz()).date().isoformat()

    def _minutes_since(self, stamps: Dict[str, str], conversation_id: str) -> Optional[float]:
        last = parse_iso(stamps.get(conversation_id))
        if last is None:
            return None
        return (self._clock() - last).total_seconds() / 60

    def greetings_today(self, conversation_id: str) -> int:
        entry = self.messages_per_day.get(conversation_id) or {}
        if entry.get("date") != self._today():
            return 0
        return int(entry.get("count", 0))

    def minutes_since_ack(self, conversation_id: str) -> Optional[float]:
        return self._minutes_since(self.last_response, conversation_id)

    def minutes_since_greeting(self, conversation_id: str) -> Optional[float]:
        return self._minutes_since(self.last_greeting, conversation_id)

    # --- public API ---
    def may_respond(self, conversation_id: str, kind: ResponseKind) -> bool:
        kind = ResponseKind(kind)
        if kind is ResponseKind.ACKNOWLEDGEMENT:
            elapsed = self.minutes_since_ack(conversation_id)
            if elapsed is None:
                return True
            allowed = elapsed >= self.ack_cooldown.total_seconds() / 60
            if not allowed:
                logger.info("⏱️ Skipping acknowledgement for %s: last one %.1f minutes ago", conversation_id, elapsed)
            return allowed

        elapsed = self.minutes_since_greeting(conversation_id)
        if elapsed is not None and elapsed < self.greeting_gap.total_seconds() / 60:
            logger.info("⏱️ Skipping greeting for %s: last one %.1f minutes ago", conversation_id, elapsed)
            return False
        count = self.greetings_today(conversation_id)
        if count >= self.max_greetings:
            logger.info("⚠️ Daily greeting limit (%s) reached for %s", self.max_greetings, conversation_id)
            return False
        return True

    def record_response(self, conversation_id: str, kind: ResponseKind) -> None:
        kind = ResponseKind(kind)
        stamp = to_iso(self._clock())
        if kind is ResponseKind.ACKNOWLEDGEMENT:
            self.last_response[conversation_id] = stamp
            self._save(LAST_RESPONSE_KEY, self.last_response)
            return

        count = self.greetings_today(conversation_id) + 1
        self.messages_per_day[conversation_id] = {"date": self._today(), "count": count}
        self.last_greeting[conversation_id] = stamp
        self._save(MESSAGES_PER_DAY_KEY, self.messages_per_day)
        self._save(LAST_GREETING_KEY, self.last_greeting)
        logger.info("📊 Greeting count for today in %s: %s/%s", conversation_id, count, self.max_greetings)


__all__ = ["OutboundThrottle"]
