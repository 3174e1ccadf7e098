"""Processed-message markers: Redis SET NX EX when configured, timestamped local map otherwise."""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

import redis

from leadbot.config import settings
from leadbot.runtime import get_logger

logger = get_logger("idempotency")


class IdempotencyStore:
    """Message-id dedup with a 24h window and a local fallback."""

    def __init__(self, *, client: Any = None, ttl: Optional[int] = None, clock: Callable[[], float] = time.time):
        cfg = settings()
        self.ttl = ttl if ttl is not None else cfg.IDEMPOTENCY_TTL_SEC
        self._clock = clock
        self.r = client
        if self.r is None and cfg.REDIS_URL and not cfg.FORCE_IN_MEMORY:
            try:
                self.r = redis.from_url(cfg.REDIS_URL, ssl=cfg.REDIS_TLS, decode_responses=True)
            except (redis.RedisError, ValueError):
                logger.warning("⚠️ Redis unavailable for idempotency; using local map", exc_info=True)
                self.r = None
        self._mem: Dict[str, float] = {}

    @staticmethod
    def _key(msg_id: str) -> str:
        return f"leadbot:inbound:msg:{msg_id}"

    def seen(self, msg_id: Optional[str]) -> bool:
        """True if msg_id was already processed inside the window; marks it otherwise."""
        if not msg_id:
            return False
        key = self._key(msg_id)

        if self.r is not None:
            try:
                ok = self.r.set(key, "1", nx=True, ex=self.ttl)
                return not bool(ok)
            except redis.RedisError:
                logger.warning("⚠️ Redis SET NX failed; falling back to local map", exc_info=True)

        now = self._clock()
        stamp = self._mem.get(key)
        if stamp is not None and now - stamp < self.ttl:
            return True
        self._mem[key] = now
        return False

    def prune(self) -> int:
        """Drop local markers older than the window; returns how many were removed."""
        cutoff = self._clock() - self.ttl
        stale = [key for key, stamp in self._mem.items() if stamp < cutoff]
        for key in stale:
            self._mem.pop(key, None)
        return len(stale)

    def __len__(self) -> int:
        return len(self._mem)


__all__ = ["IdempotencyStore"]
