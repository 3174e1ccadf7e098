# leadbot/sender.py
"""
📡 Gateway Sender
- POSTs outbound chat text to the chat gateway (JSON, bearer token)
- Bounded retry with fixed backoff; exhausted sends are dropped and logged
- Dry-run mode when no gateway URL is configured
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import httpx

from leadbot.config import settings
from leadbot.errors import SendFailure, SessionInvalidated
from leadbot.runtime import get_logger, retry_async

logger = get_logger("sender")

MAX_TEXT_LEN = 4096
SESSION_LOST_STATUS = (401, 410)


# =========================
# Small helpers
# =========================
def _extract_error_body(resp: httpx.Response) -> Any:
    """Parse JSON body if available; fallback to plain text."""
    try:
        return resp.json()
    except (json.JSONDecodeError, ValueError):
        return (resp.text or "").strip() or None


def _summarize_error_body(body: Any) -> str:
    if body is None:
        return ""
    if isinstance(body, dict):
        for key in ("message", "error", "detail", "errors"):
            value = body.get(key)
            if value not in (None, ""):
                return str(value)
    return str(body)


# =========================
# Core Sender
# =========================
class GatewaySender:
    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> None:
        cfg = settings()
        self.base_url = (base_url if base_url is not None else cfg.GATEWAY_URL or "").rstrip("/")
        self.token = token if token is not None else cfg.GATEWAY_TOKEN
        self.retries = retries if retries is not None else cfg.SEND_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else cfg.SEND_RETRY_DELAY_SEC
        self.timeout = cfg.GATEWAY_TIMEOUT_SEC
        self._client = client
        self.sent: list[Dict[str, str]] = []

    @property
    def dry_run(self) -> bool:
        return not self.base_url and self._client is None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _post_once(self, conversation_id: str, text: str) -> Dict[str, Any]:
        payload = {"conversationId": conversation_id, "text": text}
        url = f"{self.base_url}/send"
        try:
            if self._client is not None:
                resp = await self._client.post(url, json=payload, headers=self._headers())
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(url, json=payload, headers=self._headers())
        except httpx.HTTPError as exc:
            raise SendFailure(f"Gateway transport error: {exc}", conversation_id=conversation_id) from exc

        if resp.status_code in SESSION_LOST_STATUS:
            raise SessionInvalidated(f"Gateway session invalidated (HTTP {resp.status_code})")
        if resp.is_error:
            body = _extract_error_body(resp)
            summary = _summarize_error_body(body)
            message = f"Gateway HTTP {resp.status_code}"
            if summary:
                message = f"{message}: {summary}"
            raise SendFailure(message, conversation_id=conversation_id, status_code=resp.status_code, body=body)
        try:
            return resp.json()
        except (json.JSONDecodeError, ValueError):
            return {"raw": resp.text}

    async def send_text(self, conversation_id: str, text: str) -> Dict[str, Any]:
        """
        Send one text. Returns {"ok": True, ...} on delivery or dry run.
        Raises SendFailure once retries are exhausted, SessionInvalidated immediately.
        """
        body = (text or "").strip()
        if not conversation_id or not body:
            raise SendFailure("missing conversation id or text", conversation_id=conversation_id)
        body = body[:MAX_TEXT_LEN]

        if self.dry_run:
            logger.info("[DRY RUN] → %s: %s", conversation_id, body[:80])
            self.sent.append({"conversationId": conversation_id, "text": body})
            return {"ok": True, "dry_run": True}

        logger.info("📤 Sending → %s: %s", conversation_id, body[:60])
        raw = await retry_async(
            lambda: self._post_once(conversation_id, body),
            retries=self.retries,
            base_delay=self.retry_delay,
            backoff=1.0,
            exceptions=(SendFailure,),
            logger=logger,
        )
        self.sent.append({"conversationId": conversation_id, "text": body})
        return {"ok": True, "raw": raw}

    async def deliver(self, conversation_id: str, text: str) -> bool:
        """send_text that logs and drops on SendFailure. SessionInvalidated propagates."""
        try:
            await self.send_text(conversation_id, text)
            return True
        except SendFailure as exc:
            logger.error("❌ Dropping message to %s after retries: %s", conversation_id, exc)
            return False


__all__ = ["GatewaySender"]
