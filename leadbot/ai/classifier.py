# leadbot/ai/classifier.py
from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, Optional, Tuple

from openai import AsyncOpenAI

from leadbot.config import settings
from leadbot.errors import ClassificationUnavailable
from leadbot.extractor import normalize_identifier
from leadbot.intent import quick_check
from leadbot.models import ClassificationResult, ExtractedFields
from leadbot.runtime import get_logger
from leadbot.schema import IDENTIFIER_KEYS, Priority

logger = get_logger("ai.classifier")


# ───────────────────────────────────────────────────────────
# Prompt
# ───────────────────────────────────────────────────────────
SYSTEM_PROMPT = (
    "You triage messages posted in sales team chat groups of a consumer-finance lender. "
    "Decide whether the message is a genuine customer lead (a customer wanting a loan, EMI "
    "or financed purchase) and extract what you can. Reply with ONE JSON object only, keys: "
    '"isLead" (boolean), "confidence" (number 0..1), "priority" ("High"|"Medium"|"Low"), '
    '"extractedFields" (object with optional name, phone, email, government_id, amount, '
    'purpose, location_area, location_city, urgency, crm_id, opp_id, deal_id), "reasoning" (string).'
)

REQUIRED_KEYS = ("isLead", "confidence", "priority", "extractedFields", "reasoning")


# ───────────────────────────────────────────────────────────
# Helpers
# ───────────────────────────────────────────────────────────
def _cache_key(text: str) -> str:
    return (text or "").strip().lower()


def _parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() in ("true", "yes")


def _coerce_fields(raw: Dict[str, Any], fallback: ExtractedFields) -> ExtractedFields:
    """
    Merge remote fields with locally extracted ones. Identifiers keep the local
    value when there is one; remote identifiers go through the extractor's
    normalizers. Free-text fields from the remote side win.
    """
    local = fallback.to_dict()
    merged = dict(local)
    for key, value in (raw or {}).items():
        if value in (None, "", [], {}) or key == "urgency":
            continue
        if key in IDENTIFIER_KEYS:
            if key in local:
                continue
            value = normalize_identifier(key, value)
            if value is None:
                continue
        merged[key] = value

    if "amount" in merged:
        try:
            merged["amount"] = float(str(merged["amount"]).replace(",", ""))
        except ValueError:
            merged.pop("amount")
    if bool(local.get("urgency")) or _parse_flag((raw or {}).get("urgency")):
        merged["urgency"] = True
    return ExtractedFields.from_dict(merged)


def parse_payload(payload: Any, quick: ClassificationResult) -> ClassificationResult:
    """Validate the remote JSON shape; anything unexpected raises ClassificationUnavailable."""
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ClassificationUnavailable("Remote classifier returned non-JSON content", body=payload) from exc
    if not isinstance(payload, dict):
        raise ClassificationUnavailable("Remote classifier returned a non-object payload", body=payload)

    missing = [key for key in REQUIRED_KEYS if key not in payload]
    if missing:
        raise ClassificationUnavailable(f"Remote payload missing keys: {missing}", body=payload)

    is_lead = payload["isLead"]
    confidence = payload["confidence"]
    fields = payload["extractedFields"]
    if not isinstance(is_lead, bool):
        raise ClassificationUnavailable("isLead must be a boolean", body=payload)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)) or not 0 <= confidence <= 1:
        raise ClassificationUnavailable("confidence must be a number in [0, 1]", body=payload)
    if not isinstance(fields, dict):
        raise ClassificationUnavailable("extractedFields must be an object", body=payload)
    try:
        priority = Priority(str(payload["priority"]))
    except ValueError as exc:
        raise ClassificationUnavailable(f"Unknown priority {payload['priority']!r}", body=payload) from exc

    return ClassificationResult(
        is_lead=is_lead,
        confidence=round(float(confidence), 2),
        priority=priority,
        fields=_coerce_fields(fields, quick.fields),
        reasoning=str(payload.get("reasoning") or ""),
        is_new_lead=is_lead,
        source="remote",
    )


# ───────────────────────────────────────────────────────────
# Client
# ───────────────────────────────────────────────────────────
class RemoteClassifier:
    """OpenAI-backed lead classifier with a short TTL result cache."""

    def __init__(self, client: Optional[Any] = None, *, model: Optional[str] = None,
                 timeout: Optional[float] = None, cache_ttl: Optional[int] = None, clock=time.monotonic):
        cfg = settings()
        self.model = model or cfg.OPENAI_MODEL
        self.timeout = timeout if timeout is not None else cfg.CLASSIFIER_TIMEOUT_SEC
        self.cache_ttl = cache_ttl if cache_ttl is not None else cfg.CLASSIFIER_CACHE_TTL_SEC
        self._clock = clock
        self._cache: Dict[str, Tuple[float, ClassificationResult]] = {}
        if client is None and cfg.OPENAI_API_KEY:
            client = AsyncOpenAI(
                api_key=cfg.OPENAI_API_KEY,
                timeout=cfg.OPENAI_TIMEOUT,
                max_retries=cfg.OPENAI_MAX_RETRIES,
            )
        self.client = client

    @property
    def available(self) -> bool:
        return self.client is not None

    # --- cache ---
    def cached(self, text: str) -> Optional[ClassificationResult]:
        entry = self._cache.get(_cache_key(text))
        if not entry:
            return None
        stored_at, result = entry
        if self._clock() - stored_at > self.cache_ttl:
            self._cache.pop(_cache_key(text), None)
            return None
        return result

    def prune_cache(self) -> int:
        """Drop expired cache entries; returns how many were removed."""
        now = self._clock()
        stale = [key for key, (stored_at, _) in self._cache.items() if now - stored_at > self.cache_ttl]
        for key in stale:
            self._cache.pop(key, None)
        return len(stale)

    # --- call ---
    async def _complete(self, text: str) -> str:
        resp = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": text},
            ],
            response_format={"type": "json_object"},
            temperature=0,
        )
        content = ((resp.choices[0].message.content if resp and resp.choices else None) or "").strip()
        if not content:
            raise ClassificationUnavailable("Empty completion content")
        return content

    async def classify(self, text: str, quick: Optional[ClassificationResult] = None) -> ClassificationResult:
        """Classify remotely. Raises ClassificationUnavailable on any failure or bad shape."""
        hit = self.cached(text)
        if hit is not None:
            return hit
        if not self.available:
            raise ClassificationUnavailable("Remote classifier not configured")

        quick = quick or quick_check(text)
        try:
            content = await asyncio.wait_for(self._complete(text), timeout=self.timeout)
        except ClassificationUnavailable:
            raise
        except asyncio.TimeoutError as exc:
            raise ClassificationUnavailable(f"Remote classifier timed out after {self.timeout}s") from exc
        except Exception as exc:
            raise ClassificationUnavailable(f"Remote classifier call failed: {exc}") from exc

        result = parse_payload(content, quick)
        self._cache[_cache_key(text)] = (self._clock(), result)
        return result


async def classify_with_fallback(text: str, classifier: Optional[RemoteClassifier] = None) -> ClassificationResult:
    """
    Quick check always; remote only when the quick check says lead with confidence < 1.0.
    Never raises: any remote failure returns the quick result.
    """
    quick = quick_check(text)
    if not quick.is_lead or quick.confidence >= 1.0:
        return quick
    if classifier is None or not settings().REMOTE_CLASSIFIER_ENABLED:
        return quick
    try:
        return await classifier.classify(text, quick)
    except ClassificationUnavailable as exc:
        logger.warning("⚠️ Remote classification unavailable, using quick result: %s", exc)
        return quick
    except Exception:
        logger.exception("❌ Unexpected remote classification error, using quick result")
        return quick


__all__ = ["RemoteClassifier", "classify_with_fallback", "parse_payload", "SYSTEM_PROMPT"]
