# leadbot/extractor.py
"""
Field Extractor
---------------
Rule-based parser turning free chat text into a structured partial lead
record (name, phone, email, government id, amount, purpose, location,
urgency, CRM/OPP/DEAL identifiers).

Every field is described by a FieldRule in RULES. Labeled patterns
("phone: 98...") are tried before bare heuristics (a lone 10 digit number).
Matched spans are blanked out before later rules run, so a phone number
is never re-read as an amount and a government id never as a phone.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Pattern, Tuple

from leadbot.models import ExtractedFields
from leadbot.runtime import get_logger, only_digits

logger = get_logger("extractor")

I = re.IGNORECASE

# -----------------------------
# Lexicons
# -----------------------------
URGENT_RE = re.compile(r"\b(?:asap|urgent(?:ly)?|immediate(?:ly)?|emergency|today|right\s+(?:now|away))\b", I)

PURPOSE_KEYWORDS = (
    "home loan", "personal loan", "business loan", "gold loan", "car loan", "education loan",
    "two wheeler loan", "consumer durable", "consumer loan", "emi card", "insta emi", "health emi",
    "medical loan", "treatment", "hearing aid", "dental", "rehab", "physiotherapy", "eye surgery",
    "lasik", "hair transplant", "cosmetic", "insurance",
)

KNOWN_CITIES = (
    "bangalore", "bengaluru", "mysore", "mysuru", "mumbai", "delhi", "new delhi", "chennai",
    "hyderabad", "pune", "kolkata", "ahmedabad", "jaipur", "lucknow", "kochi", "coimbatore",
    "mangalore", "hubli", "noida", "gurgaon", "gurugram",
)

# words that start another labeled field; free-text captures are cut here
_LABEL_CUT = re.compile(
    r"\b(?:name|ph|phone|mob|mobile|contact|number|email|e-mail|mail|loan|amount|amt|rs|branch|city|"
    r"location|area|address|pan|aadhaa?r|purpose|urgent|asap|crm|opp|deal)\b",
    I,
)


# -----------------------------
# Normalizers
# -----------------------------
def _clean_text(value: str) -> Optional[str]:
    cut = _LABEL_CUT.search(value)
    if cut and cut.start() > 0:
        value = value[: cut.start()]
    value = re.sub(r"\s+", " ", value).strip(" \t:-=.,;|")
    return value or None


def _clean_name(value: str) -> Optional[str]:
    value = re.sub(r"^(?:is|mr\.?|mrs\.?|ms\.?|dr\.?)\s+", "", value.strip(), flags=I)
    cleaned = _clean_text(value)
    if not cleaned or len(cleaned) > 60:
        return None
    return cleaned.title() if cleaned.islower() else cleaned


def _phone_used_length(value: str) -> int:
    """Chars of value up to the digit group that completes 10 digits ("98765 43210 50" → 11)."""
    count = 0
    for group in re.finditer(r"\d+", value):
        count += len(group.group())
        if count >= 10:
            return group.end()
    return len(value)


def _normalize_phone(value: str) -> Optional[str]:
    # stop at the first run of groups reaching 10 digits ("98765 43210 50000" → 9876543210)
    digits = only_digits(value[: _phone_used_length(value)])
    return digits[-10:] if len(digits) >= 10 else None


def _normalize_email(value: str) -> Optional[str]:
    value = value.strip().strip(".,;").lower()
    return value if "@" in value else None


def _normalize_gov_id(value: str) -> Optional[str]:
    compact = re.sub(r"[\s\-]", "", value).upper()
    return compact if len(compact) >= 6 else None


_MULTIPLIERS = {"k": 1_000, "lakh": 100_000, "lac": 100_000, "cr": 10_000_000, "crore": 10_000_000}


def _parse_amount(number: str, suffix: Optional[str]) -> Optional[float]:
    try:
        value = float(number.replace(",", ""))
    except ValueError:
        return None
    if suffix:
        unit = suffix.lower().rstrip("s")
        value *= _MULTIPLIERS.get(unit, 1)
    if value < 100:
        return None
    return int(value) if float(value).is_integer() else value


def _normalize_purpose(value: str) -> Optional[str]:
    cleaned = re.sub(r"\s+", " ", value).strip(" \t:-=.,;|").lower()
    return cleaned or None


def _normalize_city(value: str) -> Optional[str]:
    cleaned = _clean_text(value)
    return cleaned.title() if cleaned and cleaned.islower() else cleaned


# -----------------------------
# Rule table
# -----------------------------
@dataclass(frozen=True)
class FieldRule:
    field: str
    labeled: Tuple[Pattern[str], ...]
    heuristic: Tuple[Pattern[str], ...] = ()
    normalize: Callable[[str], Optional[Any]] = _clean_text
    # how much of the captured group the value came from; None = all of it
    used_length: Optional[Callable[[str], int]] = None


_AMOUNT_SUFFIX = r"(k|lakhs?|lacs?|crores?|cr)?"

RULES: Tuple[FieldRule, ...] = (
    FieldRule(
        "government_id",
        labeled=(
            re.compile(
                r"\b(?:pan(?:\s*card)?|aadhaa?r(?:\s*card)?|gov(?:ernment|t)?\.?\s*id|id\s*proof)\b"
                r"\s*(?:no\b\.?|number\b|#)?\s*[:\-=]?\s*"
                r"([A-Z]{5}\d{4}[A-Z]|\d{4}\s?\d{4}\s?\d{4}|(?=[A-Z0-9]*\d)[A-Z0-9]{6,20})\b",
                I,
            ),
        ),
        heuristic=(
            re.compile(r"\b([A-Z]{5}\d{4}[A-Z])\b", I),
            re.compile(r"\b(\d{4}\s\d{4}\s\d{4})\b"),
        ),
        normalize=_normalize_gov_id,
    ),
    FieldRule(
        "email",
        labeled=(re.compile(r"\b(?:e-?mail|gmail|mail)\b\s*(?:id\b)?\s*[:\-=]?\s*([^\s@,;]+@[^\s@,;]+\.[A-Za-z]{2,})", I),),
        heuristic=(re.compile(r"\b([\w.+-]+@[\w-]+(?:\.[\w-]+)*\.[A-Za-z]{2,})\b"),),
        normalize=_normalize_email,
    ),
    FieldRule(
        "phone",
        labeled=(
            re.compile(
                r"\b(?:ph(?:one)?|mob(?:ile)?|cell|contact|whats\s*app|number)\b\.?\s*"
                r"(?:no\b\.?|number\b|num\b)?\s*[:\-=]?\s*(\+?\d[\d\s\-()]{8,18}\d)",
                I,
            ),
        ),
        heuristic=(re.compile(r"(?<![\w+])(?:\+?91[\s\-]?|0)?(\d{5}[\s\-]?\d{5})(?![\w])"),),
        normalize=_normalize_phone,
        used_length=_phone_used_length,
    ),
    FieldRule(
        "name",
        labeled=(
            re.compile(
                r"\b(?:customer\s+name|cust\.?\s+name|client\s+name|pt\.?\s+name|patient\s+name|name)\b"
                r"\s*[:\-=]?\s*([A-Za-z][A-Za-z .']{0,60})",
                I,
            ),
        ),
        normalize=_clean_name,
    ),
    FieldRule(
        "purpose",
        labeled=(re.compile(r"\b(?:purpose|loan\s*type|product|treatment|requirement)\b\s*[:\-=]\s*([^,\n;|]+)", I),),
        heuristic=(re.compile(r"\b(" + "|".join(re.escape(k) for k in PURPOSE_KEYWORDS) + r")\b", I),),
        normalize=_normalize_purpose,
    ),
    FieldRule(
        "location_area",
        labeled=(re.compile(r"\b(?:branch|location|area|locality|address|loc)\b\s*[:\-=]?\s*([^,\n;|\d]+)", I),),
    ),
    FieldRule(
        "location_city",
        labeled=(re.compile(r"\b(?:city|town)\b\s*[:\-=]?\s*([^,\n;|\d]+)", I),),
        heuristic=(re.compile(r"\b(" + "|".join(re.escape(c) for c in KNOWN_CITIES) + r")\b", I),),
        normalize=_normalize_city,
    ),
)

AMOUNT_LABELED = re.compile(
    r"(?:\b(?:loan\s*amount|loan|amount|amt|total|budget|ticket\s*size)\b|\brs\b\.?|\binr\b|₹)"
    r"[\s:=\-]*(?:(?:of|is|for|required|needed|approx\.?|around|about)\s*)?[\s:=\-]*"
    r"(?:(?:rs\b\.?|inr\b|₹)\s*)?"
    r"(\d+(?:,\d+)*(?:\.\d+)?)\s*" + _AMOUNT_SUFFIX + r"(?![\w])",
    I,
)
AMOUNT_HEURISTIC = re.compile(r"(?<![\w.])(\d+(?:,\d+)*(?:\.\d+)?)\s*" + r"(k|lakhs?|lacs?|crores?|cr)" + r"\b", I)

IDENTIFIER_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(
        r"\b(crm|opp|opportunity|deal)\b\s*(?:id\b|no\b\.?|number\b|code\b)?\s*[:\-#=]?\s*"
        r"(?=[A-Za-z0-9\-]{4,})([A-Za-z0-9][A-Za-z0-9\-]*\d[A-Za-z0-9\-]*)",
        I,
    ),
    re.compile(r"\b(crm|opp|deal)[\-_]?(\d[A-Za-z0-9]{3,})\b", I),
)
_IDENTIFIER_FIELD = {"crm": "crm_id", "opp": "opp_id", "opportunity": "opp_id", "deal": "deal_id"}


# -----------------------------
# Utils
# -----------------------------
def _mask(text: str, span: Tuple[int, int]) -> str:
    start, end = span
    return text[:start] + " " * (end - start) + text[end:]


def _apply_rule(rule: FieldRule, text: str) -> Tuple[Optional[Any], str]:
    for pattern in rule.labeled + rule.heuristic:
        for match in pattern.finditer(text):
            value = rule.normalize(match.group(1))
            if value is None:
                continue
            end = match.end()
            if rule.used_length is not None:
                end = match.start(1) + rule.used_length(match.group(1))
            return value, _mask(text, (match.start(), end))
    return None, text


def _extract_identifiers(text: str, out: Dict[str, Any]) -> str:
    for pattern in IDENTIFIER_PATTERNS:
        for match in pattern.finditer(text):
            label = match.group(1).lower()
            key = _IDENTIFIER_FIELD[label]
            if key in out:
                continue
            out[key] = match.group(2).strip("-").upper()
            out.setdefault("identifier_type", key.split("_", 1)[0].upper())
            text = _mask(text, match.span())
    return text


def _extract_amount(text: str) -> Tuple[Optional[float], str]:
    for pattern in (AMOUNT_LABELED, AMOUNT_HEURISTIC):
        for match in pattern.finditer(text):
            value = _parse_amount(match.group(1), match.group(2))
            if value is not None:
                return value, _mask(text, match.span())
    return None, text


# -----------------------------
# Public API
# -----------------------------
def extract(text: str) -> ExtractedFields:
    """Parse raw message text into ExtractedFields. Never raises."""
    if not text or not str(text).strip():
        return ExtractedFields()

    working = str(text)
    out: Dict[str, Any] = {}

    try:
        working = _extract_identifiers(working, out)
    except Exception:
        logger.debug("identifier extraction failed", exc_info=True)

    for rule in RULES[:3]:  # government_id, email, phone
        try:
            value, working = _apply_rule(rule, working)
        except Exception:
            logger.debug("rule %s failed", rule.field, exc_info=True)
            continue
        if value is not None:
            out[rule.field] = value

    try:
        amount, working = _extract_amount(working)
        if amount is not None:
            out["amount"] = amount
    except Exception:
        logger.debug("amount extraction failed", exc_info=True)

    for rule in RULES[3:]:
        try:
            value, working = _apply_rule(rule, working)
        except Exception:
            logger.debug("rule %s failed", rule.field, exc_info=True)
            continue
        if value is not None:
            out[rule.field] = value

    if URGENT_RE.search(str(text)):
        out["urgency"] = True

    return ExtractedFields(**out)


def extract_identifiers(text: str) -> Dict[str, str]:
    """Identifier subset (phone/email/government id/CRM/OPP/DEAL) of extract()."""
    return extract(text).identifiers()


_IDENTIFIER_NORMALIZERS: Dict[str, Callable[[str], Optional[str]]] = {
    "phone": _normalize_phone,
    "email": _normalize_email,
    "government_id": _normalize_gov_id,
}


def normalize_identifier(kind: str, value: Any) -> Optional[str]:
    """
    Bring an identifier from another source (e.g. the remote classifier) into
    the same shape extract() produces, so index keys line up. None if unusable.
    """
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    text = str(value).strip()
    if not text:
        return None
    normalizer = _IDENTIFIER_NORMALIZERS.get(kind)
    if normalizer is not None:
        return normalizer(text)
    return text.strip("-").upper()


__all__ = ["FieldRule", "RULES", "extract", "extract_identifiers", "normalize_identifier"]
