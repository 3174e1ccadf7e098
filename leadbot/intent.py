# leadbot/intent.py
"""
Quick Classifier
----------------
Deterministic, zero-latency lead scoring for inbound chat text.
Runs before any remote classification call and is the unconditional
fallback whenever that call fails.
"""

from __future__ import annotations
import re
import string
from typing import Iterable, List

from leadbot.extractor import extract
from leadbot.models import ClassificationResult, ExtractedFields
from leadbot.schema import Priority

# -----------------------------
# Weights
# -----------------------------
W_CONTACT = 0.3
W_FINANCIAL = 0.3
W_LOCATION = 0.2
W_URGENCY = 0.1
W_CUSTOMER_PHRASE = 0.1

LEAD_THRESHOLD = 0.3
HIGH_THRESHOLD = 0.6
MEDIUM_THRESHOLD = 0.3

# -----------------------------
# Lexicons
# -----------------------------
LOAN_WORDS = {"loan", "emi", "finance", "financing", "tenure", "disbursal", "disbursement", "sanction", "kyc", "no cost emi"}
CUSTOMER_PHRASES = {
    "new customer", "existing customer", "new client", "existing client",
    "new case", "fresh case", "new lead", "walk in", "walk-in", "repeat customer",
}


# -----------------------------
# Utils
# -----------------------------
def _norm(text: str) -> str:
    return text.lower().translate(str.maketrans("", "", string.punctuation.replace("-", ""))).strip()


def _has_any(text: str, phrases: Iterable[str]) -> bool:
    return any(p in text for p in phrases)


def _match_words(text: str, words: Iterable[str]) -> bool:
    pattern = r"\b(" + "|".join(map(re.escape, words)) + r")\b"
    return bool(re.search(pattern, text))


def priority_for(confidence: float) -> Priority:
    if confidence >= HIGH_THRESHOLD:
        return Priority.HIGH
    if confidence > MEDIUM_THRESHOLD:
        return Priority.MEDIUM
    return Priority.LOW


# -----------------------------
# Main classifier
# -----------------------------
def score(text: str, fields: ExtractedFields) -> tuple[float, List[str]]:
    """Accumulate confidence by signal category; returns (confidence, matched categories)."""
    norm = _norm(text or "")
    matched: List[str] = []
    confidence = 0.0

    if fields.has_contact():
        confidence += W_CONTACT
        matched.append("contact")
    if fields.has_financial() or _match_words(norm, LOAN_WORDS):
        confidence += W_FINANCIAL
        matched.append("financial")
    if fields.has_location():
        confidence += W_LOCATION
        matched.append("location")
    if fields.urgency:
        confidence += W_URGENCY
        matched.append("urgency")
    if _has_any(norm, CUSTOMER_PHRASES):
        confidence += W_CUSTOMER_PHRASE
        matched.append("customer_phrase")

    return min(round(confidence, 2), 1.0), matched


def quick_check(text: str) -> ClassificationResult:
    """Return a deterministic lead/no-lead decision for inbound chat text."""
    fields = extract(text or "")
    confidence, matched = score(text or "", fields)
    is_lead = confidence >= LEAD_THRESHOLD and fields.has_structured()

    if matched:
        reasoning = "quick: " + ", ".join(matched)
    else:
        reasoning = "quick: no lead signals"
    if confidence >= LEAD_THRESHOLD and not is_lead:
        reasoning += " (no structured field extracted)"

    return ClassificationResult(
        is_lead=is_lead,
        confidence=confidence,
        priority=priority_for(confidence),
        fields=fields,
        reasoning=reasoning,
        is_new_lead=is_lead,
        source="quick",
    )


__all__ = ["quick_check", "score", "priority_for"]
