"""Remote (LLM) classification helpers."""

from leadbot.ai.classifier import RemoteClassifier, classify_with_fallback

__all__ = ["RemoteClassifier", "classify_with_fallback"]
