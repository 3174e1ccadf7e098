"""
🧠 Leadbot Runtime Core
-----------------------
Process-wide plumbing shared by every module: one-time logging setup with a
masked settings banner, the uncaught-exception hook, UTC timestamp helpers,
digit stripping, a perf timer for batches, and the async retry loop used by
the outbound sender.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import sys
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

T = TypeVar("T")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_state = {"logging": False, "hook": False, "banner": False}
_NON_DIGIT = re.compile(r"\D+")


# ────────────────────────────────────────────────
# LOGGING
# ────────────────────────────────────────────────
def _redact(secret: Optional[str]) -> str:
    """Show only the tail of a credential ("…a1b2"), or <unset>."""
    secret = (secret or "").strip()
    if not secret:
        return "<unset>"
    return "…" + secret[-4:] if len(secret) > 8 else "set"


def _level_from(value: int | str | None) -> int:
    raw = value if value is not None else os.getenv("LEADBOT_LOG_LEVEL", "INFO")
    if isinstance(raw, int):
        return raw
    resolved = logging.getLevelName(str(raw).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: int | str | None = None) -> None:
    """Set up root logging on first call; later calls are no-ops."""
    if _state["logging"]:
        return
    logging.basicConfig(level=_level_from(level), format=LOG_FORMAT)
    _state["logging"] = True
    _log_startup_banner()


def get_logger(name: str = "leadbot") -> logging.Logger:
    if not _state["logging"]:
        configure_logging()
    return logging.getLogger(name if name.startswith("leadbot") else f"leadbot.{name}")


def install_global_exception_hook() -> None:
    """Route uncaught exceptions through logging with the full traceback."""
    if _state["hook"]:
        return

    def _log_uncaught(exc_type, exc, tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        get_logger("uncaught").critical("💥 Uncaught %s: %s", exc_type.__name__, exc, exc_info=(exc_type, exc, tb))

    sys.excepthook = _log_uncaught
    _state["hook"] = True


def _log_startup_banner() -> None:
    if _state["banner"]:
        return
    groups = [g for g in (os.getenv("MONITORED_GROUPS") or "").split(",") if g.strip()]
    logging.getLogger("leadbot.env").info(
        "⚙️ store=%s state_dir=%s redis=%s airtable=%s | openai=%s model=%s | gateway=%s | groups=%s tz=%s",
        os.getenv("LEADBOT_STORE", "file"),
        os.getenv("LEADBOT_STATE_DIR", "./state"),
        "on" if os.getenv("REDIS_URL") else "off",
        _redact(os.getenv("AIRTABLE_API_KEY")),
        _redact(os.getenv("OPENAI_API_KEY")),
        os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        os.getenv("GATEWAY_URL") or "dry-run",
        len(groups) or "all",
        os.getenv("LOCAL_TZ", "Asia/Kolkata"),
    )
    _state["banner"] = True


# ────────────────────────────────────────────────
# TIME
# ────────────────────────────────────────────────
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Second-precision UTC string with a Z suffix; naive values are taken as UTC."""
    aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return aware.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def iso_now() -> str:
    return to_iso(utc_now())


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Lenient inverse of to_iso: None for blanks or garbage, UTC assumed when no offset."""
    if not value:
        return None
    text = str(value).strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# ────────────────────────────────────────────────
# DIGITS
# ────────────────────────────────────────────────
def only_digits(value: str | None) -> str:
    return _NON_DIGIT.sub("", str(value)) if value is not None else ""


# ────────────────────────────────────────────────
# PERF
# ────────────────────────────────────────────────
class PerfTimer:
    """`with PerfTimer("batch[3]"):` logs the elapsed milliseconds at debug level."""

    def __init__(self, label: str):
        self.label = label
        self.elapsed_ms = 0.0
        self._t0 = 0.0

    def __enter__(self):
        self._t0 = time.perf_counter()
        return self

    def __exit__(self, *_):
        self.elapsed_ms = round((time.perf_counter() - self._t0) * 1000, 1)
        get_logger("perf").debug("⏱ %s took %sms", self.label, self.elapsed_ms)


# ────────────────────────────────────────────────
# RETRY
# ────────────────────────────────────────────────
async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    base_delay: float = 0.5,
    backoff: float = 2.0,
    exceptions: Iterable[type[BaseException]] = (Exception,),
    logger: Optional[logging.Logger] = None,
) -> T:
    """
    Await func() up to retries + 1 times, sleeping base_delay * backoff**n
    between attempts (backoff=1.0 means a fixed delay). Only the listed
    exception types are retried; the last one is re-raised.
    """
    log = logger or get_logger("retry")
    retryable = tuple(exceptions)
    attempt = 0
    while True:
        try:
            return await func()
        except retryable as exc:
            if attempt >= retries:
                log.error("🛑 Giving up after %s attempt(s): %s", attempt + 1, exc)
                raise
            delay = base_delay * (backoff ** attempt)
            attempt += 1
            log.warning("🔁 Attempt %s/%s failed (%s); retrying in %.1fs", attempt, retries + 1, exc, delay)
            await asyncio.sleep(delay)
