"""Error taxonomy for the lead engine."""

from __future__ import annotations

from typing import Any, Optional


class LeadbotError(RuntimeError):
    """Base error for the lead engine."""


class ClassificationUnavailable(LeadbotError):
    """Remote classification failed, timed out, or returned a malformed payload."""

    def __init__(self, message: str, *, body: Any = None) -> None:
        super().__init__(message)
        self.body = body


class NotFound(LeadbotError):
    """An update referenced an unknown lead id."""

    def __init__(self, lead_id: str) -> None:
        super().__init__(f"Lead '{lead_id}' not found")
        self.lead_id = lead_id


class PersistenceFailure(LeadbotError):
    """Load/save against the key-value store failed."""

    def __init__(self, message: str, *, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.key = key


class SendFailure(LeadbotError):
    """Outbound delivery failed; carries HTTP metadata when available."""

    def __init__(
        self,
        message: str,
        *,
        conversation_id: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.conversation_id = conversation_id
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.body in (None, "", b""):
            return base
        body_repr = str(self.body).strip()
        if not body_repr or body_repr in base:
            return base
        return f"{base} | body={body_repr}"


class SessionInvalidated(LeadbotError):
    """The transport reported a logged-out / conflicting session. Fatal."""
