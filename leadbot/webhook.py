# leadbot/webhook.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request
from pydantic import BaseModel

from leadbot.config import settings
from leadbot.errors import NotFound, SessionInvalidated
from leadbot.models import MessageEvent
from leadbot.processor import Dispatcher
from leadbot.runtime import get_logger, iso_now

logger = get_logger("webhook")

router = APIRouter()


class LeadPatch(BaseModel):
    status: Optional[str] = None
    assignee: Optional[str] = None
    priority: Optional[str] = None
    note: Optional[str] = None


# === HELPERS ===
def _is_authorized(header_token: Optional[str], query_token: Optional[str]) -> bool:
    """Header or query token must match WEBHOOK_TOKEN; open when no token is configured."""
    expected = settings().WEBHOOK_TOKEN
    if not expected:
        return True
    return (header_token == expected) or (query_token == expected)


def _require_token(header_token: Optional[str], query_token: Optional[str]) -> None:
    if not _is_authorized(header_token, query_token):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _dispatcher(request: Request) -> Dispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=503, detail="Engine not ready")
    return dispatcher


def parse_events(data: Any) -> List[MessageEvent]:
    """Single event object or {"messages": [...]}. Raises ValueError on bad shape."""
    if isinstance(data, dict) and "messages" in data:
        items = data["messages"]
    else:
        items = [data]
    if not isinstance(items, list) or not items:
        raise ValueError("Expected an event object or a non-empty 'messages' list")
    events = []
    for item in items:
        if not isinstance(item, dict):
            raise ValueError("Each message must be a JSON object")
        events.append(MessageEvent.from_payload(item))
    return events


# === FASTAPI ROUTES ===
@router.post("/inbound")
async def inbound_handler(
    request: Request,
    x_webhook_token: Optional[str] = Header(None),
    token: Optional[str] = Query(None),
):
    """Accept inbound chat events and run them through the lead engine."""
    _require_token(x_webhook_token, token)
    dispatcher = _dispatcher(request)
    if dispatcher.session_lost:
        raise HTTPException(status_code=503, detail="Chat session lost; restart required")
    try:
        data = await request.json()
        events = parse_events(data)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"Invalid payload: {exc}")
    try:
        return await dispatcher.handle_batch(events)
    except SessionInvalidated as exc:
        logger.critical("🚨 Chat session invalidated, shutting down: %s", exc)
        on_session_lost = getattr(request.app.state, "on_session_lost", None)
        if on_session_lost is not None:
            on_session_lost()
        raise HTTPException(status_code=503, detail="Chat session lost; restart required")


@router.get("/leads")
def leads_handler(
    request: Request,
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    conversation_id: Optional[str] = Query(None, alias="conversationId"),
    since: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    x_webhook_token: Optional[str] = Header(None),
    token: Optional[str] = Query(None),
) -> Dict[str, Any]:
    _require_token(x_webhook_token, token)
    dispatcher = _dispatcher(request)
    filters = {"status": status, "priority": priority, "conversation_id": conversation_id, "since": since, "limit": limit}
    try:
        leads = dispatcher.list_leads(filters)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return {"ok": True, "count": len(leads), "leads": leads}


@router.get("/stats")
def stats_handler(
    request: Request,
    x_webhook_token: Optional[str] = Header(None),
    token: Optional[str] = Query(None),
) -> Dict[str, Any]:
    _require_token(x_webhook_token, token)
    return {"ok": True, "stats": _dispatcher(request).get_lead_stats()}


@router.patch("/leads/{lead_id}")
async def update_lead_handler(
    lead_id: str,
    patch: LeadPatch,
    request: Request,
    x_webhook_token: Optional[str] = Header(None),
    token: Optional[str] = Query(None),
) -> Dict[str, Any]:
    _require_token(x_webhook_token, token)
    dispatcher = _dispatcher(request)
    try:
        lead = await dispatcher.update_lead(lead_id, patch.model_dump(exclude_unset=True))
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return {"ok": True, "lead": lead}


@router.get("/health")
def health_handler(request: Request) -> Dict[str, Any]:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    session_lost = bool(dispatcher and dispatcher.session_lost)
    if dispatcher is None:
        status = "starting"
    else:
        status = "session_lost" if session_lost else "ok"
    return {
        "ok": not session_lost,
        "status": status,
        "sessionLost": session_lost,
        "monitoring": bool(dispatcher and dispatcher.monitoring),
        "degraded": bool(dispatcher and dispatcher.lead_store.degraded),
        "time": iso_now(),
    }
