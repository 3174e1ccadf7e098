import asyncio
import json

import httpx
import pytest

from leadbot.errors import SendFailure, SessionInvalidated
from leadbot.sender import GatewaySender


def _sender(handler, retries=2):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GatewaySender(base_url="https://gateway.test", token="tkn", client=client, retries=retries, retry_delay=0)


def test_send_text_posts_json_with_bearer_token():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"id": "wamid.1"})

    result = asyncio.run(_sender(handler).send_text("group@g.us", "Checking team"))

    assert result == {"ok": True, "raw": {"id": "wamid.1"}}
    assert str(seen[0].url) == "https://gateway.test/send"
    assert seen[0].headers["authorization"] == "Bearer tkn"
    assert json.loads(seen[0].content) == {"conversationId": "group@g.us", "text": "Checking team"}


def test_transient_failures_are_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(502, json={"error": "bad gateway"})
        return httpx.Response(200, json={"id": "ok"})

    result = asyncio.run(_sender(handler).send_text("group@g.us", "hi"))

    assert result["ok"] is True
    assert len(calls) == 3


def test_exhausted_retries_raise_send_failure_with_body():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"error": "socket closed"})

    with pytest.raises(SendFailure) as exc:
        asyncio.run(_sender(handler).send_text("group@g.us", "hi"))

    assert len(calls) == 3
    assert exc.value.status_code == 500
    assert exc.value.body == {"error": "socket closed"}


def test_deliver_drops_and_returns_false():
    def handler(request):
        return httpx.Response(503, text="down")

    assert asyncio.run(_sender(handler, retries=0).deliver("group@g.us", "hi")) is False


def test_logged_out_session_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, json={"error": "logged out"})

    with pytest.raises(SessionInvalidated):
        asyncio.run(_sender(handler).deliver("group@g.us", "hi"))
    assert len(calls) == 1


def test_dry_run_without_gateway_url():
    sender = GatewaySender(base_url="")
    result = asyncio.run(sender.send_text("group@g.us", "Checking team"))

    assert result == {"ok": True, "dry_run": True}
    assert sender.sent == [{"conversationId": "group@g.us", "text": "Checking team"}]


def test_empty_text_is_rejected():
    with pytest.raises(SendFailure):
        asyncio.run(GatewaySender(base_url="").send_text("group@g.us", "   "))
