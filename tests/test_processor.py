import asyncio

import pytest

from leadbot.datastore import InMemoryStore
from leadbot.errors import SessionInvalidated
from leadbot.idempotency import IdempotencyStore
from leadbot.lead_store import LeadStore
from leadbot.models import MessageEvent
from leadbot.processor import Dispatcher, MonitorPolicy
from leadbot.sender import GatewaySender
from leadbot.templates import GREETINGS

GROUP = "120363000000000001@g.us"
LEAD_TEXT = "Name: Ramesh, Phone: 9876543210, Loan amount 150000, urgent"


def _policy(**overrides):
    values = dict(groups=(), direct_messages=True, greetings_enabled=True, lead_alerts=False, admin_conversation_id=None)
    values.update(overrides)
    return MonitorPolicy(**values)


def _dispatcher(**overrides):
    store = InMemoryStore()
    kwargs = dict(
        lead_store=LeadStore(store),
        sender=GatewaySender(base_url=""),
        idempotency=IdempotencyStore(),
        policy=_policy(),
        notify=None,
    )
    kwargs.update(overrides)
    return Dispatcher(**kwargs)


def _event(msg_id, text, conversation_id=GROUP, **kwargs):
    kwargs.setdefault("is_group", conversation_id.endswith("@g.us"))
    kwargs.setdefault("group_name", "Bajaj + Isha")
    return MessageEvent(id=msg_id, conversation_id=conversation_id, text=text, sender_id="919812345678@s.whatsapp.net", **kwargs)


def _all_greetings():
    return {g for bucket in GREETINGS.values() for g in bucket}


def test_new_lead_creates_record_acknowledges_and_greets():
    dispatcher = _dispatcher()

    result = asyncio.run(dispatcher.handle_batch([_event("m1", LEAD_TEXT)]))

    assert result["ok"] is True
    outcome = result["results"][0]
    assert outcome["status"] == "new_lead"
    assert outcome["priority"] == "High"
    assert outcome["classification"]["isLead"] is True
    assert len(dispatcher.lead_store) == 1
    texts = [m["text"] for m in dispatcher.sender.sent]
    assert texts[0] == "Checking team"
    assert texts[1] in _all_greetings()


def test_follow_up_does_not_create_or_acknowledge():
    dispatcher = _dispatcher()
    asyncio.run(dispatcher.handle_batch([_event("m1", LEAD_TEXT)]))
    sent_before = len(dispatcher.sender.sent)

    result = asyncio.run(dispatcher.handle_batch([_event("m2", "Phone 9876543210 loan approved", "other@g.us")]))

    assert result["results"][0]["status"] == "follow_up"
    assert len(dispatcher.lead_store) == 1
    assert dispatcher.lead_store.all()[0].status.value == "Closed"
    assert len(dispatcher.sender.sent) == sent_before


def test_skips_self_empty_and_duplicate_messages():
    dispatcher = _dispatcher()
    events = [
        _event("m1", LEAD_TEXT, from_me=True),
        _event("m2", "   "),
        _event("m3", "Good morning team"),
        _event("m3", "Good morning team"),
    ]

    statuses = [r["status"] for r in asyncio.run(dispatcher.handle_batch(events))["results"]]

    assert statuses == ["skipped", "skipped", "not_lead", "duplicate"]
    assert dispatcher.sender.sent == []


def test_acknowledgement_cooldown_applies_per_conversation():
    dispatcher = _dispatcher(policy=_policy(greetings_enabled=False))
    events = [
        _event("m1", LEAD_TEXT),
        _event("m2", "Name: Suresh, Phone: 9123456789, home loan 3 lakh, Jayanagar branch"),
    ]

    results = asyncio.run(dispatcher.handle_batch(events))["results"]

    assert [r["status"] for r in results] == ["new_lead", "new_lead"]
    assert results[0]["responses"]["acknowledgement"] is True
    assert results[1]["responses"]["acknowledgement"] is False
    assert [m["text"] for m in dispatcher.sender.sent] == ["Checking team"]


def test_batch_in_flight_drops_new_batch():
    dispatcher = _dispatcher()

    async def scenario():
        async with dispatcher._lock:
            return await dispatcher.handle_batch([_event("m1", LEAD_TEXT)])

    result = asyncio.run(scenario())

    assert result == {"ok": False, "status": "busy", "dropped": 1}
    assert len(dispatcher.lead_store) == 0


def test_one_failing_message_does_not_stop_the_batch(monkeypatch):
    dispatcher = _dispatcher()
    original = dispatcher.tracker.evaluate

    def flaky(event, classification):
        if event.id == "bad":
            raise RuntimeError("boom")
        return original(event, classification)

    monkeypatch.setattr(dispatcher.tracker, "evaluate", flaky)
    events = [_event("bad", LEAD_TEXT), _event("good", "Name: Suresh, Phone: 9123456789, loan 3 lakh")]

    results = asyncio.run(dispatcher.handle_batch(events))["results"]

    assert results[0]["status"] == "error"
    assert results[1]["status"] == "new_lead"


def test_group_allow_list_matches_exact_or_substring():
    policy = _policy(groups=("Bajaj + Isha", "Lakme"))

    assert policy.is_monitored(_event("a", "x", group_name="Bajaj + Isha"))
    assert policy.is_monitored(_event("b", "x", group_name="Bajaj+ Lakme Rajajinagar"))
    assert not policy.is_monitored(_event("c", "x", group_name="Family"))


def test_direct_messages_follow_setting():
    dm = _event("d", LEAD_TEXT, conversation_id="919812345678@s.whatsapp.net")
    assert _policy(direct_messages=True).is_monitored(dm)
    assert not _policy(direct_messages=False).is_monitored(dm)


def test_paused_monitoring_skips_messages():
    dispatcher = _dispatcher()
    assert dispatcher.toggle_monitoring() is False

    result = asyncio.run(dispatcher.handle_batch([_event("m1", LEAD_TEXT)]))

    assert result["results"][0]["reason"] == "paused"
    assert len(dispatcher.lead_store) == 0


def test_admin_alert_and_notification_hook():
    notified = []
    dispatcher = _dispatcher(
        policy=_policy(lead_alerts=True, admin_conversation_id="admin@s.whatsapp.net", greetings_enabled=False),
        notify=lambda record, alert: notified.append((record.id, alert)),
    )

    result = asyncio.run(dispatcher.handle_batch([_event("m1", LEAD_TEXT)]))

    lead_id = result["results"][0]["leadId"]
    assert result["results"][0]["responses"]["alert"] is True
    assert dispatcher.sender.sent[-1]["conversationId"] == "admin@s.whatsapp.net"
    assert notified and notified[0][0] == lead_id
    assert lead_id in notified[0][1]


def test_query_surface():
    dispatcher = _dispatcher()
    asyncio.run(dispatcher.handle_batch([_event("m1", LEAD_TEXT)]))

    leads = dispatcher.list_leads({"status": "New"})
    stats = dispatcher.get_lead_stats()

    assert len(leads) == 1 and leads[0]["fields"]["phone"] == "9876543210"
    assert stats["total"] == 1 and stats["conversionRate"] == 0

    updated = asyncio.run(dispatcher.update_lead(leads[0]["id"], {"status": "Closed"}))
    assert updated["status"] == "Closed"
    assert dispatcher.get_lead_stats()["conversionRate"] == 100.0


def test_classification_reports_tracker_decision():
    dispatcher = _dispatcher(policy=_policy(greetings_enabled=False))

    first = asyncio.run(dispatcher.handle_batch([_event("m1", LEAD_TEXT)]))["results"][0]
    second = asyncio.run(dispatcher.handle_batch([_event("m2", "Phone 9876543210 loan approved", "other@g.us")]))["results"][0]

    assert first["classification"]["isNewLead"] is True
    assert first["classification"]["relatedToExisting"] is False
    assert second["status"] == "follow_up"
    assert second["classification"]["isNewLead"] is False
    assert second["classification"]["relatedToExisting"] is True


def test_claimed_conversation_gets_no_acknowledgement():
    dispatcher = _dispatcher(policy=_policy(greetings_enabled=False))
    dispatcher.tracker.claim("LD-handled", GROUP)

    result = asyncio.run(dispatcher.handle_batch([_event("m1", LEAD_TEXT)]))["results"][0]

    assert result["status"] == "new_lead"
    assert result["responses"]["acknowledgement"] is False
    assert dispatcher.sender.sent == []


def test_direct_message_lead_is_greeted():
    dispatcher = _dispatcher()
    dm = "919812345678@s.whatsapp.net"

    result = asyncio.run(dispatcher.handle_batch([_event("m1", LEAD_TEXT, dm, group_name=None)]))["results"][0]

    assert result["responses"] == {"acknowledgement": True, "greeting": True, "alert": False}
    assert [m["conversationId"] for m in dispatcher.sender.sent] == [dm, dm]


def test_update_waits_for_batch_in_flight():
    dispatcher = _dispatcher()
    asyncio.run(dispatcher.handle_batch([_event("m1", LEAD_TEXT)]))
    lead_id = dispatcher.lead_store.all()[0].id

    async def scenario():
        async with dispatcher._lock:
            task = asyncio.create_task(dispatcher.update_lead(lead_id, {"status": "Closed"}))
            await asyncio.sleep(0)
            assert not task.done()
            assert dispatcher.lead_store.get(lead_id).status.value == "New"
        return await task

    updated = asyncio.run(scenario())

    assert updated["status"] == "Closed"
    assert dispatcher.lead_store.get(lead_id).status.value == "Closed"


class LoggedOutSender(GatewaySender):
    async def deliver(self, conversation_id, text):
        raise SessionInvalidated("Gateway session invalidated (HTTP 401)")


def test_session_loss_stops_monitoring_and_propagates():
    dispatcher = _dispatcher(sender=LoggedOutSender(base_url=""))

    with pytest.raises(SessionInvalidated):
        asyncio.run(dispatcher.handle_batch([_event("m1", LEAD_TEXT)]))

    assert dispatcher.session_lost is True
    assert dispatcher.monitoring is False
    assert dispatcher.busy is False
