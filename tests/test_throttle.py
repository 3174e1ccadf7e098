from datetime import datetime, timedelta, timezone

from leadbot.config import LAST_GREETING_KEY, LAST_RESPONSE_KEY, MESSAGES_PER_DAY_KEY
from leadbot.datastore import InMemoryStore
from leadbot.runtime import to_iso
from leadbot.schema import ResponseKind
from leadbot.throttle import OutboundThrottle

CONV = "120363000000000001@g.us"
ACK = ResponseKind.ACKNOWLEDGEMENT
GREETING = ResponseKind.GREETING


def _clock(start=datetime(2024, 5, 6, 5, 0, tzinfo=timezone.utc)):
    now = [start]
    return now, (lambda: now[0])


def test_first_acknowledgement_is_always_allowed():
    _, clock = _clock()
    assert OutboundThrottle(InMemoryStore(), clock=clock).may_respond(CONV, ACK) is True


def test_acknowledgement_cooldown_30_vs_61_minutes():
    now, clock = _clock()
    store = InMemoryStore()
    store.save(LAST_RESPONSE_KEY, {CONV: to_iso(now[0] - timedelta(minutes=30))})
    assert OutboundThrottle(store, clock=clock).may_respond(CONV, ACK) is False

    store.save(LAST_RESPONSE_KEY, {CONV: to_iso(now[0] - timedelta(minutes=61))})
    assert OutboundThrottle(store, clock=clock).may_respond(CONV, ACK) is True


def test_record_response_starts_cooldown():
    now, clock = _clock()
    throttle = OutboundThrottle(InMemoryStore(), clock=clock)
    throttle.record_response(CONV, ACK)

    now[0] += timedelta(minutes=59)
    assert throttle.may_respond(CONV, ACK) is False
    now[0] += timedelta(minutes=1)
    assert throttle.may_respond(CONV, ACK) is True


def test_two_greetings_per_local_day():
    now, clock = _clock()
    throttle = OutboundThrottle(InMemoryStore(), clock=clock)

    for _ in range(2):
        assert throttle.may_respond(CONV, GREETING) is True
        throttle.record_response(CONV, GREETING)
        now[0] += timedelta(minutes=61)
    assert throttle.may_respond(CONV, GREETING) is False

    now[0] += timedelta(days=1)
    assert throttle.may_respond(CONV, GREETING) is True


def test_greetings_need_an_hour_between_them():
    now, clock = _clock()
    store = InMemoryStore()
    OutboundThrottle(store, clock=clock).record_response(CONV, GREETING)

    throttle = OutboundThrottle(store, clock=clock)
    assert throttle.may_respond(CONV, GREETING) is False
    now[0] += timedelta(minutes=59)
    assert throttle.may_respond(CONV, GREETING) is False
    now[0] += timedelta(minutes=1)
    assert throttle.may_respond(CONV, GREETING) is True
    assert store.load(LAST_GREETING_KEY)[CONV] == to_iso(now[0] - timedelta(minutes=60))


def test_greetings_and_acknowledgements_are_independent():
    _, clock = _clock()
    throttle = OutboundThrottle(InMemoryStore(), clock=clock)
    throttle.record_response(CONV, GREETING)
    throttle.record_response(CONV, GREETING)

    assert throttle.may_respond(CONV, ACK) is True
    throttle.record_response(CONV, ACK)
    assert throttle.greetings_today(CONV) == 2


def test_state_is_persisted_and_reloaded():
    _, clock = _clock()
    store = InMemoryStore()
    first = OutboundThrottle(store, clock=clock)
    first.record_response(CONV, ACK)
    first.record_response(CONV, GREETING)

    second = OutboundThrottle(store, clock=clock)

    assert second.may_respond(CONV, ACK) is False
    assert second.greetings_today(CONV) == 1
    assert store.load(MESSAGES_PER_DAY_KEY)[CONV]["count"] == 1
