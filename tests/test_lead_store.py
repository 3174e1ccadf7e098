import re

import pytest

from leadbot.config import LEADS_KEY
from leadbot.datastore import InMemoryStore
from leadbot.errors import NotFound, PersistenceFailure
from leadbot.lead_store import LeadStore, priority_category
from leadbot.models import ExtractedFields
from leadbot.schema import LeadStatus, Priority


class FlakyStore(InMemoryStore):
    def __init__(self):
        super().__init__()
        self.fail = False

    def save(self, key, value):
        if self.fail:
            raise PersistenceFailure("disk full", key=key)
        return super().save(key, value)


def _create(store, **fields):
    return store.create(
        ExtractedFields(**fields),
        conversation_id="group-1@g.us",
        source_description="Group: Bajaj + Isha",
        sender_label="919812345678",
        raw_message="sample",
    )


def test_amount_60000_is_medium():
    store = LeadStore(InMemoryStore())
    record = _create(store, name="Asha", amount=60000)
    assert record.priority_category is Priority.MEDIUM


@pytest.mark.parametrize(
    "fields, expected",
    [
        ({"amount": 150000}, Priority.HIGH),
        ({"amount": 100000}, Priority.MEDIUM),
        ({"amount": 50000}, Priority.LOW),
        ({"urgency": True, "amount": 1000}, Priority.HIGH),
        ({"name": "No Amount"}, Priority.LOW),
    ],
)
def test_priority_category_rules(fields, expected):
    assert priority_category(ExtractedFields(**fields)) is expected


def test_create_assigns_id_history_and_persists():
    backend = InMemoryStore()
    store = LeadStore(backend)

    record = _create(store, phone="9876543210", amount=75000)

    assert re.fullmatch(r"LD-\d{13}-[0-9a-f]{6}", record.id)
    assert record.status is LeadStatus.NEW
    assert [h.action for h in record.history] == ["Created"]
    assert record.identifiers == {"phone": "9876543210"}
    assert backend.load(LEADS_KEY)[0]["id"] == record.id


def test_update_appends_exactly_one_history_entry():
    store = LeadStore(InMemoryStore())
    record = _create(store, phone="9876543210")

    updated = store.update(record.id, {"status": "InProgress", "assignee": "Vinod"})

    assert updated.status is LeadStatus.IN_PROGRESS
    assert updated.assignee == "Vinod"
    assert [h.action for h in updated.history] == ["Created", "Updated"]
    assert updated.history[-1].detail["status"] == {"from": "New", "to": "InProgress"}


def test_update_unknown_id_raises_not_found_and_leaves_store_unchanged():
    backend = InMemoryStore()
    store = LeadStore(backend)
    _create(store, phone="9876543210")
    before = backend.load(LEADS_KEY)

    with pytest.raises(NotFound):
        store.update("LD-0-000000", {"status": "Closed"})

    assert backend.load(LEADS_KEY) == before
    assert store.snapshot() == before


def test_update_with_invalid_status_does_not_mutate():
    store = LeadStore(InMemoryStore())
    record = _create(store, phone="9876543210")

    with pytest.raises(ValueError):
        store.update(record.id, {"status": "Archived"})

    assert len(store.get(record.id).history) == 1


def test_stats_on_empty_store_has_zero_conversion():
    stats = LeadStore(InMemoryStore()).stats()
    assert stats["total"] == 0
    assert stats["conversionRate"] == 0


def test_stats_counts_status_priority_and_conversion():
    store = LeadStore(InMemoryStore())
    closed = _create(store, amount=150000)
    _create(store, amount=1000, urgency=True)
    store.update(closed.id, {"status": "Closed"})

    stats = store.stats()

    assert stats["total"] == 2
    assert stats["byStatus"]["Closed"] == 1
    assert stats["byPriority"]["High"] == 2
    assert stats["urgent"] == 1
    assert stats["today"] == 2
    assert stats["conversionRate"] == 50.0


def test_save_failure_sets_degraded_and_keeps_records():
    backend = FlakyStore()
    store = LeadStore(backend)
    backend.fail = True

    record = _create(store, phone="9876543210")

    assert store.degraded is True
    assert store.get(record.id) is record

    backend.fail = False
    store.update(record.id, {"assignee": "Pooja"})
    assert store.degraded is False
    assert backend.load(LEADS_KEY)[0]["assignee"] == "Pooja"


def test_records_reload_from_backend():
    backend = InMemoryStore()
    first = LeadStore(backend)
    record = _create(first, email="a@b.in")

    second = LeadStore(backend)

    assert second.get(record.id).identifiers == {"email": "a@b.in"}
    assert second.get(record.id).history[0].action == "Created"


def test_list_filters_by_status_and_priority():
    store = LeadStore(InMemoryStore())
    high = _create(store, amount=200000)
    _create(store, amount=60000)
    store.update(high.id, {"status": "Closed"})

    assert [r.id for r in store.list(status="Closed")] == [high.id]
    assert len(store.list(priority="Medium")) == 1
    assert store.list(conversation_id="other") == []


def test_list_since_filters_by_creation_time():
    store = LeadStore(InMemoryStore())
    record = _create(store, amount=200000)

    assert [r.id for r in store.list(since="2000-01-01T00:00:00Z")] == [record.id]
    assert store.list(since="2999-01-01T00:00:00Z") == []


def test_list_rejects_unparseable_since():
    store = LeadStore(InMemoryStore())
    _create(store, amount=200000)

    with pytest.raises(ValueError):
        store.list(since="last tuesday")
