import pytest
import redis

from leadbot.datastore import AirtableStore, InMemoryStore, JsonFileStore, RedisStore, get_store
from leadbot.errors import PersistenceFailure


class FakeRedis:
    def __init__(self, fail=False):
        self.data = {}
        self.fail = fail

    def get(self, key):
        if self.fail:
            raise redis.ConnectionError("down")
        return self.data.get(key)

    def set(self, key, value):
        if self.fail:
            raise redis.ConnectionError("down")
        self.data[key] = value
        return True


class FakeTable:
    def __init__(self):
        self.rows = {}
        self.formulas = []

    def first(self, formula=None):
        self.formulas.append(formula)
        for rid, fields in self.rows.items():
            if f"'{fields['Key']}'" in formula:
                return {"id": rid, "fields": dict(fields)}
        return None

    def create(self, fields):
        rid = f"rec{len(self.rows) + 1}"
        self.rows[rid] = dict(fields)
        return {"id": rid, "fields": dict(fields)}

    def update(self, record_id, fields):
        self.rows[record_id] = dict(fields)
        return {"id": record_id, "fields": dict(fields)}


def test_forced_in_memory_store():
    assert isinstance(get_store(), InMemoryStore)
    assert get_store() is get_store()


def test_in_memory_store_copies_values():
    store = InMemoryStore()
    value = {"a": [1]}
    store.save("k", value)
    value["a"].append(2)

    assert store.load("k") == {"a": [1]}
    assert store.load("missing", []) == []


def test_json_file_store_round_trip(tmp_path):
    store = JsonFileStore(str(tmp_path / "state"))
    store.save("backup:leads:2024-05-06", [{"id": "LD-1"}])

    assert JsonFileStore(str(tmp_path / "state")).load("backup:leads:2024-05-06") == [{"id": "LD-1"}]
    assert store.load("absent", {}) == {}
    assert not list((tmp_path / "state").glob("*.tmp"))


def test_json_file_store_corrupt_file_raises(tmp_path):
    store = JsonFileStore(str(tmp_path))
    (tmp_path / "leads.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceFailure):
        store.load("leads")


def test_redis_store_prefixes_keys_and_wraps_errors():
    client = FakeRedis()
    store = RedisStore("redis://unused", client=client)
    store.save("leads", [{"id": "LD-1"}])

    assert "leadbot:leads" in client.data
    assert store.load("leads") == [{"id": "LD-1"}]

    client.fail = True
    with pytest.raises(PersistenceFailure):
        store.load("leads")
    with pytest.raises(PersistenceFailure):
        store.save("leads", [])


def test_airtable_store_creates_then_updates_row():
    table = FakeTable()
    store = AirtableStore("key", "app123", "State", table=table)

    store.save("lastResponse", {"g@g.us": "2024-05-06T05:00:00+00:00"})
    store.save("lastResponse", {"g@g.us": "2024-05-06T06:00:00+00:00"})

    assert len(table.rows) == 1
    fresh = AirtableStore("key", "app123", "State", table=table)
    assert fresh.load("lastResponse") == {"g@g.us": "2024-05-06T06:00:00+00:00"}
    assert fresh.load("unknown", "dflt") == "dflt"
    assert table.formulas[0] == "{Key}='lastResponse'"
