"""Key-value persistence backends with an in-memory fallback for local runs and tests."""

from __future__ import annotations

import copy
import json
import os
import re
from typing import Any, Dict, Optional, Protocol

import redis
from pyairtable import Api

from leadbot.config import settings
from leadbot.errors import PersistenceFailure
from leadbot.runtime import get_logger

logger = get_logger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.\-]+")


class KeyValueStore(Protocol):
    name: str

    def load(self, key: str, default: Any = None) -> Any: ...

    def save(self, key: str, value: Any) -> bool: ...


# ============================================================
# BACKENDS
# ============================================================


class InMemoryStore:
    """Process-local store used for tests and when persistence is disabled."""

    name = "memory"

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    def load(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def save(self, key: str, value: Any) -> bool:
        self._data[key] = copy.deepcopy(value)
        return True

    def keys(self):
        return list(self._data)


class JsonFileStore:
    """One JSON document per key under the state directory."""

    name = "file"

    def __init__(self, state_dir: str) -> None:
        self.state_dir = state_dir

    def _path(self, key: str) -> str:
        return os.path.join(self.state_dir, f"{_SAFE_KEY.sub('_', key)}.json")

    def load(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not os.path.exists(path):
            return default
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceFailure(f"Failed to load {path}: {exc}", key=key) from exc

    def save(self, key: str, value: Any) -> bool:
        path = self._path(key)
        tmp = f"{path}.tmp"
        try:
            os.makedirs(self.state_dir, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(value, fh, ensure_ascii=False, indent=2)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceFailure(f"Failed to save {path}: {exc}", key=key) from exc
        return True


class RedisStore:
    """JSON strings under leadbot:<key>."""

    name = "redis"

    def __init__(self, url: str, *, tls: bool = False, client: Any = None) -> None:
        self.r = client or redis.from_url(url, ssl=tls, decode_responses=True)

    @staticmethod
    def _key(key: str) -> str:
        return f"leadbot:{key}"

    def load(self, key: str, default: Any = None) -> Any:
        try:
            raw = self.r.get(self._key(key))
        except redis.RedisError as exc:
            raise PersistenceFailure(f"Redis GET failed: {exc}", key=key) from exc
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceFailure(f"Corrupt JSON under {self._key(key)}", key=key) from exc

    def save(self, key: str, value: Any) -> bool:
        try:
            self.r.set(self._key(key), json.dumps(value, ensure_ascii=False))
        except (redis.RedisError, TypeError, ValueError) as exc:
            raise PersistenceFailure(f"Redis SET failed: {exc}", key=key) from exc
        return True


class AirtableStore:
    """Rows in a State table: {Key, Value} with Value holding a JSON string."""

    name = "airtable"
    KEY_FIELD = "Key"
    VALUE_FIELD = "Value"

    def __init__(self, api_key: str, base_id: str, table_name: str, *, table: Any = None) -> None:
        self.table = table or Api(api_key).table(base_id, table_name)
        self._record_ids: Dict[str, str] = {}

    def _find(self, key: str) -> Optional[Dict[str, Any]]:
        safe = key.replace("'", "\\'")
        return self.table.first(formula=f"{{{self.KEY_FIELD}}}='{safe}'")

    def load(self, key: str, default: Any = None) -> Any:
        try:
            record = self._find(key)
        except Exception as exc:
            raise PersistenceFailure(f"Airtable lookup failed: {exc}", key=key) from exc
        if not record:
            return default
        self._record_ids[key] = record["id"]
        raw = (record.get("fields") or {}).get(self.VALUE_FIELD)
        if raw in (None, ""):
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceFailure(f"Corrupt JSON in Airtable row {key}", key=key) from exc

    def save(self, key: str, value: Any) -> bool:
        fields = {self.KEY_FIELD: key, self.VALUE_FIELD: json.dumps(value, ensure_ascii=False)}
        try:
            record_id = self._record_ids.get(key)
            if record_id is None:
                existing = self._find(key)
                record_id = existing["id"] if existing else None
            if record_id:
                self.table.update(record_id, fields)
            else:
                created = self.table.create(fields)
                record_id = created["id"]
            self._record_ids[key] = record_id
        except Exception as exc:
            raise PersistenceFailure(f"Airtable save failed: {exc}", key=key) from exc
        return True


# ============================================================
# SELECTION
# ============================================================

_STORE: Optional[KeyValueStore] = None


def build_store() -> KeyValueStore:
    cfg = settings()
    backend = cfg.STORE_BACKEND
    if cfg.FORCE_IN_MEMORY or backend == "memory":
        return InMemoryStore()
    if backend == "redis":
        if not cfg.REDIS_URL:
            logger.warning("⚠️ LEADBOT_STORE=redis but REDIS_URL is missing; using in-memory store")
            return InMemoryStore()
        return RedisStore(cfg.REDIS_URL, tls=cfg.REDIS_TLS)
    if backend == "airtable":
        if not (cfg.AIRTABLE_API_KEY and cfg.AIRTABLE_BASE_ID):
            logger.warning("⚠️ LEADBOT_STORE=airtable but Airtable credentials are missing; using in-memory store")
            return InMemoryStore()
        return AirtableStore(cfg.AIRTABLE_API_KEY, cfg.AIRTABLE_BASE_ID, cfg.AIRTABLE_STATE_TABLE)
    if backend != "file":
        logger.warning("⚠️ Unknown LEADBOT_STORE=%s; using JSON files", backend)
    return JsonFileStore(cfg.STATE_DIR)


def get_store() -> KeyValueStore:
    global _STORE
    if _STORE is None:
        _STORE = build_store()
        logger.info("💾 Persistence backend: %s", _STORE.name)
    return _STORE


def reset_state() -> None:
    global _STORE
    _STORE = None
    logger.info("🧹 Datastore state and caches cleared.")


__all__ = [
    "KeyValueStore",
    "InMemoryStore",
    "JsonFileStore",
    "RedisStore",
    "AirtableStore",
    "build_store",
    "get_store",
    "reset_state",
]
