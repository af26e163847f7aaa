"""
Snapshot cache for last-known-good listings and the pending-sync queue.

Two tiers, read in order:
- session tier: process-local memory, lost on restart
- persistent tier: JSON documents in the configured Storage (local dir or S3)

Every entry carries a TTL; ttl=NO_EXPIRY keeps it until deleted (the pending
queue must outlive any snapshot). Writers invalidate by key prefix (e.g.
"contacts:") whenever the underlying rows change.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from flask import Flask, current_app

from app.contacthub.storage import Storage, StorageError, storage_from_config

logger = logging.getLogger(__name__)

SESSION_TIER = "session"
PERSISTENT_TIER = "persistent"

Clock = Callable[[], float]

# memcached convention: a zero TTL never expires.
NO_EXPIRY = 0


def _expires_at(now: float, ttl: int | None, default_ttl: int) -> float | None:
    ttl = default_ttl if ttl is None else ttl
    return None if ttl == NO_EXPIRY else now + ttl


class CacheStore:
    def get(self, key: str) -> Any | None:
        raise NotImplementedError

    def set(self, key: str, value: Any, *, ttl: int | None = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def invalidate(self, prefix: str) -> int:
        raise NotImplementedError


class MemoryCache(CacheStore):
    def __init__(self, *, default_ttl: int, clock: Clock = time.time) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._data: dict[str, tuple[float | None, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            expires_at, value = item
            if expires_at is not None and expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: Any, *, ttl: int | None = None) -> None:
        expires_at = _expires_at(self._clock(), ttl, self.default_ttl)
        with self._lock:
            self._data[key] = (expires_at, value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def invalidate(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for k in doomed:
                del self._data[k]
        return len(doomed)


def _storage_key(key: str) -> str:
    return key.replace(":", "/") + ".json"


def _cache_key(storage_key: str) -> str:
    return storage_key[: -len(".json")].replace("/", ":")


class StorageCache(CacheStore):
    def __init__(self, storage: Storage, *, default_ttl: int, clock: Clock = time.time) -> None:
        self.storage = storage
        self.default_ttl = default_ttl
        self._clock = clock

    def get(self, key: str) -> Any | None:
        raw = self.storage.get_bytes(_storage_key(key))
        if raw is None:
            return None
        try:
            doc = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Discarding unreadable cache entry %s", key)
            self.storage.delete(_storage_key(key))
            return None
        expires_at = doc.get("expires_at")
        if expires_at is not None and float(expires_at) <= self._clock():
            self.storage.delete(_storage_key(key))
            return None
        return doc.get("value")

    def set(self, key: str, value: Any, *, ttl: int | None = None) -> None:
        now = self._clock()
        doc = {
            "stored_at": now,
            "expires_at": _expires_at(now, ttl, self.default_ttl),
            "value": value,
        }
        data = json.dumps(doc, sort_keys=True, default=str).encode("utf-8")
        self.storage.put_bytes(_storage_key(key), data, content_type="application/json")

    def delete(self, key: str) -> None:
        self.storage.delete(_storage_key(key))

    def invalidate(self, prefix: str) -> int:
        keys = self.storage.list_keys(_storage_key(prefix)[: -len(".json")])
        for k in keys:
            self.storage.delete(k)
        return len(keys)

    def keys(self, prefix: str = "") -> list[str]:
        return [_cache_key(k) for k in self.storage.list_keys(_storage_key(prefix)[: -len(".json")]) if k.endswith(".json")]


class TieredCache:
    """Session tier in front of a persistent tier. Writes go to both."""

    def __init__(self, session: CacheStore, persistent: CacheStore) -> None:
        self.session = session
        self.persistent = persistent

    def lookup(self, key: str) -> tuple[Any | None, str | None]:
        value = self.session.get(key)
        if value is not None:
            return value, SESSION_TIER
        try:
            value = self.persistent.get(key)
        except StorageError as e:
            logger.warning("Persistent cache read failed for %s: %s", key, e)
            return None, None
        if value is not None:
            return value, PERSISTENT_TIER
        return None, None

    def get(self, key: str) -> Any | None:
        return self.lookup(key)[0]

    def set(self, key: str, value: Any, *, ttl: int | None = None) -> None:
        self.session.set(key, value, ttl=ttl)
        try:
            self.persistent.set(key, value, ttl=ttl)
        except StorageError as e:
            logger.warning("Persistent cache write failed for %s: %s", key, e)

    def delete(self, key: str) -> None:
        self.session.delete(key)
        try:
            self.persistent.delete(key)
        except StorageError as e:
            logger.warning("Persistent cache delete failed for %s: %s", key, e)

    def invalidate(self, prefix: str) -> int:
        dropped = self.session.invalidate(prefix)
        try:
            dropped += self.persistent.invalidate(prefix)
        except StorageError as e:
            logger.warning("Persistent cache invalidate failed for %s: %s", prefix, e)
        return dropped

    def clear_session_tier(self, *keys: str) -> None:
        """Drop exact keys from the session tier only; persistent copies survive."""
        for key in keys:
            self.session.delete(key)


def init_cache(app: Flask, *, clock: Clock = time.time) -> TieredCache:
    ttl = int(app.config.get("CACHE_TTL_SECONDS") or 3600)
    session_ttl = int(app.config.get("SESSION_CACHE_TTL_SECONDS") or ttl)
    cache = TieredCache(
        session=MemoryCache(default_ttl=session_ttl, clock=clock),
        persistent=StorageCache(storage_from_config(app.config), default_ttl=ttl, clock=clock),
    )
    app.extensions["contacthub_cache"] = cache
    return cache


def get_cache(app: Flask | None = None) -> TieredCache:
    app = app or current_app
    return app.extensions["contacthub_cache"]


# Key helpers
def contacts_key(user_id: int) -> str:
    return f"contacts:{user_id}"


def users_key(user_id: int) -> str:
    return f"users:{user_id}"


def last_sync_key(kind: str, user_id: int) -> str:
    return f"last_sync:{kind}:{user_id}"


def pending_sync_key(user_id: int) -> str:
    return f"pending_contact_sync:{user_id}"
