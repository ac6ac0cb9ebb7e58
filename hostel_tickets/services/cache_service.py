"""
Mapping Cache Service

Caches the active staff-mapping snapshot per (category, hostel block) so
that auto-assignment does not hit the mapping table on every ticket.

Backend:
  - Redis when ``REDIS_URL`` points at a Redis server
  - process-local TTL dict otherwise (``memory://``, dev, tests)

Every mapping write calls ``invalidate_mappings()``; the TTL only bounds
staleness for writes made by another process that bypassed the service.
"""

import json
import logging
import os
import time

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

MAPPING_TTL = 60
KEY_PREFIX = "hostel:mappings:"


class _LocalStore:
    """Process-local stand-in exposing the subset of the Redis API used here."""

    def __init__(self):
        self._entries: dict[str, tuple[str, float]] = {}

    def get(self, key):
        hit = self._entries.get(key)
        if hit is None:
            return None
        raw, deadline = hit
        if time.monotonic() >= deadline:
            del self._entries[key]
            return None
        return raw

    def setex(self, key, ttl_seconds, raw):
        self._entries[key] = (raw, time.monotonic() + ttl_seconds)

    def delete(self, *keys):
        for key in keys:
            self._entries.pop(key, None)

    def scan_iter(self, match):
        prefix = match.rstrip("*")
        return [k for k in list(self._entries) if k.startswith(prefix)]

    def ping(self):
        return True


_store = None


def _redis_url() -> str:
    if has_app_context():
        return current_app.config.get("REDIS_URL") or "memory://"
    return os.getenv("REDIS_URL", "memory://")


def _get_store():
    """Connect lazily; a dead Redis degrades to the local store."""
    global _store
    if _store is not None:
        return _store

    url = _redis_url()
    if url.startswith("memory://"):
        _store = _LocalStore()
        return _store
    try:
        import redis
        client = redis.from_url(url, decode_responses=True)
        client.ping()
        _store = client
        logger.info("Mapping cache on Redis at %s", url.split("@")[-1])
    except Exception as exc:
        logger.warning("Redis unavailable (%s); mapping cache is process-local", exc)
        _store = _LocalStore()
    return _store


def _snapshot_key(category: str, hostel_block: str | None) -> str:
    return f"{KEY_PREFIX}{category}:{hostel_block or '*'}"


def mapping_snapshot(category: str, hostel_block: str | None, loader, ttl: int = MAPPING_TTL):
    """Return the cached snapshot for (category, block), calling *loader* on a miss.

    ``ttl=0`` bypasses the cache.
    """
    if not ttl:
        return loader()

    store = _get_store()
    key = _snapshot_key(category, hostel_block)
    raw = store.get(key)
    if raw is not None:
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable cache entry %s", key)
            store.delete(key)

    rows = loader()
    store.setex(key, ttl, json.dumps(rows))
    return rows


def invalidate_mappings() -> int:
    """Drop every cached snapshot. Returns the number of keys removed."""
    store = _get_store()
    keys = list(store.scan_iter(match=f"{KEY_PREFIX}*"))
    if keys:
        store.delete(*keys)
        logger.debug("Invalidated %d mapping snapshots", len(keys))
    return len(keys)


def clear_all() -> None:
    """Remove all keys owned by this service (tests, admin tooling)."""
    invalidate_mappings()


def health_check() -> dict:
    try:
        store = _get_store()
        store.ping()
    except Exception as exc:
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "backend": "memory" if isinstance(store, _LocalStore) else "redis"}
