"""
Process-local cache for small reference lookups (email templates by type).

Entries expire after CACHE_TTL_SECONDS so edits made by another worker
become visible without coordination; writers in this process invalidate
their namespace right away.
"""
from __future__ import annotations

import os
import threading
from typing import Any

from cachetools import TTLCache


# Stored in place of "no row" so negative lookups are cached too.
MISSING = object()


def _bounded_env_int(name: str, default: int, lo: int, hi: int) -> int:
    try:
        value = int(os.getenv(name, "") or default)
    except ValueError:
        value = default
    return max(lo, min(hi, value))


def make_cache_key(namespace: str, *parts: Any) -> str:
    ns = str(namespace or "").strip().upper()
    tail = [str(p).strip() for p in parts if str(p or "").strip()]
    return ":".join([ns] + tail)


class _LookupCache:
    def __init__(self, ttl: int, maxsize: int):
        self._entries = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any:
        with self._lock:
            try:
                value = self._entries[key]
            except KeyError:
                self._misses += 1
                return None
            self._hits += 1
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = value

    def drop_prefix(self, prefix: str) -> int:
        if not prefix:
            return 0
        with self._lock:
            stale = [k for k in list(self._entries) if str(k).startswith(prefix)]
            for k in stale:
                self._entries.pop(k, None)
            return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = self._misses = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "maxsize": self._entries.maxsize,
                "ttl_seconds": self._entries.ttl,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / lookups * 100, 2) if lookups else 0.0,
            }


_cache = _LookupCache(
    ttl=_bounded_env_int("CACHE_TTL_SECONDS", 60, 1, 3600),
    maxsize=_bounded_env_int("CACHE_MAX_ITEMS", 1000, 100, 100_000),
)


def cache_get(key: str) -> Any:
    """Cached value, `MISSING` for a cached negative lookup, or None on a miss."""
    return _cache.get(key)


def cache_set(key: str, value: Any) -> None:
    _cache.set(key, value)


def cache_invalidate_prefix(prefix: str) -> int:
    return _cache.drop_prefix(str(prefix or ""))


def cache_clear() -> None:
    _cache.reset()


def cache_stats() -> dict[str, Any]:
    return _cache.stats()
