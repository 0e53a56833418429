"""
In-memory TTL cache for read-side route data.

Leaderboards and route statistics may be served a few seconds stale. Every
write that changes a route's sessions drops that route's entries.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import Config


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class MemoryCache:
    """Thread-safe TTL cache, bounded by entry count (least recently used goes first)"""

    def __init__(self, max_entries: int = 1024):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._stats = {'hits': 0, 'misses': 0, 'sets': 0, 'evictions': 0, 'invalidations': 0}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and time.time() > entry.expires_at:
                del self._entries[key]
                self._stats['evictions'] += 1
                entry = None
            if entry is None:
                self._stats['misses'] += 1
                return None
            self._entries.move_to_end(key)
            self._stats['hits'] += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float = 60) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=time.time() + ttl_seconds)
            self._entries.move_to_end(key)
            self._stats['sets'] += 1
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._stats['evictions'] += 1

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        """Drop every key under ``prefix``; returns how many were removed"""
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
            self._stats['invalidations'] += len(doomed)
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._stats['invalidations'] += len(self._entries)
            self._entries.clear()

    def cleanup_expired(self) -> int:
        with self._lock:
            now = time.time()
            expired = [k for k, e in self._entries.items() if now > e.expires_at]
            for k in expired:
                del self._entries[k]
            self._stats['evictions'] += len(expired)
            return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._stats['hits'] + self._stats['misses']
            return {
                **self._stats,
                'total_requests': lookups,
                'hit_rate_percent': round(self._stats['hits'] / lookups * 100, 2) if lookups else 0,
                'cache_size': len(self._entries),
                'max_entries': self.max_entries,
            }


_cache = MemoryCache()


def get_cache() -> MemoryCache:
    return _cache


def _route_key(route_id: str, *parts: str) -> str:
    return ":".join(("route", route_id) + parts)


def cache_leaderboard(route_id: str, timeframe: str, ranked: list, ttl_seconds: Optional[int] = None) -> None:
    """Cache the full (uncapped) ranking for a route and timeframe"""
    ttl = Config.LEADERBOARD_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
    _cache.set(_route_key(route_id, "leaderboard", timeframe), ranked, ttl)


def get_cached_leaderboard(route_id: str, timeframe: str) -> Optional[list]:
    return _cache.get(_route_key(route_id, "leaderboard", timeframe))


def cache_route_stats(route_id: str, stats: dict, ttl_seconds: Optional[int] = None) -> None:
    ttl = Config.STATS_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
    _cache.set(_route_key(route_id, "stats"), stats, ttl)


def get_cached_route_stats(route_id: str) -> Optional[dict]:
    return _cache.get(_route_key(route_id, "stats"))


def invalidate_route_cache(route_id: str) -> int:
    return _cache.delete_prefix(_route_key(route_id) + ":")
