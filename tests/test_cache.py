import time

from routequest import cache as cache_mod
from routequest.cache import (
    MemoryCache,
    cache_leaderboard,
    cache_route_stats,
    get_cache,
    get_cached_leaderboard,
    get_cached_route_stats,
    invalidate_route_cache,
)


def test_memory_cache_set_get_and_expire(monkeypatch):
    c = MemoryCache()
    now = [1000.0]
    monkeypatch.setattr(cache_mod.time, 'time', lambda: now[0])
    c.set('k', 'v', ttl_seconds=5)
    assert c.get('k') == 'v'
    now[0] += 6
    assert c.get('k') is None
    stats = c.get_stats()
    assert stats['hits'] == 1 and stats['misses'] == 1 and stats['evictions'] == 1
    assert stats['hit_rate_percent'] == 50.0


def test_cleanup_expired_and_delete():
    c = MemoryCache()
    c.set('gone', 1, ttl_seconds=-1)
    c.set('kept', 2, ttl_seconds=60)
    assert c.cleanup_expired() == 1
    assert c.delete('kept') is True
    assert c.delete('kept') is False
    assert c.get_stats()['cache_size'] == 0


def test_delete_prefix_only_touches_matching_keys():
    c = MemoryCache()
    c.set('route:a:leaderboard:all', 1)
    c.set('route:a:stats', 2)
    c.set('route:ab:stats', 3)
    assert c.delete_prefix('route:a:') == 2
    assert c.get('route:ab:stats') == 3


def test_bounded_size_drops_least_recently_used():
    c = MemoryCache(max_entries=2)
    c.set('a', 1)
    c.set('b', 2)
    assert c.get('a') == 1
    c.set('c', 3)
    assert c.get('b') is None
    assert c.get('a') == 1 and c.get('c') == 3
    assert c.get_stats()['cache_size'] == 2


def test_route_helpers_and_invalidation():
    ranked = [{'rank': 1, 'player_id': 7}]
    cache_leaderboard('bern', 'week', ranked)
    cache_route_stats('bern', {'total_players': 1})
    cache_route_stats('zurich', {'total_players': 4})
    assert get_cached_leaderboard('bern', 'week') == ranked
    assert get_cached_leaderboard('bern', 'all') is None

    invalidate_route_cache('bern')
    assert get_cached_leaderboard('bern', 'week') is None
    assert get_cached_route_stats('bern') is None
    assert get_cached_route_stats('zurich') == {'total_players': 4}


def test_helper_ttl_override():
    cache_route_stats('short', {'x': 1}, ttl_seconds=0)
    time.sleep(0.01)
    assert get_cached_route_stats('short') is None
    assert get_cache().get_stats()['evictions'] >= 1
