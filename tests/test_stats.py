from datetime import timedelta

from sqlmodel import Session

from routequest import completion, leaderboard, lifecycle, models
from routequest.cache import get_cached_route_stats


def _solve(engine, pid, route_id, cp_id, pos):
    with Session(engine) as s:
        return completion.complete_checkpoint(s, pid, route_id, cp_id, pos[0], pos[1], completion.PuzzleVerdict(passed=True))


def _stats(engine, route_id='r1', **kw):
    with Session(engine) as s:
        return leaderboard.route_stats(s, route_id, **kw)


def test_empty_route_stats(engine, make_route):
    make_route('r1', points=(10, 20, 30))
    stats = _stats(engine)
    assert stats['total_players'] == 0
    assert stats['completed_players'] == 0
    assert stats['completion_rate'] == 0.0
    assert stats['avg_completion_time'] is None
    assert stats['best_time'] is None
    assert stats['highest_score'] == 0
    # checkpoints nobody reached still show up, in route order
    assert [c['completion_count'] for c in stats['popular_checkpoints']] == [0, 0, 0]
    assert [c['id'] for c in stats['popular_checkpoints']] == ['r1-cp1', 'r1-cp2', 'r1-cp3']


def test_stats_aggregate_sessions_and_progress(engine, make_route, make_player, checkpoint_position, monkeypatch):
    a, b = make_route('r1', points=(40, 60))
    finisher = make_player('finisher')
    walker = make_player('walker')
    pos = {cp: checkpoint_position(cp) for cp in (a, b)}

    base = models.utcnow()
    clock = [base]
    monkeypatch.setattr(lifecycle, '_utcnow', lambda: clock[0])
    _solve(engine, finisher, 'r1', a, pos[a])
    clock[0] = base + timedelta(seconds=125)
    _solve(engine, finisher, 'r1', b, pos[b])
    _solve(engine, walker, 'r1', a, pos[a])

    stats = _stats(engine)
    assert stats['total_players'] == 2
    assert stats['completed_players'] == 1
    assert stats['completion_rate'] == 50.0
    assert stats['best_seconds'] == 125
    assert stats['best_time'] == '2m 5s'
    assert stats['avg_completion_seconds'] == 125.0
    assert stats['highest_score'] == 100
    assert stats['average_score'] == 70
    popular = stats['popular_checkpoints']
    assert popular[0] == {'id': a, 'name': 'Checkpoint 1', 'completion_count': 2}
    assert popular[1]['completion_count'] == 1


def test_popular_checkpoints_respects_top_n(engine, make_route):
    make_route('r1', points=(1, 2, 3, 4))
    assert len(_stats(engine, top_n=2)['popular_checkpoints']) == 2


def test_stats_cached_then_invalidated_by_completion(engine, make_route, make_player, checkpoint_position):
    a, _ = make_route('r1')
    first = _stats(engine)
    assert get_cached_route_stats('r1') == first

    pid = make_player('p')
    _solve(engine, pid, 'r1', a, checkpoint_position(a))
    assert get_cached_route_stats('r1') is None
    assert _stats(engine)['total_players'] == 1
