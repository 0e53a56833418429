"""
Read-side ranking and statistics for a route.

Nothing here writes. Rankings are recomputed from sessions and progress rows
(or served from the short-lived cache) on every read.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import case, desc, func, select as sa_select
from sqlmodel import Session, col

from . import crud, models
from .cache import cache_leaderboard, cache_route_stats, get_cached_leaderboard, get_cached_route_stats
from .config import Config

TIMEFRAMES = {
    'all': None,
    'week': timedelta(days=7),
    'month': timedelta(days=30),
}


@dataclass
class LeaderboardEntry:
    rank: int
    player_id: int
    username: str
    total_points: int
    total_time: Optional[int]
    formatted_time: Optional[str]
    is_completed: bool
    completed_at: Optional[str]
    started_at: Optional[str]
    checkpoints_completed: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LeaderboardResult:
    entries: List[LeaderboardEntry]
    total_entries: int
    timeframe: str
    caller_rank: Optional[int] = None


def format_time(seconds) -> str:
    """Render a duration in seconds as e.g. '1h 2m 3s', '2m 3s' or '3s'."""
    seconds = int(seconds)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def normalize_timeframe(value: Optional[str]) -> str:
    value = (value or 'all').strip().lower()
    return value if value in TIMEFRAMES else 'all'


def _window_start(timeframe: str, now: Optional[datetime] = None) -> Optional[datetime]:
    span = TIMEFRAMES[timeframe]
    if span is None:
        return None
    return (now or datetime.now(timezone.utc)) - span


def sort_key(rs: models.RouteSession):
    """completed first, then points desc, then time asc (missing last), then earliest start."""
    return (
        0 if rs.completed else 1,
        -int(rs.points or 0),
        (1, 0) if rs.total_seconds is None else (0, rs.total_seconds),
        crud.as_utc(rs.started_at),
        rs.id or 0,
    )


def _ranked_rows(db: Session, route_id: str, timeframe: str) -> List[LeaderboardEntry]:
    rows = crud.sessions_for_route(db, route_id, since=_window_start(timeframe))
    counts = crud.progress_counts_for_route(db, route_id)

    best: Dict[int, Any] = {}
    for rs, username in rows:
        current = best.get(rs.player_id)
        if current is None or sort_key(rs) < sort_key(current[0]):
            best[rs.player_id] = (rs, username)

    ordered = sorted(best.values(), key=lambda pair: sort_key(pair[0]))
    entries = []
    for position, (rs, username) in enumerate(ordered, start=1):
        completed_at = crud.as_utc(rs.completed_at)
        entries.append(LeaderboardEntry(
            rank=position,
            player_id=rs.player_id,
            username=username,
            total_points=int(rs.points or 0),
            total_time=rs.total_seconds,
            formatted_time=format_time(rs.total_seconds) if rs.total_seconds is not None else None,
            is_completed=bool(rs.completed),
            completed_at=completed_at.isoformat() if completed_at else None,
            started_at=crud.as_utc(rs.started_at).isoformat(),
            checkpoints_completed=counts.get(rs.player_id, 0),
        ))
    return entries


def rank(
    db: Session,
    route_id: str,
    timeframe: Optional[str] = 'all',
    limit: Optional[int] = None,
    caller_id: Optional[int] = None,
    use_cache: bool = True,
) -> LeaderboardResult:
    """Rank every player who started the route inside the timeframe window.

    One entry per player: their best session under the four-level ordering.
    ``limit`` caps the returned entries (default LEADERBOARD_MAX_ENTRIES);
    ``total_entries`` and ``caller_rank`` are computed before the cap.
    ``checkpoints_completed`` counts all of the player's Progress rows on the
    route, whatever session they belong to and ignoring the timeframe window
    (a checkpoint is completed at most once per player and route).
    """
    timeframe = normalize_timeframe(timeframe)
    limit = Config.LEADERBOARD_MAX_ENTRIES if limit is None else limit

    entries = get_cached_leaderboard(route_id, timeframe) if use_cache else None
    if entries is None:
        entries = _ranked_rows(db, route_id, timeframe)
        if use_cache:
            cache_leaderboard(route_id, timeframe, entries)

    caller_rank = None
    if caller_id is not None:
        for entry in entries:
            if entry.player_id == caller_id:
                caller_rank = entry.rank
                break

    return LeaderboardResult(
        entries=entries[:max(0, limit)],
        total_entries=len(entries),
        timeframe=timeframe,
        caller_rank=caller_rank,
    )


def popular_checkpoints(db: Session, route_id: str, top_n: int) -> List[Dict[str, Any]]:
    completions = func.count(models.Progress.id)
    rows = db.execute(
        sa_select(models.Checkpoint.id, models.Checkpoint.name, completions.label('completion_count'))
        .join(
            models.Progress,
            (col(models.Progress.checkpoint_id) == col(models.Checkpoint.id))
            & (col(models.Progress.route_id) == col(models.Checkpoint.route_id)),
            isouter=True,
        )
        .where(models.Checkpoint.route_id == route_id)
        .group_by(models.Checkpoint.id, models.Checkpoint.name, models.Checkpoint.order_index)
        .order_by(desc('completion_count'), models.Checkpoint.order_index, models.Checkpoint.id)
        .limit(top_n)
    ).all()
    return [{'id': cid, 'name': name, 'completion_count': int(n)} for cid, name, n in rows]


def route_stats(db: Session, route_id: str, top_n: Optional[int] = None, use_cache: bool = True) -> Dict[str, Any]:
    """Aggregate statistics over every session of a route."""
    if use_cache:
        cached = get_cached_route_stats(route_id)
        if cached is not None:
            return cached

    rs = models.RouteSession
    done = col(rs.completed) == True  # noqa: E712
    row = db.execute(
        sa_select(
            func.count(func.distinct(rs.player_id)),
            func.count(func.distinct(case((done, rs.player_id)))),
            func.avg(case((done, rs.total_seconds))),
            func.min(case((done, rs.total_seconds))),
            func.max(rs.points),
            func.avg(rs.points),
        ).where(rs.route_id == route_id)
    ).one()
    total_players, completed_players, avg_time, best_time, highest, average = row
    total_players = int(total_players or 0)
    completed_players = int(completed_players or 0)

    stats = {
        'route_id': route_id,
        'total_players': total_players,
        'completed_players': completed_players,
        'completion_rate': round(completed_players / total_players * 100, 1) if total_players else 0.0,
        'avg_completion_seconds': float(avg_time) if avg_time is not None else None,
        'avg_completion_time': format_time(avg_time) if avg_time is not None else None,
        'best_seconds': int(best_time) if best_time is not None else None,
        'best_time': format_time(best_time) if best_time is not None else None,
        'highest_score': int(highest or 0),
        'average_score': int(round(float(average))) if average is not None else 0,
        'popular_checkpoints': popular_checkpoints(db, route_id, top_n or Config.POPULAR_CHECKPOINTS),
    }
    if use_cache:
        cache_route_stats(route_id, stats)
    return stats
