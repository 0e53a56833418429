from sqlmodel import Session, select as sqlmodel_select, col
from sqlalchemy import func, select as sa_select, desc, update
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
from . import models
from .config import Config
import hmac
import hashlib

engine = None


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; they were written as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# -- identity boundary -------------------------------------------------------

def sign_player_token(db_session: Session, pid: int) -> Optional[str]:
    """Sign a player id into a bearer token.

    Token issuance belongs to the identity service; this mirrors its format so
    local tooling and tests can mint tokens the verifier accepts.
    """
    if pid is None:
        return None
    if db_session.get(models.Player, pid) is None:
        return None
    val = str(pid)
    sig = hmac.new(Config.SESSION_SECRET.encode(), val.encode(), hashlib.sha256).hexdigest()
    return f"{val}.{sig}"


def verify_player_token(db_session: Session, token: str) -> Optional[int]:
    try:
        pid_s, sig = token.rsplit('.', 1)
    except (AttributeError, ValueError):
        return None
    expected = hmac.new(Config.SESSION_SECRET.encode(), pid_s.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, sig):
        return None
    try:
        pid = int(pid_s)
    except ValueError:
        return None
    if db_session.get(models.Player, pid) is None:
        return None
    return pid


def get_player(session: Session, player_id: int) -> Optional[models.Player]:
    return session.get(models.Player, player_id)


# -- sessions ----------------------------------------------------------------

def get_active_session(session: Session, player_id: int, route_id: str, for_update: bool = False):
    """Return the unfinished session for this player/route, if any.

    With ``for_update`` the row is locked until the surrounding transaction ends
    (ignored by SQLite, which serializes writers on its own).
    """
    stmt = (
        sqlmodel_select(models.RouteSession)
        .where(models.RouteSession.player_id == player_id)
        .where(models.RouteSession.route_id == route_id)
        .where(models.RouteSession.completed == False)  # noqa: E712
    )
    if for_update:
        stmt = stmt.with_for_update()
    return session.exec(stmt).first()


def get_latest_session(session: Session, player_id: int, route_id: str):
    return session.exec(
        sqlmodel_select(models.RouteSession)
        .where(models.RouteSession.player_id == player_id)
        .where(models.RouteSession.route_id == route_id)
        .order_by(desc(models.RouteSession.started_at), desc(models.RouteSession.id))
    ).first()


def insert_session(session: Session, player_id: int, route_id: str, started_at: datetime) -> models.RouteSession:
    """Stage a new active session; flushes so the partial unique index is checked now."""
    rs = models.RouteSession(player_id=player_id, route_id=route_id, started_at=started_at)
    session.add(rs)
    session.flush()
    return rs


def add_session_points(session: Session, rs: models.RouteSession, points: int) -> None:
    """Increment accumulated points in a single UPDATE, then reload the row."""
    session.execute(
        update(models.RouteSession)
        .where(col(models.RouteSession.id) == rs.id)
        .values(points=models.RouteSession.points + points)
        .execution_options(synchronize_session=False)
    )
    session.refresh(rs)


# -- progress ----------------------------------------------------------------

def get_progress_record(session: Session, player_id: int, route_id: str, checkpoint_id: str):
    return session.exec(
        sqlmodel_select(models.Progress)
        .where(models.Progress.player_id == player_id)
        .where(models.Progress.route_id == route_id)
        .where(models.Progress.checkpoint_id == checkpoint_id)
    ).first()


def insert_progress(
    session: Session,
    rs: models.RouteSession,
    checkpoint: models.Checkpoint,
    verdict_json: str,
    completed_at: datetime,
) -> models.Progress:
    """Stage a progress row. The flush raises IntegrityError on a duplicate."""
    rec = models.Progress(
        player_id=rs.player_id,
        route_id=rs.route_id,
        checkpoint_id=checkpoint.id,
        session_id=rs.id,
        completed_at=completed_at,
        points=checkpoint.reward_points,
        verdict_json=verdict_json,
    )
    session.add(rec)
    session.flush()
    return rec


def count_completed(session: Session, player_id: int, route_id: str) -> int:
    total = session.execute(
        sa_select(func.count(models.Progress.id))
        .where(models.Progress.player_id == player_id)
        .where(models.Progress.route_id == route_id)
    ).scalar()
    return int(total or 0)


def list_progress(session: Session, player_id: int, route_id: str) -> List[Tuple[models.Progress, models.Checkpoint]]:
    """Completed checkpoints for a player/route in route order."""
    rows = session.exec(
        sqlmodel_select(models.Progress, models.Checkpoint)
        .join(models.Checkpoint, col(models.Checkpoint.id) == col(models.Progress.checkpoint_id))
        .where(models.Progress.player_id == player_id)
        .where(models.Progress.route_id == route_id)
        .order_by(models.Checkpoint.order_index)
    ).all()
    return list(rows)


def session_points_total(session: Session, session_id: int) -> int:
    total = session.execute(
        sa_select(func.coalesce(func.sum(models.Progress.points), 0))
        .where(models.Progress.session_id == session_id)
    ).scalar()
    return int(total or 0)


# -- read side ---------------------------------------------------------------

def sessions_for_route(session: Session, route_id: str, since: Optional[datetime] = None):
    """Return (RouteSession, username) rows for a route, optionally by start time."""
    stmt = (
        sa_select(models.RouteSession, models.Player.username)
        .join(models.Player, col(models.Player.id) == col(models.RouteSession.player_id))
        .where(models.RouteSession.route_id == route_id)
    )
    if since is not None:
        stmt = stmt.where(col(models.RouteSession.started_at) >= since)
    return session.execute(stmt).all()


def progress_counts_for_route(session: Session, route_id: str) -> Dict[int, int]:
    """Map player_id -> number of checkpoints completed on the route."""
    rows = session.execute(
        sa_select(models.Progress.player_id, func.count(models.Progress.id))
        .where(models.Progress.route_id == route_id)
        .group_by(models.Progress.player_id)
    ).all()
    return {int(pid): int(n) for pid, n in rows}
