"""
Route session state machine: not started -> active -> completed.

"Not started" has no row. A completed session is terminal history and is never
touched again.
"""

from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from . import content, crud, models
from .cache import invalidate_route_cache
from .errors import ConflictError, NotFoundError, StorageError
from .logging_utils import get_logger

logger = get_logger("routequest.lifecycle")

NOT_STARTED = "not_started"
ACTIVE = "active"
COMPLETED = "completed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def session_state(rs) -> str:
    if rs is None:
        return NOT_STARTED
    return COMPLETED if rs.completed else ACTIVE


def start_session(db: Session, player_id: int, route_id: str):
    """Return ``(session, created)``; an existing active session is reused as-is."""
    if content.get_route(db, route_id) is None:
        raise NotFoundError("Route not found", payload={"route_id": route_id})

    existing = crud.get_active_session(db, player_id, route_id)
    if existing is not None:
        return existing, False

    try:
        rs = crud.insert_session(db, player_id, route_id, _utcnow())
        db.commit()
    except IntegrityError:
        # lost a race with a concurrent start; the winner's row is the session
        db.rollback()
        existing = crud.get_active_session(db, player_id, route_id)
        if existing is None:
            raise
        return existing, False
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(
            "session_start_failed",
            extra={"player_id": player_id, "route_id": route_id, "error": type(exc).__name__},
        )
        raise StorageError("Failed to start route session") from exc
    db.refresh(rs)
    invalidate_route_cache(route_id)
    logger.info("session_started", extra={"player_id": player_id, "route_id": route_id, "session_id": rs.id})
    return rs, True


def ensure_active_session(db: Session, player_id: int, route_id: str) -> models.RouteSession:
    """Locked active session for use inside an open transaction.

    A player who never called start gets a session implicitly, staged in the
    caller's transaction.
    """
    rs = crud.get_active_session(db, player_id, route_id, for_update=True)
    if rs is None:
        rs = crud.insert_session(db, player_id, route_id, _utcnow())
        logger.info("session_started_implicitly", extra={"player_id": player_id, "route_id": route_id})
    return rs


def complete_session(db: Session, rs: models.RouteSession) -> models.RouteSession:
    """Active -> Completed. Stages the change; the caller commits."""
    if rs.completed:
        raise ConflictError("Session already completed", reason="session_completed")
    now = _utcnow()
    started = crud.as_utc(rs.started_at)
    rs.completed = True
    rs.completed_at = now
    rs.total_seconds = int((now - started).total_seconds())
    db.add(rs)
    db.flush()
    return rs
