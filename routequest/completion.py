"""
Checkpoint completion.

One request runs: route/checkpoint lookup, geofence check, duplicate check,
then a single transaction that records progress, bumps the session total and
possibly completes the session. The transaction runs under the per-session lock
and is retried on transient storage failures.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from . import content, crud, geofence, lifecycle, models
from .cache import invalidate_route_cache
from .config import Config
from .errors import ConflictError, NotFoundError, OutOfRangeError, StorageError, ValidationError
from .locks import SessionLocks, get_session_locks
from .logging_utils import get_logger

logger = get_logger("routequest.completion")


@dataclass
class PuzzleVerdict:
    """Outcome of a puzzle mini-game. Opaque here beyond ``passed``."""
    passed: bool
    points: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps({"passed": self.passed, "points": self.points, "payload": self.payload})


@dataclass
class CompletionResult:
    progress: models.Progress
    reward: Dict[str, Any]
    route_completed: bool
    session: models.RouteSession
    completed_count: int
    total_checkpoints: int


def _check_preconditions(db: Session, player_id: int, route_id: str, checkpoint_id: str,
                         latitude: float, longitude: float) -> models.Checkpoint:
    if content.get_route(db, route_id) is None:
        raise NotFoundError("Route not found", payload={"route_id": route_id})
    checkpoint = content.get_checkpoint(db, route_id, checkpoint_id)
    if checkpoint is None:
        raise NotFoundError("Checkpoint not found", payload={"route_id": route_id, "checkpoint_id": checkpoint_id})

    within = geofence.is_within_geofence(
        latitude, longitude,
        checkpoint.latitude, checkpoint.longitude,
        checkpoint.radius_m,
        tolerance_m=Config.GEOFENCE_TOLERANCE_M,
    )
    if not within:
        distance = geofence.distance_m(latitude, longitude, checkpoint.latitude, checkpoint.longitude)
        logger.info(
            "geofence_rejected",
            extra={"player_id": player_id, "checkpoint_id": checkpoint_id, "distance_m": round(distance, 1)},
        )
        raise OutOfRangeError(checkpoint.name, checkpoint.radius_m, distance)

    if crud.get_progress_record(db, player_id, route_id, checkpoint_id) is not None:
        raise ConflictError("Checkpoint already completed", reason="already_completed")
    return checkpoint


def _complete_once(db: Session, player_id: int, route_id: str, checkpoint_id: str,
                   latitude: float, longitude: float, verdict: PuzzleVerdict) -> CompletionResult:
    checkpoint = _check_preconditions(db, player_id, route_id, checkpoint_id, latitude, longitude)
    try:
        rs = lifecycle.ensure_active_session(db, player_id, route_id)
        record = crud.insert_progress(db, rs, checkpoint, verdict.to_json(), models.utcnow())
        crud.add_session_points(db, rs, checkpoint.reward_points)
        completed_count = crud.count_completed(db, player_id, route_id)
        total = content.count_checkpoints(db, route_id)
        route_completed = completed_count == total
        if route_completed:
            lifecycle.complete_session(db, rs)
        db.commit()
    except IntegrityError:
        db.rollback()
        if crud.get_progress_record(db, player_id, route_id, checkpoint_id) is not None:
            raise ConflictError("Checkpoint already completed", reason="already_completed")
        raise
    except Exception:
        db.rollback()
        raise
    db.refresh(record)
    db.refresh(rs)
    return CompletionResult(
        progress=record,
        reward=content.reward_payload(checkpoint),
        route_completed=route_completed,
        session=rs,
        completed_count=completed_count,
        total_checkpoints=total,
    )


def complete_checkpoint(
    db: Session,
    player_id: int,
    route_id: str,
    checkpoint_id: str,
    latitude: float,
    longitude: float,
    verdict: PuzzleVerdict,
    locks: Optional[SessionLocks] = None,
) -> CompletionResult:
    """Record a checkpoint completion for a player.

    Raises NotFoundError, OutOfRangeError or ConflictError for client-side
    problems (never retried) and StorageError once retries are exhausted.
    """
    geofence.validate_coordinates(latitude, longitude)
    if not verdict.passed:
        raise ValidationError("Puzzle not solved", payload={"checkpoint_id": checkpoint_id})

    locks = locks or get_session_locks()
    attempts = max(1, Config.COMPLETION_MAX_RETRIES)
    for attempt in range(attempts):
        try:
            with locks.hold((player_id, route_id)):
                result = _complete_once(db, player_id, route_id, checkpoint_id, latitude, longitude, verdict)
            break
        except SQLAlchemyError as exc:
            db.rollback()
            if attempt + 1 >= attempts:
                logger.error(
                    "completion_storage_failed",
                    extra={"player_id": player_id, "route_id": route_id, "checkpoint_id": checkpoint_id,
                           "attempt": attempt + 1, "error": type(exc).__name__},
                )
                raise StorageError("Failed to record checkpoint completion") from exc
            logger.warning(
                "completion_retry",
                extra={"player_id": player_id, "route_id": route_id, "attempt": attempt + 1,
                       "error": type(exc).__name__},
            )
            time.sleep(Config.COMPLETION_RETRY_BASE_DELAY * (2 ** attempt))

    invalidate_route_cache(route_id)
    logger.info(
        "checkpoint_completed",
        extra={
            "player_id": player_id,
            "route_id": route_id,
            "checkpoint_id": checkpoint_id,
            "session_id": result.session.id,
            "points": result.progress.points,
            "route_completed": result.route_completed,
        },
    )
    return result
