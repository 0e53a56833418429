"""
Read-only access to route content plus the seeding routine that loads it.

Routes and checkpoints are maintained outside the request path; handlers only
ever read them through the lookups below.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, func, select as sa_select
from sqlmodel import Session, col, select

from . import models
from .logging_utils import get_logger

logger = get_logger("routequest.content")

DEFAULT_CONTENT = Path(__file__).resolve().parent / "data" / "bern_classic.json"


def get_route(session: Session, route_id: str, include_inactive: bool = False) -> Optional[models.Route]:
    route = session.get(models.Route, route_id)
    if route is None or (not route.is_active and not include_inactive):
        return None
    return route


def get_checkpoint(session: Session, route_id: str, checkpoint_id: str) -> Optional[models.Checkpoint]:
    """Return the checkpoint only if it belongs to the given route."""
    cp = session.get(models.Checkpoint, checkpoint_id)
    if cp is None or cp.route_id != route_id:
        return None
    return cp


def list_checkpoints(session: Session, route_id: str) -> List[models.Checkpoint]:
    return list(session.exec(
        select(models.Checkpoint)
        .where(models.Checkpoint.route_id == route_id)
        .order_by(models.Checkpoint.order_index, models.Checkpoint.id)
    ).all())


def count_checkpoints(session: Session, route_id: str) -> int:
    total = session.execute(
        sa_select(func.count(models.Checkpoint.id)).where(models.Checkpoint.route_id == route_id)
    ).scalar()
    return int(total or 0)


def list_routes(session: Session) -> List[Dict[str, Any]]:
    """Active routes with their checkpoint counts, newest first."""
    counts = (
        sa_select(
            col(models.Checkpoint.route_id).label('rid'),
            func.count(models.Checkpoint.id).label('total'),
        )
        .group_by(models.Checkpoint.route_id)
    ).subquery()
    rows = session.execute(
        sa_select(models.Route, func.coalesce(counts.c.total, 0))
        .join(counts, counts.c.rid == models.Route.id, isouter=True)
        .where(models.Route.is_active == True)  # noqa: E712
        .order_by(desc(models.Route.created_at), models.Route.id)
    ).all()
    out = []
    for route, total in rows:
        out.append({**route_payload(route), 'total_checkpoints': int(total)})
    return out


def route_payload(route: models.Route) -> Dict[str, Any]:
    return {
        'id': route.id,
        'name': route.name,
        'description': route.description,
        'difficulty': route.difficulty,
        'estimated_duration': route.estimated_duration,
        'distance': route.distance,
    }


def checkpoint_payload(cp: models.Checkpoint) -> Dict[str, Any]:
    return {
        'id': cp.id,
        'name': cp.name,
        'description': cp.description,
        'coordinates': {'lat': cp.latitude, 'lng': cp.longitude},
        'radius': cp.radius_m,
        'puzzle_type': cp.puzzle_type,
        'reward': reward_payload(cp),
        'order': cp.order_index,
    }


def reward_payload(cp: models.Checkpoint) -> Dict[str, Any]:
    return {'points': cp.reward_points, 'seal': cp.reward_seal, 'text': cp.reward_text}


def _checkpoint_from_doc(route_id: str, doc: Dict[str, Any], position: int) -> models.Checkpoint:
    reward = doc.get('reward') or {}
    return models.Checkpoint(
        id=doc['id'],
        route_id=route_id,
        name=doc['name'],
        description=doc.get('description', ''),
        latitude=float(doc['latitude']),
        longitude=float(doc['longitude']),
        radius_m=float(doc.get('radius', 30)),
        puzzle_type=doc.get('puzzle_type', ''),
        reward_points=int(reward.get('points') or 0),
        reward_seal=reward.get('seal'),
        reward_text=reward.get('text', ''),
        order_index=int(doc.get('order', position)),
    )


def seed_routes(session: Session, document: Dict[str, Any]) -> int:
    """Upsert every route and checkpoint in ``document``; return checkpoint count.

    Expected shape: ``{"routes": [{"id", "name", ..., "checkpoints": [...]}]}``.
    Runs as one transaction.
    """
    seeded = 0
    try:
        for rdoc in document.get('routes', []):
            route = models.Route(
                id=rdoc['id'],
                name=rdoc['name'],
                description=rdoc.get('description', ''),
                difficulty=rdoc.get('difficulty', ''),
                estimated_duration=rdoc.get('estimated_duration', ''),
                distance=rdoc.get('distance', ''),
                is_active=bool(rdoc.get('is_active', True)),
            )
            session.merge(route)
            for position, cdoc in enumerate(rdoc.get('checkpoints', []), start=1):
                session.merge(_checkpoint_from_doc(route.id, cdoc, position))
                seeded += 1
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("content_seed_failed")
        raise
    logger.info("content_seeded", extra={"checkpoints": seeded})
    return seeded


def load_content_file(path=DEFAULT_CONTENT) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)
