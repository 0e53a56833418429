from typing import Optional
from sqlmodel import SQLModel, Field
from sqlalchemy import Index, UniqueConstraint, text
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Player(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    created_at: Optional[datetime] = Field(default_factory=utcnow)


class Route(SQLModel, table=True):
    id: str = Field(primary_key=True)
    name: str
    description: str = ""
    difficulty: str = ""
    estimated_duration: str = ""
    distance: str = ""
    is_active: bool = True
    created_at: Optional[datetime] = Field(default_factory=utcnow)


class Checkpoint(SQLModel, table=True):
    id: str = Field(primary_key=True)
    route_id: str = Field(foreign_key="route.id", index=True)
    name: str
    description: str = ""
    latitude: float
    longitude: float
    radius_m: float = 30
    puzzle_type: str = ""
    reward_points: int = 0
    reward_seal: Optional[str] = None  # opaque seal token handed to the client
    reward_text: str = ""
    order_index: int = 0


class RouteSession(SQLModel, table=True):
    """One player's attempt at one route."""
    # at most one unfinished session per (player, route)
    __table_args__ = (
        Index(
            "uq_routesession_active",
            "player_id",
            "route_id",
            unique=True,
            sqlite_where=text("completed = 0"),
            postgresql_where=text("completed = false"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    player_id: int = Field(foreign_key="player.id", index=True)
    route_id: str = Field(foreign_key="route.id", index=True)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    points: int = 0
    completed: bool = False
    total_seconds: Optional[int] = None


class Progress(SQLModel, table=True):
    """A checkpoint completion. Written once, never updated."""
    __table_args__ = (
        UniqueConstraint("player_id", "route_id", "checkpoint_id", name="uq_progress_player_route_checkpoint"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    player_id: int = Field(foreign_key="player.id")
    route_id: str = Field(foreign_key="route.id")
    checkpoint_id: str = Field(foreign_key="checkpoint.id")
    session_id: int = Field(foreign_key="routesession.id", index=True)
    completed_at: datetime = Field(default_factory=utcnow)
    points: int = 0
    verdict_json: str = "{}"
