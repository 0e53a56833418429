"""
Database migration ledger for routequest.
Tables come from SQLModel metadata; migrations add indexes the ORM does not
declare and are recorded so each runs once.
"""

from sqlmodel import SQLModel, Field, create_engine, text, Session, select
from typing import Optional
from datetime import datetime, timezone

from .config import Config
from .logging_utils import get_logger

logger = get_logger("routequest.migrations")


class Migration(SQLModel, table=True):
    """Track applied migrations"""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    applied_at: datetime


MIGRATIONS = [
    (
        "001_leaderboard_indexes",
        """
        -- Sessions are ranked per route and filtered by start time
        CREATE INDEX IF NOT EXISTS idx_routesession_route_started ON routesession(route_id, started_at);
        CREATE INDEX IF NOT EXISTS idx_routesession_route_completed ON routesession(route_id, completed)
        """,
    ),
    (
        "002_progress_indexes",
        """
        -- Completion counts per player/route and per checkpoint
        CREATE INDEX IF NOT EXISTS idx_progress_player_route ON progress(player_id, route_id);
        CREATE INDEX IF NOT EXISTS idx_progress_route_checkpoint ON progress(route_id, checkpoint_id)
        """,
    ),
    (
        "003_checkpoint_order",
        """
        CREATE INDEX IF NOT EXISTS idx_checkpoint_route_order ON checkpoint(route_id, order_index)
        """,
    ),
]


def get_engine(url: Optional[str] = None):
    db_url = url or Config.DATABASE_URL
    connect_args = {"check_same_thread": False} if db_url.startswith("sqlite") else {}
    return create_engine(db_url, echo=False, connect_args=connect_args)


def ensure_migration_table(engine):
    Migration.metadata.create_all(engine, tables=[Migration.__table__])


def has_migration_been_applied(engine, migration_name: str) -> bool:
    ensure_migration_table(engine)
    with Session(engine) as session:
        result = session.exec(
            select(Migration).where(Migration.name == migration_name)
        ).first()
        return result is not None


def apply_migration(engine, migration_name: str, migration_sql: str) -> bool:
    """Apply a migration and record it; return False if it was already applied"""
    if has_migration_been_applied(engine, migration_name):
        logger.debug("migration_skipped", extra={"migration": migration_name})
        return False

    with Session(engine) as session:
        try:
            for statement in migration_sql.strip().split(';'):
                # drop comment lines, keep the SQL
                lines = [ln for ln in statement.splitlines() if not ln.strip().startswith('--')]
                statement = "\n".join(lines).strip()
                if statement:
                    session.execute(text(statement))
            session.add(Migration(name=migration_name, applied_at=datetime.now(timezone.utc)))
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error("migration_failed", extra={"migration": migration_name, "error": str(e)})
            raise
    logger.info("migration_applied", extra={"migration": migration_name})
    return True


def run_migrations(engine=None) -> int:
    """Run all pending migrations, return how many were applied"""
    engine = engine or get_engine()
    applied = 0
    for name, sql in MIGRATIONS:
        if apply_migration(engine, name, sql):
            applied += 1
    logger.info("migrations_complete", extra={"migration": applied})
    return applied
