import sys

from sqlmodel import create_engine, SQLModel, Session

from . import content, models  # noqa: F401  (registers tables on the metadata)
from .config import Config
from .logging_utils import get_logger, setup_logging
from .migrations import run_migrations

logger = get_logger("routequest.init_db")


def init_db(path=None, seed_file=None):
    """Create tables, apply migrations and optionally seed route content."""
    path = path or Config.DATABASE_URL
    connect_args = {"check_same_thread": False} if path.startswith("sqlite") else {}
    engine = create_engine(path, connect_args=connect_args)
    SQLModel.metadata.create_all(engine)
    run_migrations(engine)
    logger.info("db_initialized", extra={"database": path})
    if seed_file:
        with Session(engine) as session:
            content.seed_routes(session, content.load_content_file(seed_file))
    return engine


if __name__ == '__main__':
    setup_logging()
    # python -m routequest.init_db [content.json]
    seed = sys.argv[1] if len(sys.argv) > 1 else content.DEFAULT_CONTENT
    init_db(seed_file=seed)
