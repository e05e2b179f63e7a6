"""Database engine, session factory and schema checks"""

from pathlib import Path
from typing import Any, Dict, Generator, Optional
import logging

from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from gearmarket.config import settings

logger = logging.getLogger(__name__)

ALEMBIC_DIR = Path(__file__).resolve().parents[2] / "alembic"


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # Sessions are handed across FastAPI's threadpool.
        return {"connect_args": {"check_same_thread": False}, "echo": settings.DEBUG}
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_timeout": 30,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
        "echo": settings.DEBUG,
    }


DATABASE_URL = settings.get_database_url()
engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Import models after Base is defined so metadata is populated.
from gearmarket import models  # noqa: E402,F401


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session

    Yields:
        Session: Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _head_revision() -> Optional[str]:
    if not (ALEMBIC_DIR / "versions").is_dir():
        return None
    return ScriptDirectory(str(ALEMBIC_DIR)).get_current_head()


def init_db() -> None:
    """
    Check or create the schema according to DB_INIT_MODE.

      - migrate: the database must carry an Alembic revision; a revision
        behind head is logged, a missing one is fatal when DB_REQUIRE_HEAD
      - create_all: build tables from model metadata (local development)
      - off: do nothing
    """
    mode = settings.DB_INIT_MODE.lower().strip()
    if mode == "off":
        logger.info("DB initialization check skipped (DB_INIT_MODE=off)")
        return

    if mode == "create_all":
        Base.metadata.create_all(bind=engine)
        logger.warning("Tables created from model metadata; use Alembic migrations outside local development.")
        return

    if mode != "migrate":
        raise RuntimeError(f"Unknown DB_INIT_MODE: {settings.DB_INIT_MODE}")

    with engine.connect() as conn:
        current = MigrationContext.configure(conn).get_current_revision()

    if current is None:
        if settings.DB_REQUIRE_HEAD:
            raise RuntimeError("Database has no Alembic revision. Run `alembic upgrade head` before starting the API.")
        logger.warning("Database has no Alembic revision; continuing because DB_REQUIRE_HEAD is off")
        return

    head = _head_revision()
    if head is not None and current != head:
        logger.warning("Database revision %s is behind migration head %s", current, head)
    else:
        logger.info("Database schema at revision %s", current)
