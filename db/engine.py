"""
SQLAlchemy engine configuration for the reconciliation store.
Supports PostgreSQL and SQLite via the DATABASE_URL environment variable.
"""

from sqlalchemy import Engine, create_engine

from config.config import Config
from utils.logger import get_logger

logger = get_logger(__name__)


def create_db_engine(database_url: str | None = None) -> Engine:
    """
    Create a SQLAlchemy engine.

    Pool sizing (DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_POOL_TIMEOUT) is applied to
    server databases only; SQLite keeps SQLAlchemy's default pool and is opened
    with ``check_same_thread=False`` because store calls run on worker threads.

    Args:
        database_url: Overrides DATABASE_URL when given

    Returns:
        Engine: Configured SQLAlchemy engine
    """
    config = Config()
    url = database_url or config.DATABASE_URL
    is_sqlite = url.startswith("sqlite")

    logger.info(
        "Creating database engine",
        extra={
            "extra_fields": {
                "dialect": url.split(":", 1)[0],
                "pool_size": None if is_sqlite else config.DB_POOL_SIZE,
                "max_overflow": None if is_sqlite else config.DB_MAX_OVERFLOW,
            }
        },
    )

    if is_sqlite:
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_timeout=config.DB_POOL_TIMEOUT,
        echo=False,
    )


# Lazy engine singleton
_ENGINE: Engine | None = None


def get_engine() -> Engine:
    """
    Get or create the process-wide engine (created on first call, not at import).
    """
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = create_db_engine()
    return _ENGINE
