"""
SQLAlchemy session management.

Sessions are bound lazily: importing this module never creates an engine.
"""

from collections.abc import Generator

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from db.engine import get_engine


def make_session_factory(engine: Engine | None = None) -> sessionmaker:
    """
    Create a session factory bound to ``engine`` (or the process engine).

    Returns:
        sessionmaker: Factory producing non-autoflushing sessions
    """
    return sessionmaker(bind=engine or get_engine(), autoflush=False, expire_on_commit=False)


def get_db(engine: Engine | None = None) -> Generator[Session, None, None]:
    """
    Yield a session and close it afterwards.

    Usage:
        db = next(get_db())
        try:
            ...
            db.commit()
        finally:
            db.close()
    """
    db = make_session_factory(engine)()
    try:
        yield db
    finally:
        db.close()
