"""
Synchronous Database Access for the Slidecast Worker

RQ tasks are synchronous, so the worker talks to the database through a
plain SQLAlchemy engine and short-lived sessions.
"""

import os
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

DEFAULT_DATABASE_URL = "sqlite:////data/db/slidecast.db"

_engine: Optional[Engine] = None
_SessionLocal = None


def get_database_url() -> str:
    """
    DATABASE_URL with async driver names swapped for their sync drivers.

    The web app shares the same variable and may use an async driver.
    """
    url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
    for async_prefix, sync_prefix in (
        ("sqlite+aiosqlite://", "sqlite://"),
        ("postgresql+asyncpg://", "postgresql+psycopg://"),
    ):
        if url.startswith(async_prefix):
            return sync_prefix + url[len(async_prefix):]
    return url


def engine_options(url: str) -> Dict[str, Any]:
    """create_engine keyword arguments for a database URL."""
    options: Dict[str, Any] = {
        "echo": os.environ.get("SQL_ECHO", "false").lower() == "true",
    }
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_pre_ping"] = True
    return options


def get_engine() -> Engine:
    """Get or create the sync database engine."""
    global _engine
    if _engine is None:
        url = get_database_url()
        _engine = create_engine(url, **engine_options(url))
    return _engine


def configure_engine(engine: Engine) -> None:
    """Point the worker at an explicit engine (CLI, tests)."""
    global _engine, _SessionLocal
    _engine = engine
    _SessionLocal = None


def get_session_factory():
    """Get or create the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autocommit=False, autoflush=False)
    return _SessionLocal


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager that provides a database session.

    Usage:
        with get_db_session() as db:
            video = db.get(Video, video_id)
            set_render_status(video, RENDER_RENDERING)
            db.commit()
    """
    session = get_session_factory()()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
