"""
Database Engine
===============

Resolves where venue records live and hands out sessions bound to a
process-wide engine. Asking for a different database file swaps the
engine out instead of silently writing to the first one opened.
"""

import logging
import os
from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("~/.venue_fusion/venues.db")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def get_database_url(db_path: Path | str | None = None) -> str:
    """
    Resolve the SQLAlchemy URL for the venue database.

    An explicit path wins, then DATABASE_URL (a full URL is used as is,
    anything else is treated as a file path), then the default SQLite
    file under the user's home. Parent directories of SQLite files are
    created.
    """
    if db_path is None:
        configured = os.environ.get("DATABASE_URL", "")
        if "://" in configured:
            return configured
        db_path = configured or DEFAULT_DB_PATH

    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def get_engine(db_path: Path | str | None = None) -> Engine:
    """
    Return the shared engine.

    Without a path the current engine is reused. A path that resolves to
    a different URL replaces it.
    """
    global _engine, _session_factory
    if _engine is not None and db_path is None:
        return _engine
    url = get_database_url(db_path)
    if _engine is not None and _engine.url.render_as_string(hide_password=False) == url:
        return _engine

    if _engine is not None:
        logger.info(f"Switching database from {_engine.url} to {url}")
        _engine.dispose()
        _session_factory = None
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    _engine = create_engine(url, connect_args=connect_args)
    return _engine


def get_session_factory(db_path: Path | str | None = None) -> sessionmaker[Session]:
    """Session factory bound to the shared engine."""
    global _session_factory
    engine = get_engine(db_path)
    if _session_factory is None:
        _session_factory = sessionmaker(bind=engine, autoflush=False)
    return _session_factory


def reset_engine() -> None:
    """Dispose the shared engine and forget the session factory."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def init_db(db_path: Path | str | None = None) -> str:
    """
    Create the venue tables if they do not exist.

    Returns:
        The database URL that was initialized
    """
    from venue_fusion.db.models import Base

    engine = get_engine(db_path)
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database ready at {engine.url}")
    return str(engine.url)
