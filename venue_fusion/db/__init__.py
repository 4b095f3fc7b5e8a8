"""Database initialization and persistence layer."""

from venue_fusion.db.engine import (
    get_database_url,
    get_engine,
    get_session_factory,
    init_db,
    reset_engine,
)
from venue_fusion.db.models import Base, VenueDB
from venue_fusion.db.repositories import VenueRepository, VenueStore

__all__ = [
    # Engine
    "get_database_url",
    "get_engine",
    "get_session_factory",
    "init_db",
    "reset_engine",
    # Models
    "Base",
    "VenueDB",
    # Repositories
    "VenueRepository",
    "VenueStore",
]
