"""Repository classes for database operations."""

from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from venue_fusion.core.schema import FACILITY_FLAGS, SOURCE_PREFIX, MergedRecord
from venue_fusion.db.engine import get_session_factory
from venue_fusion.db.models import VenueDB

VENUE_COLUMNS: tuple[str, ...] = (
    "name",
    "address",
    "phone",
    "latitude",
    "longitude",
    *FACILITY_FLAGS,
    "open_hour",
    "close_hour",
    "price",
    "rating",
    "review_count",
    "facilities",
    "source",
    "confidence",
    "data_quality",
)


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on read
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class VenueRepository:
    """Repository for fused venue records."""

    def __init__(self, session: Session):
        self.session = session

    def find_by_name(self, name: str) -> MergedRecord | None:
        """
        Look up a venue by exact name.

        Args:
            name: Venue name

        Returns:
            The MergedRecord if found, None otherwise.
        """
        db_venue = self._get_db(name)
        return self._to_domain(db_venue) if db_venue else None

    def upsert(self, record: MergedRecord, lookup_name: str | None = None) -> MergedRecord:
        """
        Insert a venue or update the existing row with the same name.

        Args:
            record: The fused record
            lookup_name: Name to match an existing row by; defaults to
                record.name (a fusion run may refine the venue's name)

        Returns:
            The stored record with database timestamps.
        """
        db_venue = self._get_db(lookup_name or record.name)
        if db_venue is None and lookup_name and lookup_name != record.name:
            db_venue = self._get_db(record.name)

        if db_venue is None:
            db_venue = VenueDB(created_at=record.created_at)
            self.session.add(db_venue)

        for column in VENUE_COLUMNS:
            setattr(db_venue, column, getattr(record, column))
        db_venue.updated_at = _utc_now()

        self.session.flush()
        return self._to_domain(db_venue)

    def list_all(self) -> list[MergedRecord]:
        """List all venues ordered by name."""
        stmt = select(VenueDB).order_by(VenueDB.name)
        return [self._to_domain(v) for v in self.session.execute(stmt).scalars().all()]

    def list_names(self) -> list[str]:
        """Names of all stored venues, in name order."""
        stmt = select(VenueDB.name).order_by(VenueDB.name)
        return list(self.session.execute(stmt).scalars().all())

    def list_update_times(self) -> list[datetime]:
        """Last update time of every venue."""
        stmt = select(VenueDB.updated_at)
        return [_aware(t) for t in self.session.execute(stmt).scalars().all()]

    def count(self) -> int:
        """Number of stored venues."""
        return self.session.execute(select(func.count()).select_from(VenueDB)).scalar_one()

    def delete(self, name: str) -> bool:
        """Delete a venue by name. Returns True if a row was removed."""
        db_venue = self._get_db(name)
        if db_venue is None:
            return False
        self.session.delete(db_venue)
        self.session.flush()
        return True

    def _get_db(self, name: str) -> VenueDB | None:
        stmt = select(VenueDB).where(VenueDB.name == name).limit(1)
        return self.session.execute(stmt).scalar_one_or_none()

    def _to_domain(self, db_venue: VenueDB) -> MergedRecord:
        """Convert a database row to a MergedRecord."""
        data = {column: getattr(db_venue, column) for column in VENUE_COLUMNS}
        source = data["source"] or ""
        sources = source.removeprefix(SOURCE_PREFIX).split("+") if source else []
        return MergedRecord(
            **data,
            sources=[s for s in sources if s],
            created_at=_aware(db_venue.created_at),
            updated_at=_aware(db_venue.updated_at),
        )


class VenueStore:
    """
    Session-per-call facade over VenueRepository.

    Each operation opens its own session and commits on success, so the
    store can be shared by concurrently running pipeline tasks.
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _repository(self) -> Generator[VenueRepository, None, None]:
        factory = self._session_factory or get_session_factory()
        session = factory()
        try:
            yield VenueRepository(session)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def find_by_name(self, name: str) -> MergedRecord | None:
        with self._repository() as repo:
            return repo.find_by_name(name)

    def upsert(self, record: MergedRecord, lookup_name: str | None = None) -> MergedRecord:
        with self._repository() as repo:
            return repo.upsert(record, lookup_name)

    def list_all(self) -> list[MergedRecord]:
        with self._repository() as repo:
            return repo.list_all()

    def list_names(self) -> list[str]:
        with self._repository() as repo:
            return repo.list_names()

    def list_update_times(self) -> list[datetime]:
        with self._repository() as repo:
            return repo.list_update_times()

    def count(self) -> int:
        with self._repository() as repo:
            return repo.count()
