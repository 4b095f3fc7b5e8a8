"""SQLAlchemy ORM models for persisted venues."""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class VenueDB(Base):
    """
    Database model for fused venues.

    One row per venue; each fusion run upserts by name.
    """

    __tablename__ = "venues"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    address: Mapped[str | None] = mapped_column(String(300), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    is_24_hours: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    has_parking: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    has_shower: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    has_pt: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    has_gx: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    has_group_pt: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    open_hour: Mapped[str | None] = mapped_column(String(20), nullable=True)
    close_hour: Mapped[str | None] = mapped_column(String(20), nullable=True)
    price: Mapped[str | None] = mapped_column(String(200), nullable=True)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    review_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    facilities: Mapped[str] = mapped_column(Text, default="")
    source: Mapped[str] = mapped_column(Text, default="")
    confidence: Mapped[float] = mapped_column(Float, default=0.0)
    data_quality: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )

    def __repr__(self) -> str:
        return f"<VenueDB(id={self.id}, name={self.name!r}, confidence={self.confidence})>"
