"""Long-term memory models — profile facts and narrative events."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Float, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from buddy.database import Base, UTCDateTime, utcnow


class MemoryProfile(Base):
    """Key/value fact about the user, e.g. ``user.likes``.

    One row per (user, key); finalize overwrites on conflict.
    """

    __tablename__ = "memory_profile"
    __table_args__ = (
        UniqueConstraint("user_id", "key", name="uq_memory_profile_user_key"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    key: Mapped[str] = mapped_column(String(120), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.7)
    importance: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class MemoryEvent(Base):
    """Deduplicated narrative memory keyed by a fingerprint.

    Repeated extraction of the same event merges into the existing row:
    the summary grows by appending, importance only goes up.
    """

    __tablename__ = "memory_events"
    __table_args__ = (
        UniqueConstraint("user_id", "fingerprint", name="uq_memory_events_user_fingerprint"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str | None] = mapped_column(String(80))
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    importance: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    happened_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    ttl_days: Mapped[int] = mapped_column(Integer, nullable=False, default=180)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
