"""Relationship state model — four bounded axes plus the derived stage."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Float, ForeignKey, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from buddy.database import Base, UTCDateTime, utcnow


class RelationshipState(Base):
    """Exactly one row per user, written only by finalize.

    Axes live in [0, 100]; ``stage`` is derived from ``bond``.
    """

    __tablename__ = "relationship_state"

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    bond: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    trust: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    warmth: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    repair: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    stage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
