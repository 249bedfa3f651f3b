"""Companion persona model — read by context assembly, edited by settings."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from buddy.database import Base, UTCDateTime, utcnow

DEFAULT_COMPANION_NAME = "小伴"
DEFAULT_TONE_STYLE = "warm"


class CompanionProfile(Base):
    __tablename__ = "companion_profile"

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    companion_name: Mapped[str] = mapped_column(String(20), nullable=False, default=DEFAULT_COMPANION_NAME)
    companion_avatar_url: Mapped[str | None] = mapped_column(String(500))
    tone_style: Mapped[str] = mapped_column(String(20), nullable=False, default=DEFAULT_TONE_STYLE)

    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)
