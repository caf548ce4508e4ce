from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from junto.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from junto.models.newsletter import Newsletter
    from junto.models.source import UserSource


class User(Base, TimestampMixin):
    """Digest subscriber and their delivery preferences."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(255), default=None)
    is_subscribed: Mapped[bool] = mapped_column(Boolean, default=True)

    # Delivery preferences
    timezone: Mapped[str | None] = mapped_column(String(64), default="UTC")
    preferred_send_time: Mapped[str | None] = mapped_column(String(8), default="08:00")
    send_frequency: Mapped[str | None] = mapped_column(String(10), default="daily")
    weekend_delivery: Mapped[bool] = mapped_column(Boolean, default=True)
    # Local calendar date of the last confirmed send. Text so legacy formats survive a read.
    last_sent_date: Mapped[str | None] = mapped_column(String(32), default=None)

    # Personalization used by the synthesizer
    keywords: Mapped[list[str]] = mapped_column(JSON, default=list)
    custom_prompt: Mapped[str | None] = mapped_column(Text, default=None)

    # Relationships
    sources: Mapped[list[UserSource]] = relationship(
        back_populates="user", lazy="selectin", cascade="all, delete-orphan"
    )
    newsletters: Mapped[list[Newsletter]] = relationship(back_populates="user")

    def __repr__(self) -> str:
        return f"<User {self.email}>"
