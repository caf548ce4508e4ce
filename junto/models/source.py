"""Followed sources and the posts collected from them."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from junto.models.base import Base

if TYPE_CHECKING:
    from junto.models.user import User


class UserSource(Base):
    """A source handle a user follows."""

    __tablename__ = "user_sources"
    __table_args__ = (UniqueConstraint("user_id", "handle", name="uq_user_source_handle"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    handle: Mapped[str] = mapped_column(String(255), index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), default=None)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    # Relationships
    user: Mapped[User] = relationship(back_populates="sources")

    def __repr__(self) -> str:
        return f"<UserSource {self.handle}>"


class SourcePost(Base):
    """A post collected from a source handle."""

    __tablename__ = "source_posts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    handle: Mapped[str] = mapped_column(String(255), index=True)
    external_id: Mapped[str | None] = mapped_column(String(255), unique=True, default=None)
    content: Mapped[str] = mapped_column(Text)
    url: Mapped[str | None] = mapped_column(String(2048), default=None)
    posted_at: Mapped[datetime] = mapped_column(index=True)
    likes: Mapped[int] = mapped_column(Integer, default=0)
    reposts: Mapped[int] = mapped_column(Integer, default=0)
    fetched_at: Mapped[datetime] = mapped_column(default=func.now())

    @property
    def engagement(self) -> int:
        return (self.likes or 0) + 2 * (self.reposts or 0)

    def __repr__(self) -> str:
        return f"<SourcePost @{self.handle}: {self.content[:40]}>"
