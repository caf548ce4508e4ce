"""Archive of generated digests."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from junto.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from junto.models.user import User


class Newsletter(Base, TimestampMixin):
    """A digest generated for one user, kept whether or not the email went out."""

    __tablename__ = "newsletters"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    subject: Mapped[str] = mapped_column(String(500))
    content: Mapped[str] = mapped_column(Text)
    post_count: Mapped[int] = mapped_column(Integer, default=0)
    date_range: Mapped[str | None] = mapped_column(String(100), default=None)

    # Generation details
    model_used: Mapped[str | None] = mapped_column(String(100), default=None)
    prompt_version: Mapped[str | None] = mapped_column(String(20), default=None)
    input_tokens: Mapped[int | None] = mapped_column(Integer, default=None)
    output_tokens: Mapped[int | None] = mapped_column(Integer, default=None)

    # Delivery
    sent_at: Mapped[datetime | None] = mapped_column(default=None)
    sent_to: Mapped[str | None] = mapped_column(String(255), default=None)
    email_id: Mapped[str | None] = mapped_column(String(255), default=None)

    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    # Relationships
    user: Mapped[User] = relationship(back_populates="newsletters")

    def __repr__(self) -> str:
        return f"<Newsletter {self.subject[:40]}>"
