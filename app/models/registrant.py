import uuid
from datetime import datetime
from sqlalchemy import String, Integer, Boolean, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from app.db.compat import UUID

from app.db.base import Base


class Registrant(Base):
    """Student registered for pairing."""

    __tablename__ = "registrants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    net_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    major: Mapped[str] = mapped_column(String(255), nullable=False)
    graduation_year: Mapped[int] = mapped_column(Integer, nullable=False)

    # Match state. matched_with is not a foreign key: a dangling partner
    # reference must stay representable until it is healed.
    is_matched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    matched_with: Mapped[uuid.UUID] = mapped_column(UUID(), nullable=True)

    # Metadata
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("ix_registrants_is_matched_major", "is_matched", "major"),
    )

    def __repr__(self) -> str:
        state = f"matched with {self.matched_with}" if self.is_matched else "unmatched"
        return f"<Registrant {self.id}: {self.email} ({state})>"
