"""
models/session.py — SQLAlchemy ORM model for tax conversation sessions.

Table: tax_sessions
One row per conversation. updated_at is written explicitly by the store
(never via onupdate) so every touch strictly advances it.
"""
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from taxthink.database import Base


class TaxSessionORM(Base):
    """
    ORM model for a single tax conversation session.

    jurisdiction: "us" or "in" — selects the system prompt profile.
    currency:     "usd" or "inr" — formatting hint for the assistant.
    status:       "active" or "completed".
    """
    __tablename__ = "tax_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    jurisdiction: Mapped[str] = mapped_column(
        String(2),
        nullable=False,
        default="us",
        comment="'us' or 'in' — mirrors Jurisdiction enum",
    )
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="usd",
        comment="'usd' or 'inr' — mirrors Currency enum",
    )
    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="active",
        comment="'active' or 'completed'",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
