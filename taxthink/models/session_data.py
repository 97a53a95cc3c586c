"""
models/session_data.py — SQLAlchemy ORM model for structured session data.

Table: session_data
Upserted by (session_id, category, data_key); the unique constraint backs
the store's update-in-place semantics.
"""
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from taxthink.database import Base


class SessionDataORM(Base):
    """
    ORM model for one keyed value captured during a session.

    category: free-form grouping, e.g. 'personal_income', 'deductions', 'business'.
    data_value: any JSON value except null.
    """
    __tablename__ = "session_data"
    __table_args__ = (
        UniqueConstraint("session_id", "category", "data_key", name="uq_session_data_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tax_sessions.id"),
        nullable=False,
        index=True,
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    data_key: Mapped[str] = mapped_column(String(200), nullable=False)
    data_value: Mapped[Any] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
