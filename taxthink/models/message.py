"""
models/message.py — SQLAlchemy ORM model for conversation messages.

Table: messages
One row per turn (user or assistant). Rows are never updated after insert.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from taxthink.database import Base


class MessageORM(Base):
    """
    ORM model for a single message within a session.

    metadata_: structured assistant output (thinkingMode, categories, actionItems,
               keyInsights, nextQuestions). NULL for user turns. The Python
               attribute carries a trailing underscore because Declarative
               reserves `metadata`; the column itself is named "metadata".
    """
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tax_sessions.id"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(
        String(9),
        nullable=False,
        comment="'user' or 'assistant'",
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
