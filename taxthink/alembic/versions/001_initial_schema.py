"""initial_schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 12:00:00.000000 UTC

Creates the three core tables:
  - tax_sessions  (one row per conversation)
  - messages      (user / assistant turns, JSON metadata on assistant turns)
  - session_data  (keyed values, unique per session + category + data_key)
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    # --- tax_sessions table ---
    op.create_table(
        "tax_sessions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("jurisdiction", sa.String(length=2), nullable=False, comment="'us' or 'in' — mirrors Jurisdiction enum"),
        sa.Column("currency", sa.String(length=3), nullable=False, comment="'usd' or 'inr' — mirrors Currency enum"),
        sa.Column("status", sa.String(length=10), nullable=False, comment="'active' or 'completed'"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # --- messages table ---
    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=9), nullable=False, comment="'user' or 'assistant'"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("metadata", _JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["session_id"], ["tax_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_messages_session_id"), "messages", ["session_id"], unique=False)

    # --- session_data table ---
    op.create_table(
        "session_data",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("data_key", sa.String(length=200), nullable=False),
        sa.Column("data_value", _JSON, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["session_id"], ["tax_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", "category", "data_key", name="uq_session_data_key"),
    )
    op.create_index(op.f("ix_session_data_session_id"), "session_data", ["session_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_session_data_session_id"), table_name="session_data")
    op.drop_table("session_data")
    op.drop_index(op.f("ix_messages_session_id"), table_name="messages")
    op.drop_table("messages")
    op.drop_table("tax_sessions")
