"""
models/__init__.py — imports all ORM models so Alembic's env.py
sees them via Base.metadata when generating migrations.

Import order matters: messages and session_data reference tax_sessions.
"""
from taxthink.models.session import TaxSessionORM
from taxthink.models.message import MessageORM
from taxthink.models.session_data import SessionDataORM

__all__ = ["TaxSessionORM", "MessageORM", "SessionDataORM"]
