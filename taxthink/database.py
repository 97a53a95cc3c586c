"""
database.py — SQLAlchemy 2.0 async engine and session factory.

Only used when settings.storage_backend == "database". The engine is built
in main.py lifespan (not at import time) so the in-memory backend never
needs a database driver or a reachable server.

Usage:
    engine = create_engine(settings.database_url)
    store = SqlStore(engine)
"""
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from taxthink.config import settings


# ---------------------------------------------------------------------------
# Declarative base — ALL ORM models inherit from this
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base.
    All ORM models in taxthink/models/ inherit from Base.
    Defined here (not in models/) to prevent circular imports in alembic/env.py.
    """
    pass


def create_engine(url: str, **kwargs) -> AsyncEngine:
    """
    Build the async engine for the given URL.

    Pool sizing only applies to server databases; SQLite (tests) uses its own pool.
    """
    if not url.startswith("sqlite"):
        kwargs.setdefault("pool_size", 5)          # Core connection pool size
        kwargs.setdefault("max_overflow", 10)      # Extra connections under peak load
        kwargs.setdefault("pool_pre_ping", True)   # Discard stale connections before use
    return create_async_engine(url, echo=settings.debug, **kwargs)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,   # Keep objects usable after commit without re-querying
    )
