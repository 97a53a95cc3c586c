"""
Test configuration for TaxThink tests.

Every test gets a fresh MemoryStore and a mocked Mistral client; nothing
talks to the real generation API. The httpx client drives the real FastAPI
app through ASGITransport (no lifespan), so app.state is wired here instead.
"""
from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.pool import StaticPool

import taxthink.models  # noqa: F401  (registers tables on Base.metadata)
from taxthink.database import Base, create_engine
from taxthink.main import app
from taxthink.sql_store import SqlStore
from taxthink.store import MemoryStore


def make_completion(payload: Any) -> SimpleNamespace:
    """
    Build an object shaped like a Mistral ChatCompletionResponse.
    dicts are JSON-encoded; strings (or None) are passed through as raw content.
    """
    content = json.dumps(payload) if isinstance(payload, dict) else payload
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    )


SAMPLE_REPLY = {
    "content": "Let's look at your deductions. Do you work from home?",
    "thinkingMode": "Personal Deduction Planning",
    "categories": ["deductions", "personal_income"],
    "actionItems": ["Gather your Form 16", "List your 80C investments"],
    "keyInsights": ["Section 80C allows up to INR 1,50,000"],
    "nextQuestions": ["Do you pay rent?"],
}


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def mock_mistral() -> MagicMock:
    """Mistral client whose chat.complete_async returns SAMPLE_REPLY by default."""
    client = MagicMock()
    client.chat.complete_async = AsyncMock(return_value=make_completion(SAMPLE_REPLY))
    return client


@pytest_asyncio.fixture
async def client(store: MemoryStore, mock_mistral: MagicMock):
    """Async httpx client using ASGI transport — no live server needed."""
    app.state.store = store
    app.state.mistral = mock_mistral
    app.state.generation_semaphore = asyncio.Semaphore(2)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def sql_store():
    """
    SqlStore over in-memory SQLite. Foreign keys are switched on per
    connection so unknown session ids are rejected as on PostgreSQL.
    """
    engine = create_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    store = SqlStore(engine)
    yield store
    await store.close()


@pytest_asyncio.fixture
async def sql_client(sql_store: SqlStore, mock_mistral: MagicMock):
    """Same as `client`, but the app runs on the database backend."""
    app.state.store = sql_store
    app.state.mistral = mock_mistral
    app.state.generation_semaphore = asyncio.Semaphore(2)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
