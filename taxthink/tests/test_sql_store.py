"""
test_sql_store.py — SqlStore against in-memory SQLite (aiosqlite).

Same contract as MemoryStore; the schema is created with
Base.metadata.create_all instead of Alembic. The sql_store fixture
(conftest.py) turns on SQLite foreign keys, so writes for an unknown
session are rejected the way PostgreSQL rejects them.
"""
from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from taxthink.database import create_engine
from taxthink.errors import StoreUnavailable
from taxthink.models import SessionDataORM
from taxthink.schemas import (
    Currency,
    Jurisdiction,
    MessageMetadata,
    MessageRole,
    SessionStatus,
)
from taxthink.sql_store import SqlStore


@pytest.mark.asyncio
async def test_sessions_round_trip_and_ordering(sql_store: SqlStore) -> None:
    a = await sql_store.create_session("a", Jurisdiction.us, Currency.usd)
    b = await sql_store.create_session("b", Jurisdiction.in_, Currency.inr)

    assert (a.id, b.id) == (1, 2)
    assert b.jurisdiction == Jurisdiction.in_
    assert b.status == SessionStatus.active
    assert await sql_store.get_session(b.id) == b
    assert await sql_store.get_session(99) is None

    updated = await sql_store.update_session(a.id, title="a (renamed)")
    assert updated.title == "a (renamed)"
    assert updated.created_at == a.created_at
    assert updated.updated_at > a.updated_at
    assert [s.id for s in await sql_store.list_sessions()] == [a.id, b.id]


@pytest.mark.asyncio
async def test_update_unknown_session_returns_none(sql_store: SqlStore) -> None:
    assert await sql_store.update_session(7, status=SessionStatus.completed) is None


@pytest.mark.asyncio
async def test_update_rejects_unknown_field(sql_store: SqlStore) -> None:
    session = await sql_store.create_session("a", Jurisdiction.us, Currency.usd)
    with pytest.raises(ValueError):
        await sql_store.update_session(session.id, id=5)


@pytest.mark.asyncio
async def test_messages_filtered_and_ordered_with_metadata(sql_store: SqlStore) -> None:
    one = await sql_store.create_session("one", Jurisdiction.us, Currency.usd)
    two = await sql_store.create_session("two", Jurisdiction.us, Currency.usd)

    metadata = MessageMetadata(
        thinking_mode="Welcome & Setup",
        categories=["setup"],
        action_items=["Describe your tax situation or ask a specific question"],
    )
    welcome = await sql_store.create_message(one.id, MessageRole.assistant, "Welcome!", metadata)
    await sql_store.create_message(two.id, MessageRole.user, "elsewhere")
    question = await sql_store.create_message(one.id, MessageRole.user, "What can I deduct?")

    messages = await sql_store.list_messages(one.id)
    assert [m.id for m in messages] == [welcome.id, question.id]
    assert messages[0].metadata.categories == ["setup"]
    assert messages[0].metadata.thinking_mode == "Welcome & Setup"
    assert messages[1].metadata is None


@pytest.mark.asyncio
async def test_upsert_by_composite_key(sql_store: SqlStore) -> None:
    session = await sql_store.create_session("s", Jurisdiction.us, Currency.usd)

    first = await sql_store.upsert_session_datum(session.id, "deductions", "home_office", {"sqft": 120})
    second = await sql_store.upsert_session_datum(session.id, "deductions", "home_office", {"sqft": 200})
    await sql_store.upsert_session_datum(session.id, "business", "entity", "LLC")

    assert second.id == first.id
    rows = await sql_store.list_session_data(session.id)
    assert [(r.category, r.data_key, r.data_value) for r in rows] == [
        ("deductions", "home_office", {"sqft": 200}),
        ("business", "entity", "LLC"),
    ]
    only_business = await sql_store.list_session_data(session.id, "business")
    assert [r.data_value for r in only_business] == ["LLC"]


@pytest.mark.asyncio
async def test_backend_fault_maps_to_store_unavailable(tmp_path) -> None:
    missing_dir = tmp_path / "does-not-exist" / "taxthink.db"
    store = SqlStore(create_engine(f"sqlite+aiosqlite:///{missing_dir}"))
    try:
        with pytest.raises(StoreUnavailable):
            await store.list_sessions()
    finally:
        await store.close()


# ---------------------------------------------------------------------------
# Foreign keys & upsert races
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_message_for_unknown_session_is_rejected(sql_store: SqlStore) -> None:
    with pytest.raises(ValueError, match="Unknown session_id=99"):
        await sql_store.create_message(99, MessageRole.user, "x")
    assert await sql_store.list_messages(99) == []


@pytest.mark.asyncio
async def test_datum_for_unknown_session_is_rejected(sql_store: SqlStore) -> None:
    with pytest.raises(ValueError, match="Unknown session_id=99"):
        await sql_store.upsert_session_datum(99, "c", "k", 1)
    assert await sql_store.list_session_data(99) == []


@pytest.mark.asyncio
async def test_upsert_losing_insert_race_updates_winning_row(
    sql_store: SqlStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A concurrent writer inserts the same key first; the retry updates that row."""
    session = await sql_store.create_session("s", Jurisdiction.us, Currency.usd)
    upsert_once = sql_store._upsert_once
    calls = []

    async def racing_upsert_once(session_id, category, data_key, data_value):
        calls.append(data_value)
        if len(calls) == 1:
            await upsert_once(session_id, category, data_key, "theirs")
            raise IntegrityError("INSERT INTO session_data", {}, Exception("UNIQUE constraint failed"))
        return await upsert_once(session_id, category, data_key, data_value)

    monkeypatch.setattr(sql_store, "_upsert_once", racing_upsert_once)
    datum = await sql_store.upsert_session_datum(session.id, "business", "entity", "ours")

    assert calls == ["ours", "ours"]
    assert datum.data_value == "ours"
    rows = await sql_store.list_session_data(session.id)
    assert [(r.id, r.data_value) for r in rows] == [(datum.id, "ours")]

    async with sql_store._sessionmaker() as db:
        count = await db.scalar(select(func.count()).select_from(SessionDataORM))
    assert count == 1
