"""
sql_store.py — SQLAlchemy async backend for the record store.

Selected with STORAGE_BACKEND=database. Schema is owned by Alembic
(taxthink/alembic/versions); this module only issues ORM queries.

Error mapping:
  - IntegrityError on a foreign key  → ValueError (unknown session_id, surfaces as 400)
  - any other SQLAlchemyError        → StoreUnavailable (surfaces as 500)

Unlike MemoryStore, the tax_sessions foreign key means a message or datum
for a session that does not exist is rejected rather than stored.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from taxthink.database import create_sessionmaker
from taxthink.errors import StoreUnavailable
from taxthink.models import MessageORM, SessionDataORM, TaxSessionORM
from taxthink.schemas import (
    Currency,
    Jurisdiction,
    Message,
    MessageMetadata,
    MessageRole,
    SessionDatum,
    SessionStatus,
    TaxSession,
)
from taxthink.store import RecordStore, merge_session_update, utcnow

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for DateTime(timezone=True)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# ORM → domain converters
# ---------------------------------------------------------------------------

def _session_from_orm(orm: TaxSessionORM) -> TaxSession:
    return TaxSession(
        id=orm.id,
        title=orm.title,
        jurisdiction=orm.jurisdiction,
        currency=orm.currency,
        status=orm.status,
        created_at=_aware(orm.created_at),
        updated_at=_aware(orm.updated_at),
    )


def _message_from_orm(orm: MessageORM) -> Message:
    return Message(
        id=orm.id,
        session_id=orm.session_id,
        role=orm.role,
        content=orm.content,
        metadata=MessageMetadata.model_validate(orm.metadata_) if orm.metadata_ is not None else None,
        created_at=_aware(orm.created_at),
    )


def _datum_from_orm(orm: SessionDataORM) -> SessionDatum:
    return SessionDatum(
        id=orm.id,
        session_id=orm.session_id,
        category=orm.category,
        data_key=orm.data_key,
        data_value=orm.data_value,
        updated_at=_aware(orm.updated_at),
    )


class SqlStore(RecordStore):
    """Record store backed by a relational database through SQLAlchemy 2.0 async."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessionmaker = create_sessionmaker(engine)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        """Yield a session inside a transaction; commit on success, roll back on error."""
        try:
            async with self._sessionmaker() as db:
                async with db.begin():
                    yield db
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Database operation failed: %s", exc, exc_info=True)
            raise StoreUnavailable(str(exc)) from exc

    async def close(self) -> None:
        await self._engine.dispose()

    # --- Sessions ---

    async def create_session(
        self,
        title: str,
        jurisdiction: Jurisdiction,
        currency: Currency,
    ) -> TaxSession:
        now = utcnow()
        async with self._transaction() as db:
            orm = TaxSessionORM(
                title=title,
                jurisdiction=Jurisdiction(jurisdiction).value,
                currency=Currency(currency).value,
                status=SessionStatus.active.value,
                created_at=now,
                updated_at=now,
            )
            db.add(orm)
            await db.flush()
            session = _session_from_orm(orm)
        logger.info("Created session session_id=%d jurisdiction=%s", session.id, session.jurisdiction.value)
        return session

    async def get_session(self, session_id: int) -> Optional[TaxSession]:
        async with self._transaction() as db:
            orm = await db.get(TaxSessionORM, session_id)
            return _session_from_orm(orm) if orm is not None else None

    async def list_sessions(self) -> list[TaxSession]:
        async with self._transaction() as db:
            result = await db.execute(
                select(TaxSessionORM).order_by(
                    TaxSessionORM.updated_at.desc(),
                    TaxSessionORM.id.desc(),
                )
            )
            return [_session_from_orm(row) for row in result.scalars().all()]

    async def update_session(self, session_id: int, **fields: Any) -> Optional[TaxSession]:
        async with self._transaction() as db:
            result = await db.execute(
                select(TaxSessionORM)
                .where(TaxSessionORM.id == session_id)
                .with_for_update()
            )
            orm = result.scalar_one_or_none()
            if orm is None:
                return None
            updated = merge_session_update(_session_from_orm(orm), fields)
            orm.title = updated.title
            orm.jurisdiction = updated.jurisdiction.value
            orm.currency = updated.currency.value
            orm.status = updated.status.value
            orm.updated_at = updated.updated_at
        logger.info("Updated session session_id=%d fields=%s", session_id, sorted(fields))
        return updated

    # --- Messages ---

    async def create_message(
        self,
        session_id: int,
        role: MessageRole,
        content: str,
        metadata: Optional[MessageMetadata] = None,
    ) -> Message:
        try:
            async with self._transaction() as db:
                orm = MessageORM(
                    session_id=session_id,
                    role=MessageRole(role).value,
                    content=content,
                    metadata_=metadata.model_dump(by_alias=True) if metadata is not None else None,
                    created_at=utcnow(),
                )
                db.add(orm)
                await db.flush()
                message = _message_from_orm(orm)
        except IntegrityError as exc:
            raise ValueError(f"Unknown session_id={session_id}") from exc
        logger.info(
            "Saved message message_id=%d session_id=%d role=%s",
            message.id, session_id, message.role.value,
        )
        return message

    async def list_messages(self, session_id: int) -> list[Message]:
        async with self._transaction() as db:
            result = await db.execute(
                select(MessageORM)
                .where(MessageORM.session_id == session_id)
                .order_by(MessageORM.created_at.asc(), MessageORM.id.asc())
            )
            return [_message_from_orm(row) for row in result.scalars().all()]

    # --- Session data ---

    async def _upsert_once(
        self,
        session_id: int,
        category: str,
        data_key: str,
        data_value: Any,
    ) -> tuple[SessionDatum, bool]:
        async with self._transaction() as db:
            result = await db.execute(
                select(SessionDataORM).where(
                    SessionDataORM.session_id == session_id,
                    SessionDataORM.category == category,
                    SessionDataORM.data_key == data_key,
                )
            )
            orm = result.scalar_one_or_none()
            created = orm is None
            if created:
                orm = SessionDataORM(
                    session_id=session_id,
                    category=category,
                    data_key=data_key,
                    data_value=data_value,
                    updated_at=utcnow(),
                )
                db.add(orm)
            else:
                orm.data_value = data_value
                orm.updated_at = utcnow()
            await db.flush()
            return _datum_from_orm(orm), created

    async def upsert_session_datum(
        self,
        session_id: int,
        category: str,
        data_key: str,
        data_value: Any,
    ) -> SessionDatum:
        try:
            datum, created = await self._upsert_once(session_id, category, data_key, data_value)
        except IntegrityError:
            # Either a concurrent insert of the same key won (second pass updates it)
            # or the session does not exist (second pass fails the same way).
            try:
                datum, created = await self._upsert_once(session_id, category, data_key, data_value)
            except IntegrityError as exc:
                raise ValueError(f"Unknown session_id={session_id}") from exc
        logger.info(
            "Upserted session data datum_id=%d session_id=%d category=%s created=%s",
            datum.id, session_id, category, created,
        )
        return datum

    async def list_session_data(
        self,
        session_id: int,
        category: Optional[str] = None,
    ) -> list[SessionDatum]:
        query = select(SessionDataORM).where(SessionDataORM.session_id == session_id)
        if category is not None:
            query = query.where(SessionDataORM.category == category)
        async with self._transaction() as db:
            result = await db.execute(query.order_by(SessionDataORM.id.asc()))
            return [_datum_from_orm(row) for row in result.scalars().all()]
