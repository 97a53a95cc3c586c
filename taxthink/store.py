"""
store.py — Record store for TaxThink.

Provides one high-level API for persisting and retrieving the three record
types (TaxSession, Message, SessionDatum). Routes only ever talk to a
RecordStore instance held on app.state.store — nothing touches dicts or
SQLAlchemy directly.

Design principles:
  - One store object per process, built in main.py lifespan (tests build a fresh one)
  - All methods are async so the in-memory and SQL backends are interchangeable
  - Lookups by unknown id return None (caller raises 404)
  - create_message / upsert_session_datum do NOT check that the session exists
  - Logs only ids and counts — never message content or data values
  - Returns domain Pydantic objects so callers are persistence-agnostic

Backends:
  MemoryStore  — process memory, lost on restart (default)
  SqlStore     — SQLAlchemy async, see sql_store.py
"""
import copy
import itertools
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

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

logger = logging.getLogger(__name__)

# Fields a caller may change through update_session
UPDATABLE_SESSION_FIELDS = frozenset({"title", "jurisdiction", "currency", "status"})


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_timestamp(previous: datetime) -> datetime:
    """Current UTC time, bumped by 1µs if the clock has not moved past `previous`."""
    now = utcnow()
    if now > previous:
        return now
    return previous + timedelta(microseconds=1)


def merge_session_update(
    existing: TaxSession,
    fields: dict[str, Any],
    now: Optional[datetime] = None,
) -> TaxSession:
    """
    Apply a partial update to a session and refresh updated_at.
    `now` is used as the new updated_at when it is later than the current one.

    Raises ValueError for unknown field names or invalid values
    (pydantic.ValidationError is a ValueError subclass).
    """
    unknown = set(fields) - UPDATABLE_SESSION_FIELDS
    if unknown:
        raise ValueError(f"Cannot update session field(s): {', '.join(sorted(unknown))}")
    merged = existing.model_dump()
    merged.update(fields)
    if now is not None and now > existing.updated_at:
        merged["updated_at"] = now
    else:
        merged["updated_at"] = next_timestamp(existing.updated_at)
    return TaxSession.model_validate(merged)


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class RecordStore(ABC):
    """Persistence contract shared by every backend."""

    # --- Sessions ---
    @abstractmethod
    async def create_session(
        self,
        title: str,
        jurisdiction: Jurisdiction,
        currency: Currency,
    ) -> TaxSession: ...

    @abstractmethod
    async def get_session(self, session_id: int) -> Optional[TaxSession]: ...

    @abstractmethod
    async def list_sessions(self) -> list[TaxSession]:
        """All sessions, most recently updated first."""

    @abstractmethod
    async def update_session(self, session_id: int, **fields: Any) -> Optional[TaxSession]:
        """Merge `fields` and refresh updated_at. No fields = touch."""

    # --- Messages ---
    @abstractmethod
    async def create_message(
        self,
        session_id: int,
        role: MessageRole,
        content: str,
        metadata: Optional[MessageMetadata] = None,
    ) -> Message: ...

    @abstractmethod
    async def list_messages(self, session_id: int) -> list[Message]:
        """Messages of one session ordered by (created_at, id)."""

    # --- Session data ---
    @abstractmethod
    async def upsert_session_datum(
        self,
        session_id: int,
        category: str,
        data_key: str,
        data_value: Any,
    ) -> SessionDatum: ...

    @abstractmethod
    async def list_session_data(
        self,
        session_id: int,
        category: Optional[str] = None,
    ) -> list[SessionDatum]: ...

    async def close(self) -> None:
        """Release backend resources. No-op by default."""


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

class MemoryStore(RecordStore):
    """
    Dict-backed store. All data is lost when the process exits.

    A threading.Lock guards id allocation and every mutation, so the
    uniqueness and upsert invariants hold under threads as well as on a
    single event loop. Session data is indexed by (session_id, category, data_key).
    Every timestamp comes from one strictly increasing clock, so no two
    records ever share a created_at / updated_at.
    Records go in and come out as deep copies; callers never hold the stored instance.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[int, TaxSession] = {}
        self._messages: dict[int, Message] = {}
        self._data: dict[int, SessionDatum] = {}
        self._data_index: dict[tuple[int, str, str], int] = {}
        self._session_ids = itertools.count(1)
        self._message_ids = itertools.count(1)
        self._data_ids = itertools.count(1)
        self._clock = datetime.min.replace(tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        # caller holds self._lock
        self._clock = next_timestamp(self._clock)
        return self._clock

    # --- Sessions ---

    async def create_session(
        self,
        title: str,
        jurisdiction: Jurisdiction,
        currency: Currency,
    ) -> TaxSession:
        with self._lock:
            now = self._tick()
            session = TaxSession(
                id=next(self._session_ids),
                title=title,
                jurisdiction=jurisdiction,
                currency=currency,
                status=SessionStatus.active,
                created_at=now,
                updated_at=now,
            )
            self._sessions[session.id] = session
            session = session.model_copy(deep=True)
        logger.info("Created session session_id=%d jurisdiction=%s", session.id, session.jurisdiction.value)
        return session

    async def get_session(self, session_id: int) -> Optional[TaxSession]:
        with self._lock:
            session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session is not None else None

    async def list_sessions(self) -> list[TaxSession]:
        with self._lock:
            sessions = [s.model_copy(deep=True) for s in self._sessions.values()]
        return sorted(sessions, key=lambda s: (s.updated_at, s.id), reverse=True)

    async def update_session(self, session_id: int, **fields: Any) -> Optional[TaxSession]:
        with self._lock:
            existing = self._sessions.get(session_id)
            if existing is None:
                return None
            updated = merge_session_update(existing, fields, now=self._tick())
            self._sessions[session_id] = updated
            updated = updated.model_copy(deep=True)
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
        with self._lock:
            message = Message(
                id=next(self._message_ids),
                session_id=session_id,
                role=role,
                content=content,
                metadata=metadata.model_copy(deep=True) if metadata is not None else None,
                created_at=self._tick(),
            )
            self._messages[message.id] = message
            message = message.model_copy(deep=True)
        logger.info(
            "Saved message message_id=%d session_id=%d role=%s",
            message.id, session_id, message.role.value,
        )
        return message

    async def list_messages(self, session_id: int) -> list[Message]:
        with self._lock:
            messages = [
                m.model_copy(deep=True)
                for m in self._messages.values() if m.session_id == session_id
            ]
        return sorted(messages, key=lambda m: (m.created_at, m.id))

    # --- Session data ---

    async def upsert_session_datum(
        self,
        session_id: int,
        category: str,
        data_key: str,
        data_value: Any,
    ) -> SessionDatum:
        key = (session_id, category, data_key)
        value = copy.deepcopy(data_value)
        with self._lock:
            existing_id = self._data_index.get(key)
            if existing_id is not None:
                datum = self._data[existing_id].model_copy(
                    update={"data_value": value, "updated_at": self._tick()}
                )
            else:
                datum = SessionDatum(
                    id=next(self._data_ids),
                    session_id=session_id,
                    category=category,
                    data_key=data_key,
                    data_value=value,
                    updated_at=self._tick(),
                )
                self._data_index[key] = datum.id
            self._data[datum.id] = datum
            datum = datum.model_copy(deep=True)
        logger.info(
            "Upserted session data datum_id=%d session_id=%d category=%s created=%s",
            datum.id, session_id, category, existing_id is None,
        )
        return datum

    async def list_session_data(
        self,
        session_id: int,
        category: Optional[str] = None,
    ) -> list[SessionDatum]:
        with self._lock:
            rows = [
                d.model_copy(deep=True) for d in self._data.values()
                if d.session_id == session_id and (category is None or d.category == category)
            ]
        return sorted(rows, key=lambda d: d.id)
