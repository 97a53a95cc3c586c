"""
session_data.py — structured session data endpoints.

POST /api/sessions/{id}/data              — upsert by (session, category, dataKey)
GET  /api/sessions/{id}/data              — all data for the session
GET  /api/sessions/{id}/data/{category}   — data in one category

The session id is not checked against existing sessions: writes to an
unknown session are accepted by the in-memory store (the SQL store rejects
them through its foreign key, which surfaces as 400).
"""
import logging

from fastapi import APIRouter, Depends

from taxthink.routes.deps import get_store, with_store_retry
from taxthink.schemas import SessionDataRequest, SessionDatum
from taxthink.store import RecordStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/sessions", tags=["Session Data"])


@router.post("/{session_id}/data", response_model=SessionDatum)
async def upsert_session_data_endpoint(
    session_id: int,
    body: SessionDataRequest,
    store: RecordStore = Depends(get_store),
) -> SessionDatum:
    """
    Store one keyed value for the session. A second write with the same
    (category, dataKey) replaces dataValue in place and keeps the record id.
    """
    return await with_store_retry(
        store.upsert_session_datum,
        session_id,
        body.category,
        body.data_key,
        body.data_value,
    )


@router.get("/{session_id}/data", response_model=list[SessionDatum])
async def list_session_data_endpoint(
    session_id: int,
    store: RecordStore = Depends(get_store),
) -> list[SessionDatum]:
    rows = await with_store_retry(store.list_session_data, session_id)
    logger.info("Session data request session_id=%d rows=%d", session_id, len(rows))
    return rows


@router.get("/{session_id}/data/{category}", response_model=list[SessionDatum])
async def list_session_data_by_category_endpoint(
    session_id: int,
    category: str,
    store: RecordStore = Depends(get_store),
) -> list[SessionDatum]:
    rows = await with_store_retry(store.list_session_data, session_id, category)
    logger.info(
        "Session data request session_id=%d category=%s rows=%d",
        session_id, category, len(rows),
    )
    return rows
