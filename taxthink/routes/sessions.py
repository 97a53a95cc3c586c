"""
sessions.py — session and conversation HTTP endpoints.

POST  /api/sessions                 — create session + persist welcome turn
GET   /api/sessions                 — all sessions, most recently updated first
GET   /api/sessions/{id}            — one session
PATCH /api/sessions/{id}            — partial update (title, jurisdiction, currency, status)
GET   /api/sessions/{id}/messages   — conversation, chronological
POST  /api/sessions/{id}/messages   — user turn → Mistral → assistant turn
GET   /api/sessions/{id}/summary    — derived insights / action items view

No authentication (single-user tool). Response bodies use camelCase keys.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from mistralai import Mistral

from taxthink.config import settings
from taxthink.conversation.llm_service import (
    HISTORY_WINDOW,
    build_history,
    generate_response,
    generate_welcome_message,
)
from taxthink.routes.deps import (
    get_generation_semaphore,
    get_mistral,
    get_store,
    require_session,
    with_store_retry,
)
from taxthink.schemas import (
    CreateSessionRequest,
    Message,
    MessageRole,
    SendMessageRequest,
    SendMessageResponse,
    SessionCreatedResponse,
    SessionSummary,
    TaxSession,
    UpdateSessionRequest,
)
from taxthink.store import RecordStore
from taxthink.summary import build_session_summary

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/sessions", tags=["Sessions"])


@router.post("", response_model=SessionCreatedResponse)
async def create_session_endpoint(
    body: CreateSessionRequest,
    store: RecordStore = Depends(get_store),
) -> SessionCreatedResponse:
    """
    Create a session and store the welcome turn as its first assistant message.

    The welcome turn is generated locally (no Mistral call), so this endpoint
    never fails on the generation service.
    """
    session = await with_store_retry(
        store.create_session, body.title, body.jurisdiction, body.currency
    )
    welcome = generate_welcome_message(session.jurisdiction, session.currency)
    await with_store_retry(
        store.create_message,
        session.id,
        MessageRole.assistant,
        welcome.content,
        welcome.to_metadata(),
    )
    logger.info("Session created session_id=%d with welcome message", session.id)
    return SessionCreatedResponse(session=session, welcome_message=welcome)


@router.get("", response_model=list[TaxSession])
async def list_sessions_endpoint(
    store: RecordStore = Depends(get_store),
) -> list[TaxSession]:
    return await with_store_retry(store.list_sessions)


@router.get("/{session_id}", response_model=TaxSession)
async def get_session_endpoint(
    session_id: int,
    store: RecordStore = Depends(get_store),
) -> TaxSession:
    return await require_session(store, session_id)


@router.patch("/{session_id}", response_model=TaxSession)
async def update_session_endpoint(
    session_id: int,
    body: UpdateSessionRequest,
    store: RecordStore = Depends(get_store),
) -> TaxSession:
    """
    Merge the provided fields into the session. An empty body still
    refreshes updatedAt. Omitted or null fields are left unchanged.
    """
    updates = {
        field: value
        for field, value in body.model_dump(exclude_unset=True).items()
        if value is not None
    }
    session = await with_store_retry(store.update_session, session_id, **updates)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.get("/{session_id}/messages", response_model=list[Message])
async def list_messages_endpoint(
    session_id: int,
    store: RecordStore = Depends(get_store),
) -> list[Message]:
    return await with_store_retry(store.list_messages, session_id)


@router.post("/{session_id}/messages", response_model=SendMessageResponse)
async def send_message_endpoint(
    session_id: int,
    body: SendMessageRequest,
    store: RecordStore = Depends(get_store),
    mistral: Mistral = Depends(get_mistral),
    semaphore: asyncio.Semaphore = Depends(get_generation_semaphore),
) -> SendMessageResponse:
    """
    Send a user turn and receive the assistant's structured reply.

    Flow:
      1. 404 if the session does not exist
      2. Load the last HISTORY_WINDOW stored messages (before this turn)
      3. Persist the user message
      4. Generate the reply via Mistral (GenerationFailure → 500; user message stays stored)
      5. Persist the assistant message with its structured metadata
      6. Touch the session so updatedAt advances
    """
    session = await require_session(store, session_id)

    previous = await with_store_retry(store.list_messages, session_id)
    history = build_history(previous, HISTORY_WINDOW)

    user_message = await with_store_retry(
        store.create_message, session_id, MessageRole.user, body.content
    )

    reply = await generate_response(
        mistral,
        session.jurisdiction,
        session.currency,
        body.content,
        history,
        semaphore,
        model=settings.mistral_model,
        timeout_s=settings.generation_timeout_s,
    )

    assistant_message = await with_store_retry(
        store.create_message,
        session_id,
        MessageRole.assistant,
        reply.content,
        reply.to_metadata(),
    )
    await with_store_retry(store.update_session, session_id)

    logger.info(
        "Conversation turn complete session_id=%d user_message_id=%d assistant_message_id=%d",
        session_id, user_message.id, assistant_message.id,
    )
    return SendMessageResponse(
        user_message=user_message,
        assistant_message=assistant_message,
        ai_response=reply,
    )


@router.get("/{session_id}/summary", response_model=SessionSummary)
async def session_summary_endpoint(
    session_id: int,
    store: RecordStore = Depends(get_store),
) -> SessionSummary:
    """
    Derived view of the session: message counts, latest thinking mode,
    latest insights / action items / next questions, categories seen so far,
    and the categories of stored session data.
    """
    session = await require_session(store, session_id)
    messages = await with_store_retry(store.list_messages, session_id)
    data = await with_store_retry(store.list_session_data, session_id)
    summary = build_session_summary(session, messages, data)
    logger.info(
        "Session summary request session_id=%d messages=%d",
        session_id, summary.message_count,
    )
    return summary
