"""
deps.py — FastAPI dependencies and helpers shared by the routers.

app.state resources (store, mistral, generation_semaphore) are set in
main.py lifespan; tests assign them directly.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from fastapi import HTTPException, Request
from mistralai import Mistral

from taxthink.errors import StoreUnavailable
from taxthink.schemas import TaxSession
from taxthink.store import RecordStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_mistral(request: Request) -> Mistral:
    return request.app.state.mistral


def get_generation_semaphore(request: Request) -> asyncio.Semaphore:
    return request.app.state.generation_semaphore


async def with_store_retry(operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
    """
    Run a store operation, retrying exactly once on StoreUnavailable.
    A second failure propagates to the StoreUnavailable handler (500).
    """
    try:
        return await operation(*args, **kwargs)
    except StoreUnavailable:
        logger.warning("Store unavailable during %s — retrying once", operation.__name__)
        return await operation(*args, **kwargs)


async def require_session(store: RecordStore, session_id: int) -> TaxSession:
    """Fetch a session or raise 404."""
    session = await with_store_retry(store.get_session, session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session
