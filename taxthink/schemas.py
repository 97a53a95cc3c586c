"""
schemas.py — Pydantic v2 data contracts shared by the store, the
conversation service and the HTTP layer.

Defines:
  - Jurisdiction / Currency / SessionStatus / MessageRole enums
  - TaxSession, Message, MessageMetadata, SessionDatum  (stored records)
  - StructuredReply                                     (conversation service output)
  - CreateSessionRequest, UpdateSessionRequest,
    SendMessageRequest, SessionDataRequest              (request bodies)
  - SessionCreatedResponse, SendMessageResponse,
    SessionSummary                                      (response envelopes)

Python attributes are snake_case; JSON on the wire is camelCase
(alias_generator=to_camel). populate_by_name lets callers use either.
"""
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Jurisdiction(str, Enum):
    us = "us"
    in_ = "in"


class Currency(str, Enum):
    usd = "usd"
    inr = "inr"


class SessionStatus(str, Enum):
    active = "active"
    completed = "completed"


class MessageRole(str, Enum):
    user = "user"
    assistant = "assistant"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------

class TaxSession(_CamelModel):
    """A single tax conversation. updated_at >= created_at always."""

    id: int
    title: str
    jurisdiction: Jurisdiction
    currency: Currency
    status: SessionStatus = SessionStatus.active
    created_at: datetime
    updated_at: datetime


class MessageMetadata(_CamelModel):
    """
    Structured output attached to assistant messages.
    Unknown keys are kept as-is so older/newer clients can round-trip them.
    """
    model_config = ConfigDict(extra="allow")

    thinking_mode: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    action_items: List[str] = Field(default_factory=list)
    key_insights: List[str] = Field(default_factory=list)
    next_questions: List[str] = Field(default_factory=list)


class Message(_CamelModel):
    """One conversation turn. Immutable after creation."""

    id: int
    session_id: int
    role: MessageRole
    content: str
    metadata: Optional[MessageMetadata] = None
    created_at: datetime


class SessionDatum(_CamelModel):
    """A keyed value captured for a session; unique per (session_id, category, data_key)."""

    id: int
    session_id: int
    category: str
    data_key: str
    data_value: Any
    updated_at: datetime


# ---------------------------------------------------------------------------
# Conversation service output
# ---------------------------------------------------------------------------

class StructuredReply(_CamelModel):
    """
    The six-field assistant turn produced by the conversation service.

    Field defaults for missing model output are applied in
    conversation.llm_service.parse_structured_reply, not here, so that a
    malformed reply is never silently accepted by validation alone.
    """
    model_config = ConfigDict(extra="ignore")

    content: str
    thinking_mode: str
    categories: List[str]
    action_items: List[str]
    key_insights: List[str]
    next_questions: List[str]

    def to_metadata(self) -> MessageMetadata:
        return MessageMetadata(
            thinking_mode=self.thinking_mode,
            categories=list(self.categories),
            action_items=list(self.action_items),
            key_insights=list(self.key_insights),
            next_questions=list(self.next_questions),
        )


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class CreateSessionRequest(_CamelModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(..., min_length=1, max_length=200)
    jurisdiction: Jurisdiction = Jurisdiction.us
    currency: Currency = Currency.usd


class UpdateSessionRequest(_CamelModel):
    """Partial session update. Omitted and null fields are left untouched."""
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    jurisdiction: Optional[Jurisdiction] = None
    currency: Optional[Currency] = None
    status: Optional[SessionStatus] = None


class SendMessageRequest(_CamelModel):
    model_config = ConfigDict(extra="ignore")

    content: str = Field(..., min_length=1, max_length=8000)


class SessionDataRequest(_CamelModel):
    model_config = ConfigDict(extra="ignore")

    category: str = Field(..., min_length=1, max_length=100)
    data_key: str = Field(..., min_length=1, max_length=200)
    data_value: Any = Field(..., description="Any JSON value except null")

    @field_validator("data_value")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("dataValue must not be null")
        return value


# ---------------------------------------------------------------------------
# Response envelopes
# ---------------------------------------------------------------------------

class SessionCreatedResponse(_CamelModel):
    session: TaxSession
    welcome_message: StructuredReply


class SendMessageResponse(_CamelModel):
    user_message: Message
    assistant_message: Message
    ai_response: StructuredReply


class SessionSummary(_CamelModel):
    """Derived view over a session's messages and data (see summary.py)."""

    session_id: int
    message_count: int
    user_message_count: int
    assistant_message_count: int
    thinking_mode: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    key_insights: List[str] = Field(default_factory=list)
    action_items: List[str] = Field(default_factory=list)
    next_questions: List[str] = Field(default_factory=list)
    data_categories: List[str] = Field(default_factory=list)
    last_activity_at: Optional[datetime] = None


__all__ = [
    "Jurisdiction",
    "Currency",
    "SessionStatus",
    "MessageRole",
    "TaxSession",
    "MessageMetadata",
    "Message",
    "SessionDatum",
    "StructuredReply",
    "CreateSessionRequest",
    "UpdateSessionRequest",
    "SendMessageRequest",
    "SessionDataRequest",
    "SessionCreatedResponse",
    "SendMessageResponse",
    "SessionSummary",
]
