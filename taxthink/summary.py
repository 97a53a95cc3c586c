"""
summary.py — derived session view for GET /api/sessions/{id}/summary.

Pure function over already-loaded records; no store access here.
The "latest" insight/action/question lists come from the newest assistant
message that carries metadata, matching what the chat sidebar shows.
"""
from typing import Sequence

from taxthink.schemas import MessageRole, Message, SessionDatum, SessionSummary, TaxSession


def build_session_summary(
    session: TaxSession,
    messages: Sequence[Message],
    data: Sequence[SessionDatum],
) -> SessionSummary:
    user_count = sum(1 for m in messages if m.role == MessageRole.user)
    assistant_with_meta = [
        m for m in messages
        if m.role == MessageRole.assistant and m.metadata is not None
    ]
    latest = assistant_with_meta[-1].metadata if assistant_with_meta else None

    # First-seen order, de-duplicated
    categories: list[str] = []
    for message in assistant_with_meta:
        for category in message.metadata.categories:
            if category not in categories:
                categories.append(category)

    data_categories: list[str] = []
    for datum in data:
        if datum.category not in data_categories:
            data_categories.append(datum.category)

    return SessionSummary(
        session_id=session.id,
        message_count=len(messages),
        user_message_count=user_count,
        assistant_message_count=len(messages) - user_count,
        thinking_mode=latest.thinking_mode if latest else None,
        categories=categories,
        key_insights=list(latest.key_insights) if latest else [],
        action_items=list(latest.action_items) if latest else [],
        next_questions=list(latest.next_questions) if latest else [],
        data_categories=data_categories,
        last_activity_at=session.updated_at,
    )
