"""
test_llm_service.py — conversation service unit tests.

The Mistral client is a MagicMock whose chat.complete_async is an AsyncMock,
so these tests never reach the network.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import SAMPLE_REPLY, make_completion
from taxthink.conversation.jurisdictions import JURISDICTION_PROFILES, get_profile
from taxthink.conversation.llm_service import (
    DEFAULT_CONTENT,
    DEFAULT_THINKING_MODE,
    MISTRAL_MAX_TOKENS,
    MISTRAL_TEMPERATURE,
    build_history,
    build_system_prompt,
    generate_response,
    generate_welcome_message,
    parse_structured_reply,
)
from taxthink.errors import GenerationFailure
from taxthink.schemas import Currency, Jurisdiction, Message, MessageRole

MODEL = "mistral-test"


def _message(i: int, role: MessageRole) -> Message:
    return Message(
        id=i,
        session_id=1,
        role=role,
        content=f"turn {i}",
        created_at=datetime(2026, 1, 1, 12, 0, i, tzinfo=timezone.utc),
    )


# ---------------------------------------------------------------------------
# Jurisdiction profiles & prompts
# ---------------------------------------------------------------------------

def test_every_jurisdiction_has_a_profile() -> None:
    assert set(JURISDICTION_PROFILES) == set(Jurisdiction)
    assert get_profile("in").display_name == "India"
    with pytest.raises(ValueError):
        get_profile("uk")


@pytest.mark.parametrize(
    "jurisdiction, currency, expected",
    [
        ("us", "usd", ["United States federal and state tax system", "Form 1040", "Use USD currency format", "appropriate US tax codes"]),
        ("in", "inr", ["Indian tax system including Income Tax Act and GST", "Section 80C", "Use INR currency format", "appropriate IN tax codes"]),
    ],
)
def test_system_prompt_embeds_profile(jurisdiction: str, currency: str, expected: list[str]) -> None:
    prompt = build_system_prompt(Jurisdiction(jurisdiction), Currency(currency))
    for fragment in expected:
        assert fragment in prompt
    for field in ("content", "thinkingMode", "categories", "actionItems", "keyInsights", "nextQuestions"):
        assert f'"{field}"' in prompt


def test_build_history_keeps_last_ten_in_order() -> None:
    messages = [
        _message(i, MessageRole.user if i % 2 else MessageRole.assistant)
        for i in range(1, 13)
    ]
    history = build_history(messages)
    assert len(history) == 10
    assert history[0] == {"role": "user", "content": "turn 3"}
    assert history[-1] == {"role": "assistant", "content": "turn 12"}


def test_build_history_short_conversation() -> None:
    assert build_history([_message(1, MessageRole.assistant)]) == [
        {"role": "assistant", "content": "turn 1"}
    ]
    assert build_history([]) == []


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("raw", ["{}", "", None])
def test_parse_empty_reply_uses_defaults(raw) -> None:
    reply = parse_structured_reply(raw)
    assert reply.content == DEFAULT_CONTENT
    assert reply.thinking_mode == DEFAULT_THINKING_MODE
    assert reply.categories == []
    assert reply.action_items == []
    assert reply.key_insights == []
    assert reply.next_questions == []


def test_parse_partial_reply_fills_only_missing_fields() -> None:
    reply = parse_structured_reply('{"content": "Hi", "categories": ["gst"], "extra": 1}')
    assert reply.content == "Hi"
    assert reply.categories == ["gst"]
    assert reply.thinking_mode == DEFAULT_THINKING_MODE
    assert reply.next_questions == []


@pytest.mark.parametrize(
    "raw",
    [
        "not json at all",
        '["content"]',
        '{"content": "ok", "categories": "deductions"}',
    ],
)
def test_parse_unusable_reply_raises(raw: str) -> None:
    with pytest.raises(GenerationFailure):
        parse_structured_reply(raw)


# ---------------------------------------------------------------------------
# generate_response
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_response_sends_prompt_history_and_user_turn(mock_mistral: MagicMock) -> None:
    history = [
        {"role": "assistant", "content": "Welcome!"},
        {"role": "user", "content": "I freelance."},
    ]
    reply = await generate_response(
        mock_mistral, Jurisdiction.in_, Currency.inr, "What can I deduct?",
        history, asyncio.Semaphore(1), model=MODEL,
    )

    assert reply.content == SAMPLE_REPLY["content"]
    assert reply.action_items == SAMPLE_REPLY["actionItems"]

    kwargs = mock_mistral.chat.complete_async.await_args.kwargs
    assert kwargs["model"] == MODEL
    assert kwargs["temperature"] == MISTRAL_TEMPERATURE == 0.7
    assert kwargs["max_tokens"] == MISTRAL_MAX_TOKENS == 2000
    assert kwargs["response_format"] == {"type": "json_object"}

    sent = kwargs["messages"]
    assert [m["role"] for m in sent] == ["system", "assistant", "user", "user"]
    assert "Indian tax system" in sent[0]["content"]
    assert sent[-1] == {"role": "user", "content": "What can I deduct?"}


@pytest.mark.asyncio
async def test_generate_response_empty_object_yields_defaults(mock_mistral: MagicMock) -> None:
    mock_mistral.chat.complete_async.return_value = make_completion({})
    reply = await generate_response(
        mock_mistral, Jurisdiction.us, Currency.usd, "hello", [], asyncio.Semaphore(1), model=MODEL,
    )
    assert reply.content == DEFAULT_CONTENT
    assert reply.thinking_mode == "General Tax Analysis"
    assert (reply.categories, reply.action_items, reply.key_insights, reply.next_questions) == ([], [], [], [])


@pytest.mark.asyncio
async def test_generate_response_accepts_chunked_content(mock_mistral: MagicMock) -> None:
    chunks = [SimpleNamespace(text='{"content": "Split '), SimpleNamespace(text='reply"}')]
    mock_mistral.chat.complete_async.return_value = make_completion(chunks)
    reply = await generate_response(
        mock_mistral, Jurisdiction.us, Currency.usd, "hello", [], asyncio.Semaphore(1), model=MODEL,
    )
    assert reply.content == "Split reply"


@pytest.mark.asyncio
async def test_generate_response_wraps_api_errors(mock_mistral: MagicMock) -> None:
    mock_mistral.chat.complete_async.side_effect = RuntimeError("401 Unauthorized")
    with pytest.raises(GenerationFailure, match="401 Unauthorized"):
        await generate_response(
            mock_mistral, Jurisdiction.us, Currency.usd, "hello", [], asyncio.Semaphore(1), model=MODEL,
        )


@pytest.mark.asyncio
async def test_generate_response_invalid_json_fails(mock_mistral: MagicMock) -> None:
    mock_mistral.chat.complete_async.return_value = make_completion("Sure! Here is my answer.")
    with pytest.raises(GenerationFailure):
        await generate_response(
            mock_mistral, Jurisdiction.us, Currency.usd, "hello", [], asyncio.Semaphore(1), model=MODEL,
        )


@pytest.mark.asyncio
async def test_generate_response_times_out() -> None:
    async def hang(**kwargs):
        await asyncio.sleep(5)

    client = MagicMock()
    client.chat.complete_async = AsyncMock(side_effect=hang)
    with pytest.raises(GenerationFailure, match="timed out"):
        await generate_response(
            client, Jurisdiction.us, Currency.usd, "hello", [], asyncio.Semaphore(1),
            model=MODEL, timeout_s=0.05,
        )


@pytest.mark.asyncio
async def test_generate_response_timeout_covers_semaphore_wait(mock_mistral: MagicMock) -> None:
    busy = asyncio.Semaphore(0)
    with pytest.raises(GenerationFailure, match="timed out"):
        await generate_response(
            mock_mistral, Jurisdiction.us, Currency.usd, "hello", [], busy,
            model=MODEL, timeout_s=0.05,
        )
    mock_mistral.chat.complete_async.assert_not_awaited()


# ---------------------------------------------------------------------------
# Welcome turn
# ---------------------------------------------------------------------------

def test_welcome_message_us() -> None:
    reply = generate_welcome_message(Jurisdiction.us, Currency.usd)
    assert "United States" in reply.content
    assert "USD" in reply.content
    assert reply.thinking_mode == "Welcome & Setup"
    assert reply.categories == ["setup"]
    assert reply.action_items == ["Describe your tax situation or ask a specific question"]
    assert reply.key_insights == ["Configured for United States tax context"]
    assert reply.next_questions == ["What specific tax area would you like to explore?"]


def test_welcome_message_india_is_deterministic() -> None:
    first = generate_welcome_message(Jurisdiction.in_, Currency.inr)
    second = generate_welcome_message(Jurisdiction.in_, Currency.inr)
    assert first == second
    assert "**India**" in first.content
    assert "**INR**" in first.content
    assert "GST planning" in first.content
    assert first.key_insights == ["Configured for India tax context"]
