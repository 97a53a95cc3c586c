"""
llm_service.py — Mistral async generation layer for TaxThink conversations.

Components:
  build_system_prompt()       — jurisdiction profile + JSON reply contract
  build_history()             — trailing stored messages → chat turns
  parse_structured_reply()    — JSON completion → StructuredReply with defaults
  generate_response()         — async Mistral call (semaphore + timeout)
  generate_welcome_message()  — deterministic first assistant turn, no API call

No module-level asyncio.Semaphore — semaphore is created in main.py lifespan
and passed as a parameter (avoids RuntimeError: no running event loop at import).

No HTTPException anywhere — this is pure business logic, HTTP layer is routes/.
Failures surface as GenerationFailure; nothing here retries.
"""
import asyncio
import json
import logging
from typing import Any, Optional, Sequence

from mistralai import Mistral
from pydantic import ValidationError

from taxthink.conversation.jurisdictions import get_profile
from taxthink.errors import GenerationFailure
from taxthink.schemas import Currency, Jurisdiction, Message, StructuredReply

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Mistral API constants
# ---------------------------------------------------------------------------

MISTRAL_TEMPERATURE = 0.7
MISTRAL_MAX_TOKENS = 2000
HISTORY_WINDOW = 10   # stored messages sent as context, newest last

# ---------------------------------------------------------------------------
# Reply defaults — applied to every missing or empty field of the model output
# ---------------------------------------------------------------------------

DEFAULT_CONTENT = (
    "I apologize, but I encountered an error processing your request. Please try again."
)
DEFAULT_THINKING_MODE = "General Tax Analysis"
LIST_FIELDS = ("categories", "actionItems", "keyInsights", "nextQuestions")

WELCOME_THINKING_MODE = "Welcome & Setup"


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------

def build_system_prompt(jurisdiction: Jurisdiction, currency: Currency) -> str:
    """
    Build the system instruction for one jurisdiction/currency pair.
    The JSON shape described here is what parse_structured_reply() expects back.
    """
    jurisdiction = Jurisdiction(jurisdiction)
    currency = Currency(currency)
    profile = get_profile(jurisdiction)

    return f"""You are TaxThink AI, an expert tax thinking companion specializing in {profile.tax_system}. Your role is to help users think through tax situations systematically by asking contextual questions and providing structured guidance.

CONTEXT: {profile.tax_system} with {profile.currency_label} currency.

KEY EXPERTISE AREAS:
{profile.key_areas}

COMMON DEDUCTIONS & CREDITS:
{profile.common_deductions}

COMPLIANCE REQUIREMENTS:
{profile.compliance_items}

YOUR APPROACH:
1. Ask targeted, contextual questions to gather necessary information
2. Break complex tax situations into manageable categories
3. Provide structured thinking frameworks
4. Identify optimization opportunities
5. Highlight compliance requirements and deadlines
6. Suggest actionable next steps

RESPONSE FORMAT:
Always respond with a JSON object containing:
{{
  "content": "Your main response with structured guidance and questions",
  "thinkingMode": "Current analysis focus (e.g., 'Business Tax Optimization', 'Personal Deduction Planning')",
  "categories": ["relevant tax categories being discussed"],
  "actionItems": ["specific tasks the user should complete"],
  "keyInsights": ["important findings or opportunities identified"],
  "nextQuestions": ["follow-up questions to ask based on user's response"]
}}

Remember to:
- Use {currency.value.upper()} currency format
- Reference appropriate {jurisdiction.value.upper()} tax codes and forms
- Consider jurisdiction-specific tax planning strategies
- Be professional but conversational
- Focus on practical, actionable guidance"""


def build_history(messages: Sequence[Message], window: int = HISTORY_WINDOW) -> list[dict]:
    """Convert the trailing `window` stored messages into chat turns, oldest first."""
    if window <= 0:
        return []
    return [
        {"role": m.role.value, "content": m.content}
        for m in list(messages)[-window:]
    ]


# ---------------------------------------------------------------------------
# Reply parsing
# ---------------------------------------------------------------------------

def _completion_text(content: Any) -> str:
    """Mistral returns either a plain string or a list of content chunks."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "".join(getattr(chunk, "text", "") or "" for chunk in content)


def parse_structured_reply(raw: Optional[str]) -> StructuredReply:
    """
    Parse the JSON completion into a StructuredReply.

    Missing or empty fields fall back to DEFAULT_CONTENT / DEFAULT_THINKING_MODE / [].
    An empty completion is treated as "{}".
    Raises GenerationFailure for non-JSON, non-object JSON, or wrongly-typed fields.
    """
    try:
        data = json.loads(raw or "{}")
    except json.JSONDecodeError as exc:
        raise GenerationFailure(f"Model returned invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise GenerationFailure(
            f"Model returned JSON {type(data).__name__}, expected an object"
        )

    filled = {
        "content": data.get("content") or DEFAULT_CONTENT,
        "thinkingMode": data.get("thinkingMode") or DEFAULT_THINKING_MODE,
    }
    for field in LIST_FIELDS:
        filled[field] = data.get(field) or []

    try:
        return StructuredReply.model_validate(filled)
    except ValidationError as exc:
        raise GenerationFailure(f"Model reply did not match the expected shape: {exc}") from exc


# ---------------------------------------------------------------------------
# Main async generation function
# ---------------------------------------------------------------------------

async def _complete(
    client: Mistral,
    semaphore: asyncio.Semaphore,
    model: str,
    messages: list[dict],
):
    async with semaphore:
        return await client.chat.complete_async(
            model=model,
            messages=messages,
            response_format={"type": "json_object"},
            temperature=MISTRAL_TEMPERATURE,
            max_tokens=MISTRAL_MAX_TOKENS,
        )


async def generate_response(
    client: Mistral,
    jurisdiction: Jurisdiction,
    currency: Currency,
    user_message: str,
    history: Sequence[dict],
    semaphore: asyncio.Semaphore,
    model: str,
    timeout_s: Optional[float] = None,
) -> StructuredReply:
    """
    Generate the next assistant turn from Mistral.

    Message order sent to the API:
      system prompt → history (already trimmed by caller, oldest first) → user_message

    Applies the shared semaphore for rate-limit protection. timeout_s
    (None = unbounded) covers the wait for a semaphore slot as well as the
    API call itself. Raises GenerationFailure on any API error, timeout,
    or unusable reply.
    """
    messages = [
        {"role": "system", "content": build_system_prompt(jurisdiction, currency)},
        *history,
        {"role": "user", "content": user_message},
    ]

    logger.info(
        "Calling Mistral API model=%s jurisdiction=%s history_turns=%d",
        model, Jurisdiction(jurisdiction).value, len(history),
    )

    try:
        response = await asyncio.wait_for(
            _complete(client, semaphore, model, messages),
            timeout=timeout_s,
        )
    except asyncio.TimeoutError as exc:
        logger.error("Mistral API call timed out after %ss", timeout_s)
        raise GenerationFailure(f"Generation timed out after {timeout_s}s") from exc
    except Exception as exc:
        logger.error("Mistral API call failed: %s", exc, exc_info=True)
        raise GenerationFailure(f"Failed to generate AI response: {exc}") from exc

    if response is None or not response.choices:
        raise GenerationFailure("Mistral returned no choices")

    raw = _completion_text(response.choices[0].message.content)
    logger.info("Mistral response received reply_len=%d", len(raw))

    reply = parse_structured_reply(raw)
    logger.info(
        "Structured reply parsed thinking_mode=%r categories=%d action_items=%d",
        reply.thinking_mode, len(reply.categories), len(reply.action_items),
    )
    return reply


# ---------------------------------------------------------------------------
# Welcome turn — local, no API call
# ---------------------------------------------------------------------------

def generate_welcome_message(jurisdiction: Jurisdiction, currency: Currency) -> StructuredReply:
    """Deterministic greeting persisted as the first assistant message of a session."""
    profile = get_profile(jurisdiction)
    currency_label = Currency(currency).value.upper()

    content = f"""Welcome! I'm your AI thinking companion for tax-related matters. I'm currently configured for **{profile.display_name}** tax jurisdiction with **{currency_label}** currency.

I can help you think through various tax scenarios including:
- Personal tax planning and optimization
- Business expense deductions and structuring
- Compliance requirements and deadlines
- {profile.welcome_examples}

What tax situation would you like to think through today? I'll ask contextual questions to help structure your thinking process."""

    return StructuredReply(
        content=content,
        thinking_mode=WELCOME_THINKING_MODE,
        categories=["setup"],
        action_items=["Describe your tax situation or ask a specific question"],
        key_insights=[f"Configured for {profile.display_name} tax context"],
        next_questions=["What specific tax area would you like to explore?"],
    )
