from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from src.adapters.openrouter.client import AdvisorError, OpenRouterClient
from src.rocketbucks.config import AppConfig, get_app_config
from src.rocketbucks.insights import build_financial_context, summarize_context_for_prompt

log = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are Rocket Bucks AI, a fiduciary-quality financial coach. Provide concise and actionable guidance "
    "covering budgets, savings, debt payoff, investing, and bill negotiation. Use Markdown formatting with "
    "short headings, numbered steps, and bullet lists when helpful. Reference exact numbers from the financial "
    "snapshot or chat history and acknowledge when information is unavailable. Encourage healthy financial "
    "habits and note that users should double-check details before acting."
)

_HISTORY_ROLES = {"user", "assistant", "ai"}


class EmptyAdvice(AdvisorError):
    pass


def normalize_history(conversation: Any, *, max_history: int, max_chars: int) -> list[dict[str, str]]:
    """Keep the tail of well-formed chat turns; "ai" turns become "assistant"."""
    if not isinstance(conversation, list):
        return []
    kept = [
        e
        for e in conversation
        if isinstance(e, dict) and isinstance(e.get("content"), str) and e.get("role") in _HISTORY_ROLES
    ]
    if max_history > 0:
        kept = kept[-max_history:]
    else:
        kept = []
    return [
        {"role": "user" if e["role"] == "user" else "assistant", "content": e["content"][:max_chars]} for e in kept
    ]


def build_messages(message: str, *, context_summary: str, history: list[dict[str, str]]) -> list[dict[str, str]]:
    snapshot = (
        f"Financial snapshot:\n{context_summary}\n"
        "Only rely on these values unless the user provides newer numbers."
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "system", "content": snapshot},
        *history,
        {"role": "user", "content": message},
    ]


def run_chat(
    session: Session,
    *,
    user_id: str,
    message: str,
    conversation: Any,
    client: OpenRouterClient,
    cfg: Optional[AppConfig] = None,
    now: Optional[dt.datetime] = None,
) -> dict[str, Any]:
    """
    Answer one advisor turn grounded in the user's current financial snapshot.

    Raises AdvisorError when the provider fails and EmptyAdvice when it returns no text.
    """
    c = cfg or get_app_config()
    a = c.advisor
    text = message.strip()[: a.max_message_chars]
    log.info("AI chat: generating advice for user %s", user_id)

    ctx = build_financial_context(session, user_id=user_id, now=now)
    summary = summarize_context_for_prompt(ctx)
    history = normalize_history(conversation, max_history=a.max_history, max_chars=a.max_message_chars)

    model = c.advisor_model()
    reply = client.chat(
        model=model,
        messages=build_messages(text, context_summary=summary, history=history),
        temperature=a.temperature,
        max_tokens=a.max_tokens,
        top_p=a.top_p,
    )
    if not reply:
        raise EmptyAdvice("AI advisor returned an empty response.")

    return {
        "message": reply,
        "model": model,
        "context": {
            "netWorth": ctx["totals"]["net_worth"],
            "totalAssets": ctx["totals"]["total_assets"],
            "totalLiabilities": ctx["totals"]["total_liabilities"],
            "monthlySpending": ctx["spending"]["total_spending_30"],
            "monthlyIncome": ctx["spending"]["total_income_30"],
            "spendingChange": ctx["spending"]["spending_change"],
            "recurringTotal": ctx["recurring"]["monthly_recurring"],
            "generatedAt": ctx["generated_at"],
        },
        "context_summary": summary,
    }
