from __future__ import annotations

import logging
import os
from typing import Any, Optional

from openai import OpenAI, OpenAIError

from src.core.errors import ProviderError

log = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class AdvisorError(ProviderError):
    pass


def openrouter_api_key() -> str:
    return (os.environ.get("OPENROUTER_API_KEY") or "").strip()


def extract_message_text(completion: Any) -> str:
    """
    Pull assistant text from a chat completion.

    Content may be a plain string, a list of parts (strings or {"text": ...}),
    or a single {"text": ...} object; SDK objects and raw dicts are both accepted.
    """

    def _get(obj: Any, key: str) -> Any:
        if isinstance(obj, dict):
            return obj.get(key)
        return getattr(obj, key, None)

    choices = _get(completion, "choices") or []
    if not choices:
        return ""
    message = _get(choices[0], "message")
    content = _get(message, "content") if message is not None else None
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
                continue
            text = _get(part, "text")
            parts.append(text if isinstance(text, str) else "")
        return "".join(parts).strip()
    if content is not None:
        text = _get(content, "text")
        if isinstance(text, str):
            return text
    return ""


class OpenRouterClient:
    """Chat completions through OpenRouter's OpenAI-compatible endpoint."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        referer: str | None = None,
        title: str = "Rocket Bucks AI",
        base_url: str = OPENROUTER_BASE_URL,
    ) -> None:
        self.api_key = (api_key or openrouter_api_key()).strip()
        self.referer = referer
        self.title = title
        self.base_url = base_url
        self._client: Optional[OpenAI] = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _openai(self) -> OpenAI:
        if self._client is None:
            headers = {"X-Title": self.title}
            if self.referer:
                headers["HTTP-Referer"] = self.referer
            self._client = OpenAI(base_url=self.base_url, api_key=self.api_key, default_headers=headers)
        return self._client

    def chat(
        self,
        *,
        model: str,
        messages: list[dict[str, str]],
        temperature: float,
        max_tokens: int,
        top_p: float,
    ) -> str:
        if not self.configured:
            raise AdvisorError("OPENROUTER_API_KEY is not set.")
        try:
            completion = self._openai().chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                top_p=top_p,
            )
        except OpenAIError as e:
            log.error("OpenRouter error: %s", type(e).__name__)
            raise AdvisorError(str(e)) from e
        return extract_message_text(completion).strip()
