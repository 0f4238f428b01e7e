"""Language-model capability injected into every prompt-driven component.

Components never talk to a vendor SDK directly: they receive an
``LLMClient`` at construction time.  Production wiring uses
:class:`OpenAICompatibleClient` (any ``/chat/completions`` endpoint);
tests pass a fake that returns canned text.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx

from agents.errors import LLMError
from shared.determinism import LLM_DETERMINISTIC_PARAMS

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^\s*```[\w-]*\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?\s*```\s*$")


class LLMClient(ABC):
    """Prompt in, text out."""

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = 1000,
    ) -> str:
        ...


class OpenAICompatibleClient(LLMClient):
    """Calls an OpenAI-compatible chat-completions endpoint over httpx."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = 1000,
    ) -> str:
        if not self.api_key:
            raise LLMError("LLM_API_KEY is not set")

        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        logger.debug(
            "[LLM] POST %s/chat/completions | model=%s | prompt_chars=%d",
            self.base_url, self.model, len(prompt),
        )
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": self.model,
                        "max_tokens": max_tokens,
                        **LLM_DETERMINISTIC_PARAMS,
                        "messages": messages,
                    },
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as exc:
            raise LLMError(f"LLM request failed: {exc}") from exc
        except ValueError as exc:
            raise LLMError(f"LLM returned a non-JSON body: {exc}") from exc

        try:
            return data["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise LLMError(f"Unexpected completion shape: {str(data)[:200]}") from exc


# ── Response helpers ─────────────────────────────────────────────────

def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json … ``` wrapper if the model added one."""
    text = text.strip()
    if text.startswith("```"):
        text = _FENCE_OPEN.sub("", text, count=1)
        text = _FENCE_CLOSE.sub("", text, count=1)
    return text.strip()


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse a model response that must contain exactly one JSON object.

    Falls back to the outermost ``{…}`` span when the model wrapped the
    object in prose.  Raises ``ValueError`` when no object can be read.
    """
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("no JSON object in response")
        data = json.loads(cleaned[start:end + 1])

    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data
