"""Correction Advisor – asks the model for a replacement locator.

Each call does exactly one page fetch and one model call.  Every failure
(network, HTTP status, unparsable or incomplete answer) surfaces as an
``AdvisoryError`` so the caller can skip this one failure and move on;
a broken answer is never dressed up as a low-confidence suggestion.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from agents.errors import AdvisoryError, LLMError, PageFetchError
from agents.llm import LLMClient, parse_json_object
from shared.determinism import MAX_TOKENS_ADVISORY
from shared.schemas import CONFIDENCE_LEVELS, LocatorCorrection

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 10.0
DEFAULT_HTML_LIMIT = 5000

_REQUIRED_FIELDS = ("originalSelector", "suggestedSelector", "confidence", "explanation")

ADVISORY_PROMPT = """You are an expert in Playwright and CSS/XPath selectors.

TASK: The following selector FAILED in a Playwright test:
Failed Selector: {locator}

The error indicates this selector does not exist on the page. Analyze the HTML
below and suggest a CORRECT selector that finds the intended element.

PAGE HTML (relevant section):
{markup}

REQUIREMENTS:
1. Return ONLY a JSON object with this exact structure:
{{
  "originalSelector": "{locator}",
  "suggestedSelector": "<CSS selector or XPath that should work>",
  "elementType": "<button/input/link/etc>",
  "confidence": "<high/medium/low>",
  "explanation": "<brief explanation of what changed>"
}}
2. Prefer CSS selectors over XPath when possible.
3. Use data-testid or id attributes if available.
4. Return ONLY valid JSON, no markdown, no explanation text.
"""


# ── Page fetching ────────────────────────────────────────────────────

class PageFetcher(ABC):
    @abstractmethod
    async def fetch(self, url: str) -> str:
        ...


class HttpPageFetcher(PageFetcher):
    """GET the page once with a bounded timeout; no retries."""

    def __init__(
        self,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, url: str) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                return resp.text
        except httpx.HTTPError as exc:
            raise PageFetchError(f"Could not fetch {url}: {exc}") from exc


# ── Advisor ──────────────────────────────────────────────────────────

class CorrectionAdvisor:
    """Turns (locator, page URL) into a validated ``LocatorCorrection``."""

    def __init__(
        self,
        llm: LLMClient,
        fetcher: PageFetcher | None = None,
        html_limit: int = DEFAULT_HTML_LIMIT,
    ):
        self.llm = llm
        self.fetcher = fetcher or HttpPageFetcher()
        self.html_limit = html_limit

    async def advise(self, locator: str, page_url: str) -> LocatorCorrection:
        logger.info("[Advisor] Fetching page markup from %s", page_url)
        markup = await self.fetcher.fetch(page_url)
        if not markup or not markup.strip():
            raise PageFetchError(f"Empty page body from {page_url}")

        prompt = self.build_prompt(locator, markup)
        try:
            raw = await self.llm.complete(prompt, max_tokens=MAX_TOKENS_ADVISORY)
        except LLMError as exc:
            raise AdvisoryError(str(exc)) from exc

        correction = self.parse_response(raw)
        logger.info(
            "[Advisor] %s -> %s (confidence=%s)",
            correction.original_locator,
            correction.suggested_locator,
            correction.confidence,
        )
        return correction

    def build_prompt(self, locator: str, markup: str) -> str:
        return ADVISORY_PROMPT.format(
            locator=locator,
            markup=markup[: self.html_limit],
        )

    @staticmethod
    def parse_response(raw: str) -> LocatorCorrection:
        """Validate a raw model answer into a ``LocatorCorrection``."""
        try:
            data = parse_json_object(raw)
        except ValueError as exc:
            raise AdvisoryError(f"Unparsable advisory response: {exc}") from exc

        missing = [k for k in _REQUIRED_FIELDS if not isinstance(data.get(k), str)]
        if missing:
            raise AdvisoryError(f"Advisory response missing fields: {', '.join(missing)}")

        confidence = data["confidence"].strip().lower()
        if confidence not in CONFIDENCE_LEVELS:
            raise AdvisoryError(f"Unknown confidence level: {data['confidence']!r}")

        original = data["originalSelector"].strip()
        suggested = data["suggestedSelector"].strip()
        if not original or not suggested:
            raise AdvisoryError("Advisory response has an empty selector")

        element_type = data.get("elementType")
        return LocatorCorrection(
            original_locator=original,
            suggested_locator=suggested,
            confidence=confidence,
            explanation=data["explanation"].strip(),
            element_type=element_type if isinstance(element_type, str) else "",
        )
