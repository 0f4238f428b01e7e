"""Locator Extractor – pulls the failing locator and target page out of text.

Only recognised locator constructions are matched; an arbitrary quoted
string in the error output is never mistaken for a selector.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse

from shared.schemas import FailedTest

logger = logging.getLogger(__name__)

# locator('…'), selector('…'), waitForSelector('…'), $('…'), $$('…'),
# getByTestId('…'); single, double or backtick quotes.
_LOCATOR_RE = re.compile(
    r"""(?:\blocator|\bselector|\bwaitForSelector|\bgetByTestId|\$\$|\$)"""
    r"""\(\s*(['"`])((?:(?!\1).)+)\1""",
    re.IGNORECASE,
)

_GOTO_RE = re.compile(r"""\.goto\(\s*(['"`])((?:(?!\1).)+)\1""")


@dataclass(frozen=True)
class LocatorTarget:
    """What the advisor needs to propose a replacement."""
    locator: str
    page_url: str


def extract_locator(error_text: str) -> str | None:
    """Return the first locator literal in *error_text*, or None."""
    if not error_text:
        return None
    match = _LOCATOR_RE.search(error_text)
    return match.group(2) if match else None


def extract_page_url(source_text: str, base_url: str | None = None) -> str | None:
    """Return the first ``.goto(…)`` target in *source_text*.

    Relative targets are resolved against *base_url*; without one they
    are treated as absent.
    """
    if not source_text:
        return None
    match = _GOTO_RE.search(source_text)
    if not match:
        return None

    url = match.group(2).strip()
    if urlparse(url).scheme in ("http", "https"):
        return url
    if base_url:
        return urljoin(base_url.rstrip("/") + "/", url.lstrip("/"))
    return None


class LocatorExtractor:
    """Combines locator and URL extraction for a single failed test."""

    def __init__(self, base_url: str | None = None):
        self.base_url = base_url or None

    def extract(self, failed: FailedTest, source_text: str) -> LocatorTarget | None:
        locator = extract_locator(failed.raw_error_message)
        if locator is None:
            logger.info("[Extractor] No locator in error output for '%s'", failed.name)
            return None

        page_url = extract_page_url(source_text, self.base_url)
        if page_url is None:
            logger.info("[Extractor] No page URL in %s", failed.file)
            return None

        return LocatorTarget(locator=locator, page_url=page_url)
