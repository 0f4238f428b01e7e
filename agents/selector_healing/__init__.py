"""Selector healing: find the broken locator, ask for a fix, patch it in."""

from agents.selector_healing.advisor import (
    CorrectionAdvisor,
    HttpPageFetcher,
    PageFetcher,
)
from agents.selector_healing.extractor import (
    LocatorExtractor,
    LocatorTarget,
    extract_locator,
    extract_page_url,
)
from agents.selector_healing.patcher import ArtifactPatcher, PatchResult, replace_locator

__all__ = [
    "ArtifactPatcher",
    "CorrectionAdvisor",
    "HttpPageFetcher",
    "LocatorExtractor",
    "LocatorTarget",
    "PageFetcher",
    "PatchResult",
    "extract_locator",
    "extract_page_url",
    "replace_locator",
]
