"""Test Executor Agent – Execute stage.

Prepares a fresh checkout (the published test branch when there is one),
installs dependencies, runs the repair loop and, when locators were
corrected, publishes the patched files as a second pull request.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Protocol

from agents.base import AgentResult, BaseAgent
from agents.repair_loop import DEFAULT_MAX_RETRIES, RepairLoopController, TestRunner
from agents.selector_healing import CorrectionAdvisor, LocatorExtractor
from shared.schemas import AppliedCorrection

logger = logging.getLogger(__name__)


class CheckoutPublisher(Protocol):
    def prepare_checkout(self, repo_dir: Path, branch: str | None = None) -> Path:
        ...

    def publish_corrections(
        self, repo_dir: Path, issue_key: str, corrections: list[AppliedCorrection]
    ) -> str | None:
        ...


class TestExecutorAgent(BaseAgent):
    """Execute stage: ``checkout``/``branch`` in, ``outcome`` out."""

    __test__ = False
    name = "test_executor"

    def __init__(
        self,
        runner: TestRunner,
        advisor: CorrectionAdvisor,
        publisher: CheckoutPublisher,
        page_base_url: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        install_dependencies: bool = True,
    ):
        self.runner = runner
        self.advisor = advisor
        self.publisher = publisher
        self.page_base_url = page_base_url
        self.max_retries = max_retries
        self.install_dependencies = install_dependencies

    async def run(self, context: dict[str, Any]) -> AgentResult:
        issue_key: str = context["issue"].key
        checkout = Path(context["checkout"])
        branch: str | None = context.get("branch")

        logger.info(
            "[Execute] Preparing checkout %s (branch=%s)", checkout, branch or "default",
        )
        await asyncio.to_thread(self.publisher.prepare_checkout, checkout, branch)

        if self.install_dependencies and hasattr(self.runner, "install_dependencies"):
            await self.runner.install_dependencies(checkout)

        loop = RepairLoopController(
            runner=self.runner,
            advisor=self.advisor,
            extractor=LocatorExtractor(self.page_base_url),
            max_retries=self.max_retries,
            on_progress=context.get("on_progress"),
        )
        outcome = await loop.run(checkout)

        if outcome.applied_corrections:
            try:
                outcome.correction_pr_url = await asyncio.to_thread(
                    self.publisher.publish_corrections,
                    checkout, issue_key, outcome.applied_corrections,
                )
            except Exception as exc:
                logger.warning("[Execute] Could not publish corrections: %s", exc)

        final = outcome.final
        return AgentResult(
            agent_name=self.name,
            status="success" if final.all_passed else "failure",
            summary=(
                f"{final.passed}/{final.total} passed, {final.failed} failed "
                f"({final.status}); {len(outcome.applied_corrections)} correction(s)"
            ),
            details={"outcome": outcome},
        )
