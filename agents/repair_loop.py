"""Repair Loop – run, correct broken locators, rerun.

Phases:  Initial → Corrected → Retried → Done

* Initial:   run the whole suite once.
* Corrected: for each failure, in order, extract the locator and page,
             ask the advisor, and patch medium/high confidence answers.
             A failure in one attempt never affects the next one.
* Retried:   rerun the suite, but only if at least one correction was
             applied.  With a retry budget above 1 another Corrected /
             Retried cycle follows only while the rerun still fails and
             did reduce the number of failures.
* Done:      return the ``RunOutcome``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from agents.base import ProgressCallback, emit
from agents.errors import AdvisoryError, PatchError
from agents.selector_healing import (
    ArtifactPatcher,
    CorrectionAdvisor,
    LocatorExtractor,
)
from shared.schemas import AppliedCorrection, FailedTest, RunOutcome, TestRunResult

logger = logging.getLogger(__name__)

INITIAL = "initial"
CORRECTED = "corrected"
RETRIED = "retried"
DONE = "done"

DEFAULT_MAX_RETRIES = 1


class TestRunner(Protocol):
    __test__ = False

    async def run(self, checkout: str | Path) -> TestRunResult:
        ...


class RepairLoopController:
    """Drives one execute-and-repair cycle against a checkout."""

    name = "repair_loop"

    def __init__(
        self,
        runner: TestRunner,
        advisor: CorrectionAdvisor,
        extractor: LocatorExtractor | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        on_progress: ProgressCallback = None,
    ):
        self.runner = runner
        self.advisor = advisor
        self.extractor = extractor or LocatorExtractor()
        self.max_retries = max(0, max_retries)
        self.on_progress = on_progress
        self.phase = INITIAL

    async def run(self, checkout: str | Path) -> RunOutcome:
        checkout = Path(checkout)
        patcher = ArtifactPatcher(checkout)
        start = datetime.now(timezone.utc)

        self._enter(INITIAL, "Running tests")
        initial = await self.runner.run(checkout)
        current = initial
        applied: list[AppliedCorrection] = []
        reruns = 0

        while (
            reruns < self.max_retries
            and current.status == "completed"
            and current.failed > 0
        ):
            self._enter(
                CORRECTED,
                f"Analysing {current.failed} failed test(s) for broken locators",
            )
            round_applied = await self.correct_failures(
                checkout, current.failed_tests, patcher
            )
            if not round_applied:
                logger.info("[RepairLoop] No corrections applied; skipping rerun")
                break
            applied.extend(round_applied)

            self._enter(
                RETRIED,
                f"Re-running tests after {len(round_applied)} correction(s)",
            )
            rerun = await self.runner.run(checkout)
            reruns += 1

            improved = rerun.status == "completed" and rerun.failed < current.failed
            current = rerun
            if not improved:
                break

        outcome = RunOutcome(
            initial=initial,
            final=current,
            applied_corrections=applied,
            reruns=reruns,
            start_time=start,
            end_time=datetime.now(timezone.utc),
        )
        self._enter(
            DONE,
            f"{current.passed}/{current.total} passed, "
            f"{len(applied)} correction(s), {reruns} rerun(s)",
        )
        return outcome

    async def correct_failures(
        self,
        checkout: Path,
        failures: list[FailedTest],
        patcher: ArtifactPatcher,
    ) -> list[AppliedCorrection]:
        """Try one correction per failure, sequentially."""
        applied: list[AppliedCorrection] = []
        for failed in failures:
            try:
                correction = await self._attempt(checkout, failed, patcher)
            except (AdvisoryError, PatchError) as exc:
                logger.warning("[RepairLoop] Skipping '%s': %s", failed.name, exc)
                continue
            except Exception as exc:
                logger.warning(
                    "[RepairLoop] Skipping '%s' after unexpected error: %s",
                    failed.name, exc, exc_info=True,
                )
                continue
            if correction is not None:
                applied.append(correction)
        return applied

    async def _attempt(
        self,
        checkout: Path,
        failed: FailedTest,
        patcher: ArtifactPatcher,
    ) -> AppliedCorrection | None:
        if not failed.file:
            logger.info("[RepairLoop] '%s' has no test file; skipping", failed.name)
            return None

        try:
            source = (checkout / failed.file).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise PatchError(f"Cannot read test file {failed.file}: {exc}") from exc
        target = self.extractor.extract(failed, source)
        if target is None:
            return None

        correction = await self.advisor.advise(target.locator, target.page_url)
        if not correction.is_applicable:
            logger.info(
                "[RepairLoop] %s confidence for '%s'; not applied",
                correction.confidence, target.locator,
            )
            return None

        if correction.original_locator != target.locator:
            logger.debug(
                "[RepairLoop] Advisor echoed '%s'; patching extracted '%s'",
                correction.original_locator, target.locator,
            )
            correction = replace(correction, original_locator=target.locator)

        result = patcher.apply(failed.file, correction)
        if not result.changed:
            return None

        return AppliedCorrection(
            test=failed.name,
            file=result.file,
            original_locator=correction.original_locator,
            new_locator=correction.suggested_locator,
        )

    def _enter(self, phase: str, message: str) -> None:
        self.phase = phase
        logger.info("[RepairLoop] %s: %s", phase, message)
        emit(self.on_progress, self.name, phase, message)
