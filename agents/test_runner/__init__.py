"""Test Runner Adapter – runs the Playwright suite in a checkout.

A non-zero exit code is how Playwright says "some tests failed"; it is
never treated as an error here.  The JSON report is the source of truth.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import subprocess
import time
from pathlib import Path

from agents.test_runner.report_parser import parse_report
from shared.schemas import TestRunResult

logger = logging.getLogger(__name__)

DEFAULT_REPORT_PATH = "test-results/results.json"
DEFAULT_TEST_TIMEOUT = 600
DEFAULT_INSTALL_TIMEOUT = 600


class PlaywrightRunner:
    """Runs ``npx playwright test`` and parses its JSON report."""

    name = "test_runner"

    def __init__(
        self,
        timeout: float = DEFAULT_TEST_TIMEOUT,
        headed: bool = True,
        report_path: str = DEFAULT_REPORT_PATH,
        install_timeout: float = DEFAULT_INSTALL_TIMEOUT,
    ):
        self.timeout = timeout
        self.headed = headed
        self.report_path = report_path
        self.install_timeout = install_timeout

    def command(self) -> list[str]:
        cmd = ["npx", "playwright", "test"]
        if self.headed:
            cmd.append("--headed")
        cmd.append("--reporter=json")
        return cmd

    # -- Dependencies ---------------------------------------------------

    async def install_dependencies(self, checkout: str | Path) -> bool:
        """``npm install`` in *checkout*.  Failures are only warnings."""
        root = Path(checkout)
        if not (root / "package.json").is_file():
            logger.info("[Runner] No package.json in %s; skipping npm install", root)
            return False

        logger.info("[Runner] npm install in %s", root)
        try:
            proc = await asyncio.to_thread(
                subprocess.run,
                ["npm", "install"],
                cwd=str(root),
                capture_output=True,
                text=True,
                timeout=self.install_timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("[Runner] npm install timed out after %ss", self.install_timeout)
            return False
        except OSError as exc:
            logger.warning("[Runner] npm install could not start: %s", exc)
            return False

        if proc.returncode != 0:
            logger.warning(
                "[Runner] npm install exited %d (continuing): %s",
                proc.returncode, (proc.stderr or "").strip()[-500:],
            )
            return False
        return True

    # -- Run ------------------------------------------------------------

    async def run(self, checkout: str | Path) -> TestRunResult:
        root = Path(checkout)
        report_file = root / self.report_path
        report_file.unlink(missing_ok=True)

        env = {
            **os.environ,
            "PLAYWRIGHT_JSON_OUTPUT_NAME": str(report_file),
            "HEADED": "true" if self.headed else "false",
        }
        cmd = self.command()
        logger.info("[Runner] %s (cwd=%s, timeout=%ss)", " ".join(cmd), root, self.timeout)

        t0 = time.monotonic()
        try:
            proc = await asyncio.to_thread(
                subprocess.run,
                cmd,
                cwd=str(root),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            duration = time.monotonic() - t0
            logger.error("[Runner] Test run timed out after %.0fs", duration)
            return TestRunResult.empty("timed_out", duration)
        except OSError as exc:
            duration = time.monotonic() - t0
            logger.error("[Runner] Could not start test runner: %s", exc)
            return TestRunResult.empty("no_report", duration)

        duration = time.monotonic() - t0
        if proc.returncode != 0:
            logger.info("[Runner] Playwright exited %d (test failures expected)", proc.returncode)

        report = self._load_report(report_file, proc.stdout)
        if report is None:
            logger.warning(
                "[Runner] DEGRADED: no readable report at %s; reporting empty result",
                report_file,
            )
            return TestRunResult.empty("no_report", duration)

        result = parse_report(report, checkout=root, duration_s=duration)
        logger.info(
            "[Runner] %d total, %d passed, %d failed (%.1fs)",
            result.total, result.passed, result.failed, duration,
        )
        return result

    @staticmethod
    def _load_report(report_file: Path, stdout: str | None) -> dict | None:
        sources: list[str] = []
        try:
            sources.append(report_file.read_text(encoding="utf-8"))
        except OSError as exc:
            logger.debug("[Runner] Report file unreadable: %s", exc)
        if stdout and stdout.lstrip().startswith("{"):
            sources.append(stdout)

        for text in sources:
            try:
                data = json.loads(text)
            except json.JSONDecodeError as exc:
                logger.debug("[Runner] Report is not valid JSON: %s", exc)
                continue
            if isinstance(data, dict):
                return data
        return None


__all__ = ["PlaywrightRunner", "parse_report"]
