"""Playwright JSON report → ``TestRunResult``.

Two report shapes are understood:

* the flat shape ``suites[].tests[]`` where every test carries ``title``,
  ``file``, ``status`` and ``error.message``;
* Playwright's native JSON reporter shape, where suites nest
  (``suites[].suites[]``), tests live under ``specs[].tests[]`` and the
  per-attempt outcome sits in ``results[]``.

A test counts as passed only when its status is ``passed``, ``expected``
or ``flaky``; every other status (including ``skipped``) counts as failed.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePosixPath
from typing import Any

from shared.schemas import FailedTest, TestRunResult

logger = logging.getLogger(__name__)

PASSED_STATUSES = frozenset({"passed", "expected", "flaky"})
UNKNOWN_ERROR = "Unknown error"


def parse_report(
    report: dict[str, Any],
    checkout: str | Path | None = None,
    duration_s: float = 0.0,
) -> TestRunResult:
    """Flatten a Playwright report into pass/fail counts.

    Test file paths are made relative to *checkout* using the report's
    ``config.rootDir`` when both are known.
    """
    result = TestRunResult(duration_s=duration_s)
    root_prefix = _root_prefix(report, checkout)

    for suite in report.get("suites") or []:
        _walk_suite(suite, result, root_prefix, inherited_file="")
    return result


def _walk_suite(
    suite: dict[str, Any],
    result: TestRunResult,
    root_prefix: str,
    inherited_file: str,
) -> None:
    suite_file = suite.get("file") or inherited_file

    # flat shape
    for test in suite.get("tests") or []:
        name = test.get("title") or "unnamed test"
        file = _resolve(test.get("file") or suite_file, root_prefix)
        if test.get("status") in PASSED_STATUSES:
            result.record_passed()
        else:
            message = _error_message(test.get("error")) or UNKNOWN_ERROR
            result.record_failed(FailedTest(name=name, file=file, raw_error_message=message))

    # native shape
    for spec in suite.get("specs") or []:
        name = spec.get("title") or "unnamed test"
        file = _resolve(spec.get("file") or suite_file, root_prefix)
        for test in spec.get("tests") or []:
            if test.get("status") in PASSED_STATUSES:
                result.record_passed()
            else:
                result.record_failed(FailedTest(
                    name=name,
                    file=file,
                    raw_error_message=_last_error(test.get("results") or []),
                ))

    for child in suite.get("suites") or []:
        _walk_suite(child, result, root_prefix, suite_file)


def _error_message(error: Any) -> str:
    """An error may be a plain string or an object with ``message``."""
    if isinstance(error, str):
        return error
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return ""


def _last_error(results: list[dict[str, Any]]) -> str:
    for attempt in reversed(results):
        message = _error_message(attempt.get("error"))
        if message:
            return message
        for err in attempt.get("errors") or []:
            message = _error_message(err)
            if message:
                return message
    return UNKNOWN_ERROR


def _root_prefix(report: dict[str, Any], checkout: str | Path | None) -> str:
    root_dir = (report.get("config") or {}).get("rootDir") or ""
    if not root_dir:
        return ""
    if not os.path.isabs(root_dir):
        return PurePosixPath(root_dir.replace("\\", "/")).as_posix()
    if checkout is None:
        return ""
    try:
        rel = os.path.relpath(root_dir, os.path.abspath(checkout))
    except ValueError:
        return ""
    if rel == "." or rel.startswith(".."):
        return ""
    return PurePosixPath(rel.replace(os.sep, "/")).as_posix()


def _resolve(file: str, root_prefix: str) -> str:
    file = (file or "").replace("\\", "/")
    if not file or not root_prefix or os.path.isabs(file):
        return file
    if file == root_prefix or file.startswith(root_prefix + "/"):
        return file
    return f"{root_prefix}/{file}"
