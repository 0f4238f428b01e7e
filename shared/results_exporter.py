"""Deterministic results builder and final-report formatting.

Converts a ``RunOutcome`` (and the workflow metadata around it) into
the canonical results dictionary served by ``GET /results/{run_id}``
and into the Jira comment posted by the Complete stage.

Usage::

    from shared.results_exporter import build_results, format_final_report

    results = build_results(
        outcome=outcome,              # shared.schemas.RunOutcome | None
        issue_key="SCRUM-6",
        run_id="3f2a…",
        test_pr_url="https://github.com/org/repo/pull/12",
        stage_errors={},
        runtime_seconds=84.2,
    )
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from shared.schemas import RunOutcome


# ── Public API ───────────────────────────────────────────────────────

def build_results(
    outcome: RunOutcome | None,
    issue_key: str,
    run_id: str,
    test_pr_url: str | None,
    stage_errors: dict[str, str],
    runtime_seconds: float,
    branch: str | None = None,
) -> dict[str, Any]:
    """Build the canonical results dictionary.

    ``final_status`` is ``PASSED`` only when the final run completed with
    zero failures.  A run that never reached Execute is ``NOT_RUN``.
    """
    if outcome is None:
        final_status = "NOT_RUN"
    else:
        final_status = "PASSED" if outcome.final.all_passed else "FAILED"

    return {
        "run_id": run_id,
        "issue_key": issue_key,
        "branch": branch,
        "test_pr_url": test_pr_url,
        "final_status": final_status,
        "success_rate": success_rate(outcome),
        "runtime_seconds": round(runtime_seconds, 2),
        "stage_errors": dict(stage_errors),
        "outcome": outcome.to_dict() if outcome else None,
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }


def success_rate(outcome: RunOutcome | None) -> int:
    """Percentage of passed tests in the final run (0 when nothing ran)."""
    if outcome is None or outcome.final.total == 0:
        return 0
    return round(outcome.final.passed / outcome.final.total * 100)


def format_final_report(
    outcome: RunOutcome | None,
    test_pr_url: str | None,
    stage_errors: dict[str, str],
) -> str:
    """Render the Complete-stage comment in Jira wiki markup."""
    lines = ["*Test Execution Complete*", ""]

    if outcome is None:
        lines.append("Tests were not executed.")
    else:
        final = outcome.final
        lines += [
            "*Test Results:*",
            f"- Passed: {final.passed}/{final.total}",
            f"- Failed: {final.failed}/{final.total}",
            f"- Success Rate: {success_rate(outcome)}%",
            f"- Duration: {round(outcome.duration_s)}s",
        ]
        if final.status == "timed_out":
            lines.append("- The test run hit the time limit and was stopped.")
        elif final.status == "no_report":
            lines.append("- The test runner produced no readable report.")

        if outcome.applied_corrections:
            lines += ["", f"*Selectors Corrected:* {len(outcome.applied_corrections)}"]
            lines += [
                f"- {{{{{c.original_locator}}}}} → {{{{{c.new_locator}}}}} ({c.file})"
                for c in outcome.applied_corrections
            ]
        if outcome.correction_pr_url:
            lines += ["", _link("Correction PR", outcome.correction_pr_url)]

    if test_pr_url:
        lines += ["", _link("Test PR", test_pr_url)]

    if stage_errors:
        lines += ["", "*Stage errors:*"]
        lines += [f"- {stage}: {message}" for stage, message in stage_errors.items()]

    return "\n".join(lines)


# ── Internal helpers ─────────────────────────────────────────────────

def _link(label: str, url: str) -> str:
    return f"*{label}:* [{url}|{url}]"
