"""Shared schemas used across agents and backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


PRIORITIES = ("High", "Medium", "Low")
CONFIDENCE_LEVELS = ("high", "medium", "low")
APPLICABLE_CONFIDENCE = ("high", "medium")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Issue ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Issue:
    key: str
    summary: str = ""
    description: str = ""

    @classmethod
    def from_jira(cls, payload: dict[str, Any]) -> "Issue":
        """Build an Issue from a Jira REST / webhook ``issue`` object."""
        fields = payload.get("fields") or {}
        return cls(
            key=payload["key"],
            summary=fields.get("summary") or payload.get("summary") or "",
            description=(
                fields.get("description")
                or payload.get("description")
                or "No description provided"
            ),
        )


# ── Test scenarios ───────────────────────────────────────────────────

@dataclass(frozen=True)
class TestStep:
    __test__ = False

    action: str
    expected_result: str

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action, "expectedResult": self.expected_result}


@dataclass(frozen=True)
class TestCase:
    """One manual test scenario produced by the scenario generator."""

    __test__ = False

    id: str
    title: str
    priority: str  # High | Medium | Low
    scenario: str = ""
    preconditions: tuple[str, ...] = ()
    steps: tuple[TestStep, ...] = ()
    test_data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "scenario": self.scenario,
            "priority": self.priority,
            "preconditions": list(self.preconditions),
            "testSteps": [
                {"step": i, **s.to_dict()} for i, s in enumerate(self.steps, 1)
            ],
            "testData": dict(self.test_data),
        }


@dataclass(frozen=True)
class SourceFile:
    path: str
    content: str


# ── Test execution ───────────────────────────────────────────────────

@dataclass(frozen=True)
class FailedTest:
    name: str
    file: str
    raw_error_message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "file": self.file,
            "error": self.raw_error_message,
        }


@dataclass
class TestRunResult:
    """Normalised result of one test-runner invocation.

    ``status`` separates a clean run (``completed``) from a runner that
    was killed by the wall-clock limit (``timed_out``) or that left no
    readable report behind (``no_report``).
    """

    __test__ = False

    total: int = 0
    passed: int = 0
    failed: int = 0
    failed_tests: list[FailedTest] = field(default_factory=list)
    status: str = "completed"  # completed | timed_out | no_report
    duration_s: float = 0.0

    @classmethod
    def empty(cls, status: str, duration_s: float = 0.0) -> "TestRunResult":
        return cls(status=status, duration_s=duration_s)

    @property
    def timed_out(self) -> bool:
        return self.status == "timed_out"

    @property
    def all_passed(self) -> bool:
        return self.status == "completed" and self.failed == 0

    def record_passed(self) -> None:
        self.total += 1
        self.passed += 1

    def record_failed(self, test: FailedTest) -> None:
        self.total += 1
        self.failed += 1
        self.failed_tests.append(test)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "failed_tests": [t.to_dict() for t in self.failed_tests],
            "status": self.status,
            "duration_s": round(self.duration_s, 2),
        }


# ── Locator correction ───────────────────────────────────────────────

@dataclass(frozen=True)
class LocatorCorrection:
    original_locator: str
    suggested_locator: str
    confidence: str  # high | medium | low
    explanation: str = ""
    element_type: str = ""

    @property
    def is_applicable(self) -> bool:
        """Only medium/high confidence suggestions pass the gate."""
        return self.confidence in APPLICABLE_CONFIDENCE


@dataclass(frozen=True)
class AppliedCorrection:
    test: str
    file: str
    original_locator: str
    new_locator: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "test": self.test,
            "file": self.file,
            "original_locator": self.original_locator,
            "new_locator": self.new_locator,
        }


@dataclass
class RunOutcome:
    """Aggregate result of one repair-loop run."""

    initial: TestRunResult
    final: TestRunResult
    applied_corrections: list[AppliedCorrection] = field(default_factory=list)
    reruns: int = 0
    start_time: datetime = field(default_factory=_utcnow)
    end_time: datetime | None = None
    correction_pr_url: str | None = None

    @property
    def duration_s(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "initial": self.initial.to_dict(),
            "final": self.final.to_dict(),
            "applied_corrections": [c.to_dict() for c in self.applied_corrections],
            "reruns": self.reruns,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_s": round(self.duration_s, 2),
            "correction_pr_url": self.correction_pr_url,
        }
