"""In-memory run store for tracking workflow executions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RunState:
    """Tracks the live state of a single workflow run."""

    run_id: str
    issue_key: str
    mode: str = "full"  # full | execute
    status: str = "queued"  # queued | running | completed | failed
    current_stage: str = ""
    current_agent: str = ""
    latest_message: str = ""
    progress: list[dict[str, Any]] = field(default_factory=list)
    stage_results: dict[str, dict[str, Any]] = field(default_factory=dict)
    final_results: dict[str, Any] | None = None
    error: str = ""
    created_at: str = field(default_factory=_utcnow_iso)
    updated_at: str = field(default_factory=_utcnow_iso)

    def push_progress(self, agent_name: str, status: str, message: str = "") -> None:
        self.current_agent = agent_name
        self.status = "running"
        if message:
            self.latest_message = message
        self.updated_at = _utcnow_iso()
        self.progress.append(
            {
                "agent": agent_name,
                "status": status,
                "message": message,
                "timestamp": self.updated_at,
            }
        )

    def enter_stage(self, stage: str) -> None:
        self.current_stage = stage
        self.push_progress(stage, "started", f"{stage} stage started")

    def record_stage(self, stage: str, status: str, summary: str = "") -> None:
        self.stage_results[stage] = {"status": status, "summary": summary}
        self.push_progress(stage, status, summary)

    def complete(self, results: dict[str, Any]) -> None:
        self.status = "completed"
        self.final_results = results
        self.updated_at = _utcnow_iso()

    def fail(self, error: str) -> None:
        self.status = "failed"
        self.error = error
        self.updated_at = _utcnow_iso()
        self.progress.append(
            {"agent": self.current_agent, "status": "error", "message": error, "timestamp": self.updated_at}
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "issue_key": self.issue_key,
            "mode": self.mode,
            "status": self.status,
            "current_stage": self.current_stage,
            "current_agent": self.current_agent,
            "latest_message": self.latest_message,
            "stage_results": self.stage_results,
            "error": self.error,
            "progress": self.progress,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


# ── Global in-memory store ──────────────────────────────────────────
_runs: dict[str, RunState] = {}


def create_run(run_id: str, issue_key: str, mode: str = "full") -> RunState:
    state = RunState(run_id=run_id, issue_key=issue_key, mode=mode)
    _runs[run_id] = state
    return state


def get_run(run_id: str) -> RunState | None:
    return _runs.get(run_id)


def all_runs() -> list[dict[str, Any]]:
    return [r.to_dict() for r in _runs.values()]
