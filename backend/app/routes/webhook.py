"""Workflow trigger endpoints.

POST /jira-webhook     – Jira issue event; acknowledged at once, run in background
POST /agents/all       – manual full run for an issue key
POST /agents/execute   – manual Execute + Complete run for an issue key
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, Body
from pydantic import BaseModel, Field

from agents.errors import PipelineAbortedError
from shared.schemas import Issue

from app.orchestrator import run_workflow
from app.store import RunState, create_run

router = APIRouter()
logger = logging.getLogger(__name__)

# Keep strong references so background tasks aren't garbage-collected.
_background_tasks: dict[str, asyncio.Task] = {}


def _handle_task_done(task: asyncio.Task, run_id: str, state: RunState) -> None:
    """Callback invoked when a workflow task finishes (success or crash)."""
    _background_tasks.pop(run_id, None)
    if task.cancelled():
        state.fail("Workflow task was cancelled")
        return
    exc = task.exception()
    if exc is None:
        return
    if isinstance(exc, PipelineAbortedError):
        logger.error("Workflow %s aborted: %s", run_id, exc)
    else:
        logger.error("Workflow %s crashed: %s", run_id, exc, exc_info=exc)
    if state.status != "failed":
        state.fail(f"Unhandled error: {exc}")


def launch(
    issue_key: str,
    mode: str,
    workflow: Callable[[RunState], Awaitable[Any]],
) -> RunState:
    """Create a run and schedule *workflow* as a tracked background task."""
    run_id = str(uuid.uuid4())
    state = create_run(run_id, issue_key, mode=mode)
    task = asyncio.create_task(workflow(state), name=f"workflow-{run_id}")
    _background_tasks[run_id] = task
    task.add_done_callback(lambda t: _handle_task_done(t, run_id, state))
    return state


def active_run_ids() -> list[str]:
    return list(_background_tasks)


def cancel_active_runs() -> int:
    """Cancel every unfinished workflow task; returns how many were cancelled."""
    pending = [t for t in _background_tasks.values() if not t.done()]
    for task in pending:
        task.cancel()
    return len(pending)


# ── Request schemas ──────────────────────────────────────────────────

class IssueTrigger(BaseModel):
    issue_key: str = Field(..., alias="issueKey", min_length=1)


class ExecuteTrigger(IssueTrigger):
    pr_url: str | None = Field(None, alias="prUrl")


# ── POST /jira-webhook ───────────────────────────────────────────────

@router.post("/jira-webhook")
async def jira_webhook(payload: dict[str, Any] = Body(...)):
    issue_data = payload.get("issue")
    if not isinstance(issue_data, dict) or not issue_data.get("key"):
        logger.info("Webhook without an issue – ignored")
        return {"status": "ignored", "message": "No issue in payload"}

    issue = Issue.from_jira(issue_data)
    logger.info("Webhook received for %s", issue.key)
    state = launch(issue.key, "full", lambda run: run_workflow(run, issue=issue))
    return {"status": "accepted", "issue_key": issue.key, "run_id": state.run_id}


# ── Manual triggers ──────────────────────────────────────────────────

@router.post("/agents/all")
async def trigger_all(request: IssueTrigger):
    state = launch(request.issue_key, "full", lambda run: run_workflow(run))
    return {"status": "accepted", "issue_key": request.issue_key, "run_id": state.run_id}


@router.post("/agents/execute")
async def trigger_execute(request: ExecuteTrigger):
    issue = Issue(key=request.issue_key)
    state = launch(
        request.issue_key,
        "execute",
        lambda run: run_workflow(run, issue=issue, execute_only=True, pr_url=request.pr_url),
    )
    return {
        "status": "accepted",
        "issue_key": request.issue_key,
        "run_id": state.run_id,
        "pr_url": request.pr_url,
    }
