"""Service info and readiness endpoints.

GET /         – what this service does and which stages it runs
GET /health   – readiness: configured integrations, active workflows, run counts
"""

from __future__ import annotations

import time
from collections import Counter

from fastapi import APIRouter

from app.config import Settings, settings
from app.orchestrator import COMPLETE, CREATE, EXECUTE, MATERIALIZE
from app.routes.webhook import active_run_ids
from app.store import all_runs

router = APIRouter()

_STARTED = time.monotonic()


def integrations(cfg: Settings) -> dict[str, bool]:
    """Which external systems have enough configuration to be called."""
    return {
        "jira": bool(cfg.JIRA_HOST and cfg.JIRA_EMAIL and cfg.JIRA_API_TOKEN),
        "llm": bool(cfg.LLM_API_KEY),
        "github": bool(cfg.TARGET_REPO_URL and cfg.GITHUB_TOKEN),
    }


@router.get("/")
async def service_info():
    return {
        "service": "Issue-to-Test Autopilot",
        "stages": [CREATE, MATERIALIZE, EXECUTE, COMPLETE],
        "triggers": ["/jira-webhook", "/agents/all", "/agents/execute"],
        "version": "1.0.0",
    }


@router.get("/health")
async def health_check():
    """``ready`` only when every integration a full run needs is configured."""
    configured = integrations(settings)
    return {
        "status": "ready" if all(configured.values()) else "degraded",
        "integrations": configured,
        "active_workflows": len(active_run_ids()),
        "runs": dict(Counter(r["status"] for r in all_runs())),
        "uptime_seconds": round(time.monotonic() - _STARTED, 1),
    }
