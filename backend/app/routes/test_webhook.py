"""Tests for the HTTP trigger and inspection endpoints.

The workflow itself is patched out; these tests cover request handling,
run bookkeeping and background-task failure handling.

Run:
    python -m pytest backend/app/routes/test_webhook.py -v
"""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from agents.errors import PipelineAbortedError
from app.config import Settings
from app.main import app, configure_logging
from app.routes import webhook
from app.routes.health import integrations
from app.store import get_run


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def workflow():
    with patch("app.routes.webhook.run_workflow", new=AsyncMock(return_value={})) as mock:
        yield mock


# ── Triggers ─────────────────────────────────────────────────────────

class TestTriggers:
    def test_webhook_with_issue_is_accepted(self, client, workflow):
        payload = {
            "webhookEvent": "jira:issue_created",
            "issue": {"key": "SCRUM-6", "fields": {"summary": "Login", "description": "Users log in."}},
        }

        resp = client.post("/jira-webhook", json=payload)

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "accepted"
        assert body["issue_key"] == "SCRUM-6"
        run = get_run(body["run_id"])
        assert run is not None and run.mode == "full"
        issue = workflow.call_args.kwargs["issue"]
        assert issue.summary == "Login"
        assert issue.description == "Users log in."

    def test_webhook_without_issue_is_ignored(self, client, workflow):
        resp = client.post("/jira-webhook", json={"webhookEvent": "jira:issue_updated"})

        assert resp.status_code == 200
        assert resp.json()["status"] == "ignored"
        workflow.assert_not_called()

    def test_manual_full_run(self, client, workflow):
        resp = client.post("/agents/all", json={"issueKey": "SCRUM-7"})

        assert resp.status_code == 200
        assert resp.json()["issue_key"] == "SCRUM-7"
        assert workflow.call_args.kwargs == {}

    def test_manual_run_requires_issue_key(self, client, workflow):
        resp = client.post("/agents/all", json={})
        assert resp.status_code == 422

    def test_execute_only_run(self, client, workflow):
        resp = client.post(
            "/agents/execute",
            json={"issueKey": "SCRUM-8", "prUrl": "https://github.com/o/r/pull/3"},
        )

        body = resp.json()
        assert body["pr_url"] == "https://github.com/o/r/pull/3"
        assert get_run(body["run_id"]).mode == "execute"
        kwargs = workflow.call_args.kwargs
        assert kwargs["execute_only"] is True
        assert kwargs["pr_url"] == "https://github.com/o/r/pull/3"
        assert kwargs["issue"].key == "SCRUM-8"


# ── Inspection ───────────────────────────────────────────────────────

CONFIGURED = dict(
    JIRA_HOST="example.atlassian.net",
    JIRA_EMAIL="bot@example.com",
    JIRA_API_TOKEN="token",
    LLM_API_KEY="key",
    TARGET_REPO_URL="https://github.com/o/r",
    GITHUB_TOKEN="ghp_x",
)


def _settings(**overrides) -> Settings:
    return Settings(**{**CONFIGURED, **overrides})


class TestInspection:
    def test_service_info(self, client):
        body = client.get("/").json()
        assert body["stages"] == ["create", "materialize", "execute", "complete"]
        assert "/jira-webhook" in body["triggers"]

    def test_health_is_ready_when_configured(self, client):
        with patch("app.routes.health.settings", _settings()):
            body = client.get("/health").json()

        assert body["status"] == "ready"
        assert body["integrations"] == {"jira": True, "llm": True, "github": True}
        assert "active_workflows" in body and "runs" in body

    def test_health_is_degraded_without_jira(self, client):
        with patch("app.routes.health.settings", _settings(JIRA_API_TOKEN="")):
            body = client.get("/health").json()

        assert body["status"] == "degraded"
        assert body["integrations"]["jira"] is False

    def test_unknown_run(self, client):
        assert client.get("/status/does-not-exist").status_code == 404
        assert client.get("/results/does-not-exist").status_code == 404

    def test_status_and_results(self, client, workflow):
        run_id = client.post("/agents/all", json={"issueKey": "SCRUM-9"}).json()["run_id"]

        status = client.get(f"/status/{run_id}")
        assert status.status_code == 200
        assert status.json()["issue_key"] == "SCRUM-9"
        assert client.get(f"/results/{run_id}").status_code == 409

        get_run(run_id).complete({"final_status": "PASSED"})
        assert client.get(f"/results/{run_id}").json() == {"final_status": "PASSED"}

    def test_failed_run_without_results(self, client, workflow):
        run_id = client.post("/agents/all", json={"issueKey": "SCRUM-10"}).json()["run_id"]
        get_run(run_id).fail("boom")
        assert client.get(f"/results/{run_id}").status_code == 404

    def test_runs_listing(self, client, workflow):
        run_id = client.post("/agents/all", json={"issueKey": "SCRUM-11"}).json()["run_id"]
        runs = client.get("/runs").json()["runs"]
        assert run_id in [r["run_id"] for r in runs]


# ── Background task handling ─────────────────────────────────────────

class TestBackgroundTasks:
    def _launch_and_wait(self, workflow_fn):
        async def scenario():
            state = webhook.launch("SCRUM-6", "full", workflow_fn)
            task = webhook._background_tasks[state.run_id]
            await asyncio.gather(task, return_exceptions=True)
            await asyncio.sleep(0)
            return state

        return asyncio.run(scenario())

    def test_aborted_workflow_marks_run_failed(self):
        state = self._launch_and_wait(
            AsyncMock(side_effect=PipelineAbortedError("SCRUM-6", "create", "No test scenarios generated"))
        )
        assert state.status == "failed"
        assert "No test scenarios generated" in state.error
        assert state.run_id not in webhook._background_tasks

    def test_crashed_workflow_marks_run_failed(self):
        state = self._launch_and_wait(AsyncMock(side_effect=RuntimeError("unexpected")))
        assert state.status == "failed"
        assert "unexpected" in state.error

    def test_successful_workflow_is_untracked(self):
        state = self._launch_and_wait(AsyncMock(return_value={}))
        assert state.status == "queued"
        assert state.run_id not in webhook._background_tasks

    def test_cancel_active_runs(self):
        async def scenario():
            state = webhook.launch("SCRUM-6", "full", lambda run: asyncio.Event().wait())
            await asyncio.sleep(0)
            task = webhook._background_tasks[state.run_id]
            assert state.run_id in webhook.active_run_ids()

            cancelled = webhook.cancel_active_runs()
            await asyncio.gather(task, return_exceptions=True)
            await asyncio.sleep(0)
            return cancelled, state

        cancelled, state = asyncio.run(scenario())

        assert cancelled == 1
        assert state.status == "failed"
        assert "cancelled" in state.error
        assert state.run_id not in webhook.active_run_ids()


# ── Application setup ────────────────────────────────────────────────

class TestAppSetup:
    def test_integrations(self):
        assert integrations(_settings()) == {"jira": True, "llm": True, "github": True}
        assert integrations(_settings(LLM_API_KEY="", TARGET_REPO_URL="")) == {
            "jira": True, "llm": False, "github": False,
        }

    def test_startup_warns_about_unconfigured_integrations(self, caplog):
        original = app.state.settings
        app.state.settings = _settings(LLM_API_KEY="")
        try:
            with caplog.at_level(logging.WARNING, logger="app.main"):
                with TestClient(app):
                    pass
        finally:
            app.state.settings = original

        assert "Integration 'llm' is not configured" in caplog.text
        assert "Integration 'jira'" not in caplog.text

    def test_configure_logging_appends_to_file(self, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        log_file = tmp_path / "logs" / "app.log"
        try:
            configure_logging("WARNING", log_file)
            logging.getLogger("app.test").debug("written at debug")
            for handler in root.handlers:
                handler.flush()
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        assert "written at debug" in log_file.read_text()
        assert logging.getLogger("httpx").level == logging.WARNING
