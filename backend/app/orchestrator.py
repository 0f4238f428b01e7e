"""Workflow orchestrator – LangGraph state graph over the four stages.

    create ──(fatal?)──▶ complete
       │
       ▼
    materialize ──▶ execute ──▶ complete ──▶ END

* Create failure is fatal: Materialize and Execute are skipped, Complete
  still reports the failure, and ``run`` raises ``PipelineAbortedError``.
* Materialize and Execute failures are recorded and the graph moves on.
* Complete always runs; reporting errors are logged, never raised.

Each run works in its own checkout under ``WORKSPACE_ROOT`` which is
wiped before Materialize and before Execute and removed after Complete.
"""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import Any, TypedDict

from langgraph.graph import END, StateGraph

from agents.base import AgentResult, BaseAgent
from agents.errors import PipelineAbortedError
from agents.llm import OpenAICompatibleClient
from agents.scenario_generator import ScenarioGeneratorAgent
from agents.script_generator import ScriptGeneratorAgent
from agents.selector_healing import CorrectionAdvisor, HttpPageFetcher
from agents.test_executor import TestExecutorAgent
from agents.test_runner import PlaywrightRunner
from shared.results_exporter import build_results, format_final_report
from shared.schemas import Issue, RunOutcome, SourceFile

from app.config import Settings, settings
from app.services.github_service import GitHubService
from app.services.jira_service import JiraService
from app.store import RunState

logger = logging.getLogger(__name__)

CREATE = "create"
MATERIALIZE = "materialize"
EXECUTE = "execute"
COMPLETE = "complete"


class WorkflowState(TypedDict, total=False):
    issue: Issue
    run_id: str
    checkout: str
    test_cases: list
    artifacts: list[SourceFile]
    branch: str | None
    pr_url: str | None
    outcome: RunOutcome | None
    stage_errors: dict[str, str]
    fatal: str | None
    results: dict[str, Any]


class WorkflowOrchestrator:
    """Runs Create → Materialize → Execute → Complete for one issue."""

    def __init__(
        self,
        scenario_agent: BaseAgent,
        script_agent: BaseAgent,
        executor_agent: BaseAgent,
        tracker: JiraService,
        workspace_root: str | Path,
        done_status: str = "Done",
        in_progress_status: str = "In Progress",
    ):
        self.scenario_agent = scenario_agent
        self.script_agent = script_agent
        self.executor_agent = executor_agent
        self.tracker = tracker
        self.workspace_root = Path(workspace_root)
        self.done_status = done_status
        self.in_progress_status = in_progress_status

    # -- Public API -----------------------------------------------------

    def checkout_path(self, issue_key: str, run_id: str) -> Path:
        return self.workspace_root / f"{issue_key}-{run_id[:8]}"

    async def run(
        self,
        issue: Issue,
        run: RunState,
        execute_only: bool = False,
        pr_url: str | None = None,
    ) -> dict[str, Any]:
        """Drive one workflow run and return the final results dict.

        Raises:
            PipelineAbortedError: the Create stage failed.
        """
        checkout = self.checkout_path(issue.key, run.run_id)
        started = time.monotonic()
        graph = self._build_graph(run, started, execute_only)

        logger.info(
            "═══ Workflow %s for %s (run %s, checkout %s) ═══",
            "execute-only" if execute_only else "full", issue.key, run.run_id, checkout,
        )
        try:
            final: WorkflowState = await graph.ainvoke({
                "issue": issue,
                "run_id": run.run_id,
                "checkout": str(checkout),
                "test_cases": [],
                "artifacts": [],
                "branch": None,
                "pr_url": pr_url,
                "outcome": None,
                "stage_errors": {},
                "fatal": None,
            })
        finally:
            shutil.rmtree(checkout, ignore_errors=True)

        if final.get("fatal"):
            run.final_results = final.get("results")
            run.fail(final["fatal"])
            raise PipelineAbortedError(issue.key, CREATE, final["fatal"])

        run.complete(final["results"])
        return final["results"]

    # -- Graph ----------------------------------------------------------

    def _build_graph(self, run: RunState, started: float, execute_only: bool):
        graph = StateGraph(WorkflowState)

        graph.add_node(CREATE, self._make_create(run))
        graph.add_node(MATERIALIZE, self._make_materialize(run))
        graph.add_node(EXECUTE, self._make_execute(run))
        graph.add_node(COMPLETE, self._make_complete(run, started))

        graph.set_entry_point(EXECUTE if execute_only else CREATE)
        graph.add_conditional_edges(
            CREATE,
            lambda state: COMPLETE if state.get("fatal") else MATERIALIZE,
            {COMPLETE: COMPLETE, MATERIALIZE: MATERIALIZE},
        )
        graph.add_edge(MATERIALIZE, EXECUTE)
        graph.add_edge(EXECUTE, COMPLETE)
        graph.add_edge(COMPLETE, END)
        return graph.compile()

    # -- Nodes ----------------------------------------------------------

    def _make_create(self, run: RunState):
        async def create(state: WorkflowState) -> dict[str, Any]:
            issue = state["issue"]
            run.enter_stage(CREATE)
            await self._report(issue.key, "*Create stage started*\n\nGenerating test cases from the issue description...")

            try:
                result: AgentResult = await self.scenario_agent.run({"issue": issue})
            except Exception as exc:
                logger.exception("[Workflow] Create crashed for %s", issue.key)
                result = AgentResult(self.scenario_agent.name, "failure", str(exc), errors=[str(exc)])

            if not result.ok:
                error = result.errors[0] if result.errors else result.summary
                run.record_stage(CREATE, "failure", result.summary)
                await self._report(issue.key, f"*Create stage failed*\n\nError: {error}")
                return {"fatal": error, "stage_errors": {**state["stage_errors"], CREATE: error}}

            test_cases = result.details["test_cases"]
            run.record_stage(CREATE, "success", result.summary)
            await self._report(
                issue.key,
                f"*Create stage completed*\n\nGenerated {len(test_cases)} test scenario(s):\n\n"
                f"{result.details['formatted']}",
            )
            return {"test_cases": test_cases}

        return create

    def _make_materialize(self, run: RunState):
        async def materialize(state: WorkflowState) -> dict[str, Any]:
            issue = state["issue"]
            checkout = Path(state["checkout"])
            run.enter_stage(MATERIALIZE)
            _fresh_checkout(checkout)
            await self._report(issue.key, "*Materialize stage started*\n\nGenerating Playwright scripts...")

            try:
                result: AgentResult = await self.script_agent.run({
                    "issue": issue,
                    "checkout": checkout,
                    "test_cases": state["test_cases"],
                })
            except Exception as exc:
                logger.exception("[Workflow] Materialize failed for %s", issue.key)
                result = AgentResult(self.script_agent.name, "failure", str(exc), errors=[str(exc)])

            if not result.ok:
                error = result.errors[0] if result.errors else result.summary
                run.record_stage(MATERIALIZE, "failure", result.summary)
                await self._report(issue.key, f"*Materialize stage failed*\n\nError: {error}")
                return {"stage_errors": {**state["stage_errors"], MATERIALIZE: error}}

            artifacts: list[SourceFile] = result.details["artifacts"]
            pr_url = result.details.get("pr_url")
            run.record_stage(MATERIALIZE, "success", result.summary)

            listing = "\n".join(f"- {f.path}" for f in artifacts)
            pr_line = f"Created PR: [{pr_url}|{pr_url}]" if pr_url else "Pull request could not be created."
            await self._report(
                issue.key,
                f"*Materialize stage completed*\n\n{pr_line}\n\n*Generated Files:*\n{listing}",
            )
            return {"artifacts": artifacts, "branch": result.details.get("branch"), "pr_url": pr_url}

        return materialize

    def _make_execute(self, run: RunState):
        async def execute(state: WorkflowState) -> dict[str, Any]:
            issue = state["issue"]
            checkout = Path(state["checkout"])
            run.enter_stage(EXECUTE)
            _fresh_checkout(checkout)
            await self._report(issue.key, "*Execute stage started*\n\nRunning Playwright tests with locator repair...")

            try:
                result: AgentResult = await self.executor_agent.run({
                    "issue": issue,
                    "checkout": checkout,
                    "branch": state.get("branch"),
                    "on_progress": run.push_progress,
                })
            except Exception as exc:
                logger.exception("[Workflow] Execute failed for %s", issue.key)
                run.record_stage(EXECUTE, "failure", str(exc))
                await self._report(issue.key, f"*Execute stage failed*\n\nError: {exc}")
                return {"stage_errors": {**state["stage_errors"], EXECUTE: str(exc)}}

            run.record_stage(EXECUTE, result.status, result.summary)
            return {"outcome": result.details.get("outcome")}

        return execute

    def _make_complete(self, run: RunState, started: float):
        async def complete(state: WorkflowState) -> dict[str, Any]:
            issue = state["issue"]
            run.enter_stage(COMPLETE)
            outcome: RunOutcome | None = state.get("outcome")
            errors = state.get("stage_errors") or {}

            if state.get("fatal"):
                transition = None
            elif outcome is not None and outcome.final.all_passed:
                transition = self.done_status
            else:
                transition = self.in_progress_status

            await self._report(
                issue.key,
                format_final_report(outcome, state.get("pr_url"), errors),
                transition,
            )

            results = build_results(
                outcome=outcome,
                issue_key=issue.key,
                run_id=state["run_id"],
                test_pr_url=state.get("pr_url"),
                stage_errors=errors,
                runtime_seconds=time.monotonic() - started,
                branch=state.get("branch"),
            )
            run.record_stage(COMPLETE, "success", f"Final status: {results['final_status']}")
            return {"results": results}

        return complete

    # -- Reporting ------------------------------------------------------

    async def _report(self, issue_key: str, comment: str, transition: str | None = None) -> None:
        """Post to the tracker; failures are logged and never propagate."""
        try:
            await self.tracker.report_status(issue_key, comment, transition)
        except Exception as exc:
            logger.warning("[Workflow] Could not report to tracker for %s: %s", issue_key, exc)


def _fresh_checkout(path: Path) -> None:
    shutil.rmtree(path, ignore_errors=True)
    path.parent.mkdir(parents=True, exist_ok=True)


# ── Wiring ───────────────────────────────────────────────────────────

def build_orchestrator(cfg: Settings = settings) -> WorkflowOrchestrator:
    """Assemble the production orchestrator from configuration."""
    llm = OpenAICompatibleClient(
        api_key=cfg.LLM_API_KEY,
        base_url=cfg.LLM_API_BASE,
        model=cfg.LLM_MODEL,
        timeout=cfg.LLM_TIMEOUT,
    )
    github = GitHubService(
        repo_url=cfg.TARGET_REPO_URL,
        token=cfg.GITHUB_TOKEN,
        username=cfg.GITHUB_USERNAME,
        author_name=cfg.GIT_AUTHOR_NAME,
        author_email=cfg.GIT_AUTHOR_EMAIL,
    )
    advisor = CorrectionAdvisor(
        llm,
        fetcher=HttpPageFetcher(timeout=cfg.PAGE_FETCH_TIMEOUT),
        html_limit=cfg.PAGE_HTML_LIMIT,
    )
    executor = TestExecutorAgent(
        runner=PlaywrightRunner(timeout=cfg.TEST_TIMEOUT, headed=cfg.HEADED),
        advisor=advisor,
        publisher=github,
        page_base_url=cfg.PAGE_BASE_URL or None,
        max_retries=cfg.REPAIR_MAX_RETRIES,
        install_dependencies=cfg.INSTALL_DEPENDENCIES,
    )
    return WorkflowOrchestrator(
        scenario_agent=ScenarioGeneratorAgent(llm),
        script_agent=ScriptGeneratorAgent(llm, github),
        executor_agent=executor,
        tracker=JiraService(cfg.JIRA_HOST, cfg.JIRA_EMAIL, cfg.JIRA_API_TOKEN),
        workspace_root=cfg.WORKSPACE_ROOT,
        done_status=cfg.JIRA_DONE_STATUS,
        in_progress_status=cfg.JIRA_IN_PROGRESS_STATUS,
    )


async def run_workflow(
    run: RunState,
    issue: Issue | None = None,
    execute_only: bool = False,
    pr_url: str | None = None,
    orchestrator: WorkflowOrchestrator | None = None,
) -> dict[str, Any]:
    """Background-task entry point used by the HTTP routes.

    When *issue* is None it is fetched from the tracker first.
    """
    orchestrator = orchestrator or build_orchestrator()
    if issue is None:
        run.push_progress("jira", "started", f"Fetching {run.issue_key}")
        issue = await orchestrator.tracker.fetch_issue(run.issue_key)
    return await orchestrator.run(issue, run, execute_only=execute_only, pr_url=pr_url)
