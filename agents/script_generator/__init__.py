"""Script Generator Agent – Materialize stage.

Converts test cases into Playwright page objects and specs, enforces
the path allow-list, and hands the files to a publisher that pushes a
branch and opens a pull request.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Protocol

from agents.base import AgentResult, BaseAgent
from agents.errors import ArtifactPathError, GenerationError, LLMError
from agents.llm import LLMClient, parse_json_object
from shared.determinism import MAX_TOKENS_SCRIPTS
from shared.schemas import SourceFile, TestCase

logger = logging.getLogger(__name__)

ALLOWED_DIRS = ("tests/pages/", "tests/e2e/", "tests/ui/", "tests/visual/")
ALLOWED_FILES = ("tests/testdata.ts",)

SCRIPT_PROMPT = """You are an expert Playwright automation engineer.

RESTRICTIONS:
- Do NOT create framework files, shared utilities or setup files.
- Do NOT create any files outside tests/pages/, tests/e2e/, tests/ui/ and tests/visual/.
- The only other file you may update is tests/testdata.ts.

TASK: Convert the following test cases into Playwright tests.

TEST CASES:
{test_cases}

REPOSITORY STRUCTURE:
- tests/pages/      Page Object Models only (extend BasePage from './BasePage')
- tests/e2e/        end-to-end specs
- tests/ui/         UI specs
- tests/visual/     visual regression specs
- tests/testdata.ts shared test data

Specs import page objects with relative named imports, for example
import {{ LoginPage }} from '../pages/LoginPage';
and navigate with page.goto('<absolute url>').

Return ONLY a JSON object, no markdown:
{{
  "files": [
    {{"path": "tests/pages/CheckoutPage.ts", "content": "..."}},
    {{"path": "tests/e2e/checkout.spec.ts", "content": "..."}}
  ]
}}
"""


def is_allowed_path(path: str) -> bool:
    norm = path.replace("\\", "/")
    if norm.startswith("/") or ".." in norm.split("/"):
        return False
    return norm in ALLOWED_FILES or any(norm.startswith(d) for d in ALLOWED_DIRS)


def validate_paths(files: list[SourceFile]) -> None:
    """Raise ``ArtifactPathError`` on the first file outside the allow-list."""
    for f in files:
        if not is_allowed_path(f.path):
            raise ArtifactPathError(f.path, ALLOWED_DIRS + ALLOWED_FILES)


def parse_artifacts(raw: str) -> list[SourceFile]:
    try:
        data = parse_json_object(raw)
    except ValueError as exc:
        raise GenerationError(f"Unparsable script response: {exc}") from exc

    files = data.get("files")
    if not isinstance(files, list):
        raise GenerationError("Invalid response format: expected { files: [...] }")

    artifacts: list[SourceFile] = []
    for entry in files:
        if not isinstance(entry, dict) or not isinstance(entry.get("path"), str):
            raise GenerationError(f"Malformed file entry: {str(entry)[:120]}")
        artifacts.append(SourceFile(path=entry["path"].strip(), content=str(entry.get("content", ""))))

    if not artifacts:
        raise GenerationError("No files generated")
    validate_paths(artifacts)
    return artifacts


class ScriptGenerator:
    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def generate(self, test_cases: list[TestCase]) -> list[SourceFile]:
        payload = json.dumps({"scenarios": [tc.to_dict() for tc in test_cases]}, indent=2)
        try:
            raw = await self.llm.complete(
                SCRIPT_PROMPT.format(test_cases=payload),
                max_tokens=MAX_TOKENS_SCRIPTS,
            )
        except LLMError as exc:
            raise GenerationError(f"Failed to generate scripts: {exc}") from exc
        return parse_artifacts(raw)


# ── Publishing seam ──────────────────────────────────────────────────

class ArtifactPublisher(Protocol):
    def publish_tests(
        self, repo_dir: Path, issue_key: str, files: list[SourceFile]
    ) -> dict[str, Any]:
        """Clone into *repo_dir*, commit *files* on a new branch, open a PR.

        Returns ``{"branch": str, "pr_url": str | None}``.
        """
        ...


class ScriptGeneratorAgent(BaseAgent):
    """Materialize stage: ``test_cases`` in, ``artifacts``/``branch``/``pr_url`` out."""

    name = "script_generator"

    def __init__(self, llm: LLMClient, publisher: ArtifactPublisher):
        self.generator = ScriptGenerator(llm)
        self.publisher = publisher

    async def run(self, context: dict[str, Any]) -> AgentResult:
        issue_key: str = context["issue"].key
        checkout = Path(context["checkout"])
        test_cases: list[TestCase] = context.get("test_cases") or []

        try:
            artifacts = await self.generator.generate(test_cases)
        except GenerationError as exc:
            logger.error("[Materialize] %s: %s", issue_key, exc)
            return AgentResult(
                agent_name=self.name,
                status="failure",
                summary=f"Script generation failed: {exc}",
                errors=[str(exc)],
            )
        for f in artifacts:
            logger.info("[Materialize]   %s (%d chars)", f.path, len(f.content))

        published = await asyncio.to_thread(
            self.publisher.publish_tests, checkout, issue_key, artifacts
        )
        return AgentResult(
            agent_name=self.name,
            status="success",
            summary=f"Published {len(artifacts)} file(s) on {published['branch']}",
            details={
                "artifacts": artifacts,
                "branch": published["branch"],
                "pr_url": published.get("pr_url"),
            },
        )
