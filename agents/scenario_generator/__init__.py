"""Scenario Generator Agent – Create stage.

Turns an issue into manual test cases with one model call and formats
them for the issue tracker.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from agents.base import AgentResult, BaseAgent
from agents.errors import GenerationError, LLMError
from agents.llm import LLMClient, parse_json_object
from shared.determinism import MAX_TOKENS_SCENARIOS
from shared.schemas import PRIORITIES, Issue, TestCase, TestStep

logger = logging.getLogger(__name__)

PRIORITY_COLORS = {"High": "red", "Medium": "orange", "Low": "green"}

SCENARIO_PROMPT = """You are an expert QA engineer creating comprehensive manual test cases.

TASK: Analyze the following issue and create a detailed test case for each
user scenario it mentions.

ISSUE:
- Key: {key}
- Summary: {summary}
- Description:
{description}

INSTRUCTIONS:
1. Identify ALL user scenarios, use cases or features in the description.
2. For EACH scenario create a test case with:
   - a unique id (TC001, TC002, ...)
   - a clear, descriptive title and a short scenario name
   - a priority: High, Medium or Low
   - the full list of preconditions
   - detailed steps, each with the exact action and the expected result
   - any test data the steps need
3. Return ONLY valid JSON in exactly this shape (no markdown, no prose):

{{
  "scenarios": [
    {{
      "id": "TC001",
      "title": "Verify user can login with valid credentials",
      "scenario": "User Login - Happy Path",
      "priority": "High",
      "preconditions": ["User account exists"],
      "testSteps": [
        {{"step": 1, "action": "Navigate to /login", "expectedResult": "Login form is shown"}}
      ],
      "testData": {{"username": "testuser@example.com"}}
    }}
  ]
}}
"""


# ── Parsing ──────────────────────────────────────────────────────────

def _normalise_priority(raw: Any) -> str:
    value = str(raw or "").strip().capitalize()
    return value if value in PRIORITIES else "Medium"


def parse_scenarios(raw: str) -> list[TestCase]:
    """Validate a model answer into ``TestCase`` objects.

    Raises:
        GenerationError: the answer is not JSON, has no ``scenarios``
            array, or the array is empty.
    """
    try:
        data = parse_json_object(raw)
    except ValueError as exc:
        raise GenerationError(f"Failed to extract JSON from scenario response: {exc}") from exc

    scenarios = data.get("scenarios")
    if not isinstance(scenarios, list):
        raise GenerationError("Invalid test case structure: missing scenarios array")
    if not scenarios:
        raise GenerationError("No test scenarios generated")

    cases: list[TestCase] = []
    for index, item in enumerate(scenarios, 1):
        if not isinstance(item, dict) or not item.get("title"):
            raise GenerationError(f"Scenario #{index} has no title")

        steps = []
        for step in item.get("testSteps") or []:
            if not isinstance(step, dict):
                continue
            steps.append(TestStep(
                action=str(step.get("action", "")),
                expected_result=str(step.get("expectedResult", "")),
            ))

        test_data = item.get("testData")
        cases.append(TestCase(
            id=str(item.get("id") or f"TC{index:03d}"),
            title=str(item["title"]),
            priority=_normalise_priority(item.get("priority")),
            scenario=str(item.get("scenario", "")),
            preconditions=tuple(str(p) for p in item.get("preconditions") or []),
            steps=tuple(steps),
            test_data=test_data if isinstance(test_data, dict) else {},
        ))
    return cases


def format_scenarios_for_jira(test_cases: list[TestCase]) -> str:
    """Render test cases in Jira wiki markup."""
    blocks: list[str] = []
    for tc in test_cases:
        lines = [
            f"*{tc.id}: {tc.title}*",
            f"Priority: {{color:{PRIORITY_COLORS.get(tc.priority, 'gray')}}}{tc.priority}{{color}}",
            f"Scenario: {tc.scenario}",
            "",
            "*Preconditions:*",
        ]
        lines += [f"• {p}" for p in tc.preconditions]
        lines += ["", "*Test Steps:*"]
        for number, step in enumerate(tc.steps, 1):
            lines.append(f"{number}. {step.action}")
            lines.append(f"   _Expected:_ {step.expected_result}")
        if tc.test_data:
            lines += ["", "*Test Data:*", "{{" + json.dumps(tc.test_data, indent=2) + "}}"]
        blocks.append("\n".join(lines))
    return "\n\n----\n\n".join(blocks)


# ── Generator ────────────────────────────────────────────────────────

class ScenarioGenerator:
    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def generate(self, issue: Issue) -> list[TestCase]:
        prompt = SCENARIO_PROMPT.format(
            key=issue.key,
            summary=issue.summary,
            description=issue.description,
        )
        try:
            raw = await self.llm.complete(prompt, max_tokens=MAX_TOKENS_SCENARIOS)
        except LLMError as exc:
            raise GenerationError(f"Failed to generate test cases: {exc}") from exc
        return parse_scenarios(raw)


class ScenarioGeneratorAgent(BaseAgent):
    """Create stage: issue in, ``test_cases`` out."""

    name = "scenario_generator"

    def __init__(self, llm: LLMClient):
        self.generator = ScenarioGenerator(llm)

    async def run(self, context: dict[str, Any]) -> AgentResult:
        issue: Issue = context["issue"]
        logger.info("[Create] Generating scenarios for %s", issue.key)

        try:
            test_cases = await self.generator.generate(issue)
        except GenerationError as exc:
            logger.error("[Create] %s: %s", issue.key, exc)
            return AgentResult(
                agent_name=self.name,
                status="failure",
                summary=f"Scenario generation failed: {exc}",
                errors=[str(exc)],
            )

        for tc in test_cases:
            logger.info("[Create]   %s: %s (%s)", tc.id, tc.title, tc.priority)

        return AgentResult(
            agent_name=self.name,
            status="success",
            summary=f"Generated {len(test_cases)} test scenario(s)",
            details={
                "test_cases": test_cases,
                "formatted": format_scenarios_for_jira(test_cases),
            },
        )
