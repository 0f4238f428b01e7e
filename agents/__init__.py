"""Agents package – stage agents and the locator repair loop."""

from agents.base import AgentResult, BaseAgent
from agents.llm import LLMClient, OpenAICompatibleClient

# Stage agents
from agents.scenario_generator import ScenarioGeneratorAgent
from agents.script_generator import ScriptGeneratorAgent
from agents.test_executor import TestExecutorAgent

# Repair loop
from agents.repair_loop import RepairLoopController
from agents.test_runner import PlaywrightRunner

__all__ = [
    "AgentResult",
    "BaseAgent",
    "LLMClient",
    "OpenAICompatibleClient",
    "ScenarioGeneratorAgent",
    "ScriptGeneratorAgent",
    "TestExecutorAgent",
    "RepairLoopController",
    "PlaywrightRunner",
]
