"""Base agent interface that every pipeline stage implements."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)


# Optional progress callback: (agent_name, status, message)
ProgressCallback = Callable[[str, str, str], None] | None


@dataclass
class AgentResult:
    """Standard result returned by every stage agent."""
    agent_name: str
    status: str  # "success" | "failure" | "skipped"
    summary: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict:
        return {
            "agent_name": self.agent_name,
            "status": self.status,
            "summary": self.summary,
            "details": self.details,
            "errors": self.errors,
            "timestamp": self.timestamp,
        }


class BaseAgent(ABC):
    """Abstract base class for the Create / Materialize / Execute agents."""

    name: str = "base"

    @abstractmethod
    async def run(self, context: dict[str, Any]) -> AgentResult:
        """Execute the stage.

        Args:
            context: Dictionary holding the issue, the per-run checkout
                     path and whatever earlier stages produced.
        Returns:
            AgentResult with the stage outputs in ``details``.
        """
        ...

    def __repr__(self) -> str:
        return f"<Agent: {self.name}>"


def emit(callback: ProgressCallback, agent: str, status: str, message: str) -> None:
    """Fire the progress callback if set; callback errors never break a run."""
    if callback is None:
        return
    try:
        callback(agent, status, message)
    except Exception:
        logger.debug("Progress callback failed", exc_info=True)
