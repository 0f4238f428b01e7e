"""LLM sampling settings shared by every prompt-driven component.

Scenario generation, script generation and locator advisory all go
through :mod:`agents.llm`; they spread one of these dicts into the
request so identical prompts yield the most stable answers the backend
can give.
"""

LLM_TEMPERATURE: float = 0.0
LLM_TOP_P: float = 1.0  # some OpenAI-compatible backends reject top_p=0

# Per-call completion budgets, sized after the payload each prompt returns.
MAX_TOKENS_SCENARIOS: int = 4000
MAX_TOKENS_SCRIPTS: int = 8000
MAX_TOKENS_ADVISORY: int = 1000

LLM_DETERMINISTIC_PARAMS: dict[str, object] = {
    "temperature": LLM_TEMPERATURE,
    "top_p": LLM_TOP_P,
}
