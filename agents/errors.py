"""Exception hierarchy for the test-automation pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class LLMError(PipelineError):
    """The language-model backend could not be reached or returned garbage."""


class GenerationError(PipelineError):
    """Scenario or script generation failed."""


class ArtifactPathError(GenerationError):
    """A generated file targets a path outside the allowed directories."""

    def __init__(self, path: str, allowed: tuple[str, ...]):
        self.path = path
        self.allowed = allowed
        super().__init__(
            f"Invalid file path: {path}. Only allowed: {', '.join(allowed)}"
        )


class AdvisoryError(PipelineError):
    """A single locator-correction advisory call failed."""


class PageFetchError(AdvisoryError):
    """The live page markup could not be fetched."""


class PatchError(PipelineError):
    """A page-object file could not be read or written."""


class PipelineAbortedError(PipelineError):
    """Raised to the trigger when a fatal stage stopped the workflow."""

    def __init__(self, issue_key: str, stage: str, cause: BaseException | str):
        self.issue_key = issue_key
        self.stage = stage
        self.cause = cause
        super().__init__(f"{issue_key}: workflow aborted in {stage} stage: {cause}")
