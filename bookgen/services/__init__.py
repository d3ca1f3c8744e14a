"""Service layer for the outline, chapter and library workflows."""

from __future__ import annotations

from .errors import (  # noqa: F401
    BookGenerationError,
    ConfigurationError,
    ExportError,
    MissingCredentialsError,
    PersistenceFailure,
    PromptBuildError,
    RegenerationNotConfirmed,
    RunStateError,
    StreamFailure,
    UpstreamParseError,
)
from .library import BookLibrary  # noqa: F401
from .orchestrator import GenerationOrchestrator, RunRegistry  # noqa: F401
from .story_outline import OutlineResult, generate_outline  # noqa: F401

__all__ = [
    "BookGenerationError",
    "BookLibrary",
    "ConfigurationError",
    "ExportError",
    "GenerationOrchestrator",
    "MissingCredentialsError",
    "OutlineResult",
    "PersistenceFailure",
    "PromptBuildError",
    "RegenerationNotConfirmed",
    "RunRegistry",
    "RunStateError",
    "StreamFailure",
    "UpstreamParseError",
    "generate_outline",
]
