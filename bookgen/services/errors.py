"""Error taxonomy shared by the generation pipeline and the HTTP layer."""

from __future__ import annotations


class BookGenerationError(RuntimeError):
    """Base class for every error surfaced to the user by the pipeline."""


class ConfigurationError(BookGenerationError):
    """Raised when required input or credentials are missing or malformed."""


class UpstreamParseError(BookGenerationError):
    """Raised when an LLM response cannot be coerced into the expected JSON shape."""


class StreamFailure(BookGenerationError):
    """Raised when a provider call or a chapter stream fails."""


class OutlineGenerationError(StreamFailure):
    """Raised when the outline request fails at the provider."""


class RevisionError(StreamFailure):
    """Raised when a one-shot revision request fails at the provider."""


class PersistenceFailure(BookGenerationError):
    """Raised when the library store rejects a read or write."""


class ExportError(BookGenerationError):
    """Raised when a book cannot be rendered to an export format."""


class PromptBuildError(BookGenerationError):
    """Raised when a prompt is requested for state that does not exist."""


class RegenerationNotConfirmed(BookGenerationError):
    """Raised when a destructive regeneration is requested without confirmation."""


class MissingCredentialsError(ConfigurationError):
    """Raised when the provider API key or model name is not configured."""


class RunStateError(BookGenerationError):
    """Raised when an operation does not fit the current state of a generation run."""
