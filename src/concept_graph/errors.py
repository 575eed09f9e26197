"""Exception hierarchy for Concept Graph."""


class ConceptGraphError(Exception):
    """Base class for all Concept Graph errors."""


class ConfigError(ConceptGraphError):
    """Invalid or missing provider/runtime configuration.

    Raised before any chunk is scheduled and terminates the run.
    """


class ProviderUnavailableError(ConceptGraphError):
    """The LLM provider could not be reached at startup."""


class ExtractionError(ConceptGraphError):
    """A single chunk extraction failed.

    Never fatal to a batch: the orchestrator splits, retries or records it.
    """

    kind = "error"


class ContextOverflowError(ExtractionError):
    """The chunk did not fit the model's context window."""

    kind = "overflow"


class TransientExtractionError(ExtractionError):
    """Retryable network/HTTP failure, including call timeouts."""

    kind = "transient"


class MalformedResponseError(ExtractionError):
    """The provider answered, but no structured payload could be parsed."""

    kind = "malformed"


class FatalExtractionError(ExtractionError):
    """Authentication or provider-side configuration failure."""

    kind = "fatal"


class CheckpointError(ConceptGraphError):
    """Progress checkpoint could not be read or written."""


class GraphConsistencyError(ConceptGraphError):
    """A triple or proximity event violates a graph invariant."""


class StorageError(ConceptGraphError):
    """The graph store rejected a read or write."""


OVERFLOW_INDICATORS = (
    "context length",
    "context window",
    "too long",
    "token limit",
    "max tokens",
    "exceeds",
    "context size",
    "input length",
    "too many tokens",
    "sequence length",
)


def is_context_overflow(message: str) -> bool:
    """Check whether a provider error message reports a context overflow."""
    lowered = message.lower()
    return any(indicator in lowered for indicator in OVERFLOW_INDICATORS)
