"""
Error taxonomy for the retrieval engine.
Every error raised by the engine derives from RetrievalEngineError.
"""


class RetrievalEngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(RetrievalEngineError):
    """Invalid weights, chunk parameters or other settings. Never retried."""


class ValidationError(RetrievalEngineError):
    """Malformed input supplied by the caller."""


class InvalidVectorDimension(ValidationError):
    """A vector length does not match the configured embedding dimension."""

    def __init__(self, expected: int, actual: int, kind=None):
        self.expected = expected
        self.actual = actual
        self.kind = kind
        target = f" for {kind.value} content" if kind is not None else ""
        super().__init__(
            f"Expected a vector of dimension {expected}{target}, got {actual}."
        )


class NotFoundError(ValidationError):
    """The referenced document, content or search result does not exist."""


class ProviderError(RetrievalEngineError):
    """The embedding provider failed. Callers may retry with backoff."""


class RateLimited(ProviderError):
    pass


class ModelUnavailable(ProviderError):
    pass


class InvalidInput(ProviderError):
    pass


class ConcurrentWriteError(RetrievalEngineError):
    """Another embedding write for the same owner is already in flight."""

    def __init__(self, owner_kind, owner_id):
        self.owner_kind = owner_kind
        self.owner_id = owner_id
        super().__init__(
            f"An embedding write for {owner_kind.value}:{owner_id} is already in progress."
        )


class StoreError(RetrievalEngineError):
    """The underlying persistence layer failed."""


class DuplicateLocationError(StoreError):
    """A document with the same location already exists."""


class Cancelled(RetrievalEngineError):
    """A read operation was cancelled or ran past its deadline."""


class ProcessError(RetrievalEngineError):
    """Processing a document's content failed; `cause` holds the original error."""

    def __init__(self, document_id, cause: Exception):
        self.document_id = document_id
        self.cause = cause
        super().__init__(f"Processing document {document_id} failed: {cause}")

    @property
    def retryable(self) -> bool:
        if isinstance(self.cause, InvalidInput):
            return False
        return isinstance(self.cause, (ProviderError, ConcurrentWriteError))
