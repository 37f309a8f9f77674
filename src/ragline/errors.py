"""Exception hierarchy for the ingestion and response pipeline.

Retryability is decided in exactly one place (the job pipeline), but the
errors carry the information it needs:

  FatalIngestError      non-retryable (unsupported media type, bad URL, missing credential)
  EmptyContentError     non-retryable (no text extracted / zero chunks)
  EmbeddingProviderError retryable unless the provider reported a permanent condition
  IngestError           generic transient failure (retryable by default)
"""

from __future__ import annotations


class RaglineError(Exception):
    """Base class for all ragline errors."""


class IngestError(RaglineError):
    """A failure while fetching, parsing, chunking, embedding or storing a source."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class FatalIngestError(IngestError):
    """Non-retryable ingestion failure; the source goes straight to ``error``."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)


class EmptyContentError(FatalIngestError):
    """No text could be extracted, or chunking produced nothing."""


class EmbeddingProviderError(IngestError):
    """The embedding provider returned an error or an unusable body.

    Attributes:
        status_code: HTTP status reported by the provider, if any.
        retryable: False for permanent conditions (invalid model, bad request, auth).
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"Embedding provider error ({self.status_code}): {self.message}"
        return f"Embedding provider error: {self.message}"


class DimensionMismatchError(IngestError):
    """A vector's length differs from the agent's configured dimensionality."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding has {actual} dimensions, expected {expected}",
            retryable=False,
        )
        self.expected = expected
        self.actual = actual


class JobNotFoundError(RaglineError):
    """Raised when a job id does not exist."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobStateError(RaglineError):
    """Raised on an illegal job transition (e.g. mutating a terminal job)."""


class SourceNotFoundError(RaglineError):
    """Raised when a source id does not exist or has been deleted."""

    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source not found: {source_id}")
        self.source_id = source_id
