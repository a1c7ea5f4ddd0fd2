"""Error taxonomy for the conversation turn pipeline."""
from typing import Optional
from uuid import UUID


class IntakeError(Exception):
    """Base class for pipeline errors."""

    def __init__(self, message: str, session_id: Optional[UUID] = None):
        self.message = message
        self.session_id = session_id
        super().__init__(self.message)


class ValidationError(IntakeError):
    """Malformed input, rejected before the pipeline runs."""


class ProviderError(IntakeError):
    """Model or embedding provider unreachable, erroring or timed out."""


class RetrievalDegraded(IntakeError):
    """Context query failed; callers fall back to empty context."""


class PersistenceError(IntakeError):
    """A storage write or read failed."""


class FinalizationError(IntakeError):
    """Session summarization failed."""
