"""Data access layer scoped by owner and session."""
from .session import (
    SessionRepository,
    SessionMetadataRepository,
    MessageRepository,
    SessionSummaryRepository,
)
from .embedding import EmbeddingRepository, nearest_statement

__all__ = [
    "SessionRepository",
    "SessionMetadataRepository",
    "MessageRepository",
    "SessionSummaryRepository",
    "EmbeddingRepository",
    "nearest_statement",
]
