"""SQLAlchemy models."""
from .session import Session, Message, SessionSummary, DEFAULT_SESSION_TITLE
from .embedding import MessageEmbedding, EMBEDDING_DIMENSION

__all__ = [
    "Session",
    "Message",
    "SessionSummary",
    "MessageEmbedding",
    "DEFAULT_SESSION_TITLE",
    "EMBEDDING_DIMENSION",
]
