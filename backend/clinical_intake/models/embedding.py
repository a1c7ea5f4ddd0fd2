"""MessageEmbedding model (pgvector)."""
from sqlalchemy import Column, DateTime, ForeignKey, Uuid
from pgvector.sqlalchemy import Vector
from ..database import Base
from .session import utcnow
import uuid

EMBEDDING_DIMENSION = 1536


class MessageEmbedding(Base):
    __tablename__ = "message_embeddings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # At most one embedding per message; written after the message itself
    message_id = Column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    embedding = Column(Vector(EMBEDDING_DIMENSION), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
