"""Embedding repository: pgvector writes and owner-scoped nearest-neighbour reads."""
from typing import Sequence
from uuid import UUID
from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Session as SessionModel, Message, MessageEmbedding
from ..models.session import utcnow


def nearest_statement(owner_id: UUID, vector: Sequence[float], limit: int) -> Select:
    """Content and role of the owner's embedded messages, nearest first by cosine distance."""
    return (
        select(Message.content, Message.role)
        .join(MessageEmbedding, MessageEmbedding.message_id == Message.id)
        .join(SessionModel, SessionModel.id == Message.session_id)
        .where(SessionModel.owner_id == owner_id)
        .order_by(MessageEmbedding.embedding.cosine_distance(list(vector)))
        .limit(limit)
    )


class EmbeddingRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, message_id: UUID, vector: Sequence[float]) -> MessageEmbedding:
        row = MessageEmbedding(
            message_id=message_id,
            embedding=list(vector),
            created_at=utcnow(),
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def nearest(self, owner_id: UUID, vector: Sequence[float], limit: int) -> list[tuple[str, str]]:
        result = await self.db.execute(nearest_statement(owner_id, vector, limit))
        return [(content, role) for content, role in result.all()]
