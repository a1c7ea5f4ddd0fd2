"""Cross-session memory: owner-scoped vector retrieval over prior turns."""
import asyncio
import logging
from dataclasses import dataclass
from typing import NamedTuple, Protocol, Sequence
from uuid import UUID

import numpy as np
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import PersistenceError, ProviderError, RetrievalDegraded
from ..repositories import EmbeddingRepository
from .provider import EmbeddingService

logger = logging.getLogger(__name__)


class ContextItem(NamedTuple):
    content: str
    role: str


@dataclass(frozen=True)
class IndexedTurn:
    turn_id: UUID
    owner_id: UUID
    role: str
    content: str
    vector: Sequence[float]


class VectorIndex(Protocol):
    async def add(self, entry: IndexedTurn) -> None: ...

    async def nearest(self, owner_id: UUID, vector: Sequence[float], limit: int) -> list[ContextItem]: ...


class PgVectorIndex:
    """Embeddings stored beside messages in Postgres; owner scope resolved through sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add(self, entry: IndexedTurn) -> None:
        try:
            async with self.session_factory() as db:
                await EmbeddingRepository(db).add(entry.turn_id, entry.vector)
                await db.commit()
        except IntegrityError as e:
            raise PersistenceError(f"Turn {entry.turn_id} already has an embedding") from e
        except SQLAlchemyError as e:
            raise PersistenceError("Could not store embedding") from e

    async def nearest(self, owner_id: UUID, vector: Sequence[float], limit: int) -> list[ContextItem]:
        try:
            async with self.session_factory() as db:
                rows = await EmbeddingRepository(db).nearest(owner_id, vector, limit)
        except SQLAlchemyError as e:
            raise RetrievalDegraded("Vector query failed") from e
        return [ContextItem(content=content, role=role) for content, role in rows]


class InMemoryVectorIndex:
    """Process-local index using numpy cosine distance. For development and tests."""

    def __init__(self):
        self._entries: dict[UUID, IndexedTurn] = {}
        self._vectors: dict[UUID, np.ndarray] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def add(self, entry: IndexedTurn) -> None:
        async with self._lock:
            if entry.turn_id in self._entries:
                raise PersistenceError(f"Turn {entry.turn_id} already has an embedding")
            self._entries[entry.turn_id] = entry
            self._vectors[entry.turn_id] = np.asarray(entry.vector, dtype=np.float32)

    async def nearest(self, owner_id: UUID, vector: Sequence[float], limit: int) -> list[ContextItem]:
        if limit <= 0:
            return []
        query = np.asarray(vector, dtype=np.float32)
        async with self._lock:
            candidates = [e for e in self._entries.values() if e.owner_id == owner_id]
            scored = [(self._cosine_distance(query, self._vectors[e.turn_id]), e) for e in candidates]
        scored.sort(key=lambda pair: pair[0])
        return [ContextItem(content=e.content, role=e.role) for _, e in scored[:limit]]

    @staticmethod
    def _cosine_distance(vec1: np.ndarray, vec2: np.ndarray) -> float:
        norm = float(np.linalg.norm(vec1) * np.linalg.norm(vec2))
        if norm == 0.0:
            return 1.0
        return 1.0 - float(np.dot(vec1, vec2)) / norm


class ContextStore:
    """Retrieval never raises: provider or index failures degrade to no context."""

    def __init__(self, index: VectorIndex, embeddings: EmbeddingService):
        self.index = index
        self.embeddings = embeddings

    async def query(self, owner_id: UUID, vector: Sequence[float], limit: int) -> list[ContextItem]:
        try:
            return await self.index.nearest(owner_id, vector, limit)
        except RetrievalDegraded as e:
            logger.warning(
                "Context retrieval degraded",
                extra={"owner_id": str(owner_id), "reason": e.message},
            )
            return []

    async def retrieve(self, owner_id: UUID, text: str, limit: int) -> list[ContextItem]:
        """Embed the text, then query. Empty list when either step fails."""
        try:
            vector = await self.embeddings.embed(text)
        except ProviderError as e:
            logger.warning(
                "Context retrieval degraded",
                extra={"owner_id": str(owner_id), "reason": e.message},
            )
            return []
        return await self.query(owner_id, vector, limit)

    async def index_turn(self, turn_id: UUID, owner_id: UUID, role: str, content: str) -> None:
        """Embed and store one turn. Raises ProviderError or PersistenceError."""
        vector = await self.embeddings.embed(content)
        await self.index.add(
            IndexedTurn(turn_id=turn_id, owner_id=owner_id, role=role, content=content, vector=vector)
        )
