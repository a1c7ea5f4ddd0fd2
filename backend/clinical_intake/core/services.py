"""Service wiring: every component gets its collaborators through its constructor."""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..models import EMBEDDING_DIMENSION
from ..services.context import ContextStore, InMemoryVectorIndex, PgVectorIndex, VectorIndex
from ..services.executor import AsyncioTaskExecutor, TaskExecutor
from ..services.provider import (
    EmbeddingService,
    ModelProvider,
    create_embedding_service,
    create_model_provider,
)
from ..services.safety import SafetyGate
from ..services.storage import TurnStore
from ..services.summary import SessionFinalizer
from ..services.turns import TurnProcessor


def _create_index(settings: Settings, session_factory: async_sessionmaker[AsyncSession]) -> VectorIndex:
    if settings.vector_backend == "memory":
        return InMemoryVectorIndex()
    # The Vector column width is fixed by the schema
    if settings.embedding_dimension != EMBEDDING_DIMENSION:
        raise ValueError(
            f"embedding_dimension={settings.embedding_dimension} does not match the "
            f"message_embeddings column ({EMBEDDING_DIMENSION}); use vector_backend=memory or {EMBEDDING_DIMENSION}"
        )
    return PgVectorIndex(session_factory)


@dataclass
class IntakeServices:
    store: TurnStore
    safety_gate: SafetyGate
    context_store: ContextStore
    provider: ModelProvider
    finalizer: SessionFinalizer
    processor: TurnProcessor
    executor: TaskExecutor


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    provider: Optional[ModelProvider] = None,
    embeddings: Optional[EmbeddingService] = None,
    index: Optional[VectorIndex] = None,
    executor: Optional[TaskExecutor] = None,
) -> IntakeServices:
    store = TurnStore(session_factory)
    safety_gate = SafetyGate()
    provider = provider or create_model_provider(settings)
    embeddings = embeddings or create_embedding_service(settings)
    if index is None:
        index = _create_index(settings, session_factory)
    context_store = ContextStore(index, embeddings)
    executor = executor or AsyncioTaskExecutor()
    finalizer = SessionFinalizer(store, provider, finalize_on_model_marker=settings.finalize_on_model_marker)
    processor = TurnProcessor(
        store=store,
        safety_gate=safety_gate,
        context_store=context_store,
        provider=provider,
        finalizer=finalizer,
        executor=executor,
        context_top_k=settings.context_top_k,
        model_timeout_seconds=settings.model_timeout_seconds,
        title_max_length=settings.title_max_length,
    )
    return IntakeServices(
        store=store,
        safety_gate=safety_gate,
        context_store=context_store,
        provider=provider,
        finalizer=finalizer,
        processor=processor,
        executor=executor,
    )


def get_services(request: Request) -> IntakeServices:
    return request.app.state.services
