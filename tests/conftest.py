"""
Shared fixtures: in-memory SQLite storage, fake model provider, deterministic
embeddings, and a recording executor so background jobs run only when a test
asks for them.
"""
import asyncio
import uuid
from typing import Any, Iterable, Optional

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding, Embeddings
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from clinical_intake import models  # noqa: F401
from clinical_intake.database import Base
from clinical_intake.errors import ProviderError
from clinical_intake.services.context import ContextStore, InMemoryVectorIndex
from clinical_intake.services.provider import EmbeddingService
from clinical_intake.services.safety import SafetyGate
from clinical_intake.services.storage import TurnStore
from clinical_intake.services.summary import SessionFinalizer
from clinical_intake.services.turns import TurnProcessor

EMBEDDING_DIM = 16

DEFAULT_REPLY = "Thank you for sharing that. How long have you been feeling this way?"

SUMMARY_TEXT = """## Intake Summary
Patient reports low mood for three months.
## Key Observed Themes
Work stress, isolation.
## Symptom Patterns
Depressive cluster.
## Clinical Observations
Engaged, coherent.
## Safety Flags
None identified"""


class FakeModelProvider:
    """Stands in for ModelProvider; records every call."""

    def __init__(
        self,
        replies: Optional[list[str]] = None,
        summary: str = SUMMARY_TEXT,
        delay: float = 0.0,
    ):
        self.replies = list(replies or [DEFAULT_REPLY])
        self.summary = summary
        self.delay = delay
        self.stream_error: Optional[Exception] = None
        self.generate_error: Optional[Exception] = None
        self.stream_calls: list[tuple[str, list[tuple[str, str]]]] = []
        self.generate_calls: list[str] = []

    def _next_reply(self) -> str:
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]

    async def stream(self, system_prompt: str, history: Iterable[tuple[str, str]]):
        self.stream_calls.append((system_prompt, list(history)))
        if self.stream_error is not None:
            raise self.stream_error
        words = self._next_reply().split(" ")
        for i, word in enumerate(words):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield word if i == len(words) - 1 else word + " "

    async def generate(self, prompt: str) -> str:
        self.generate_calls.append(prompt)
        if self.generate_error is not None:
            raise self.generate_error
        return self.summary


class BrokenEmbeddings(Embeddings):
    """Embedding client whose provider is down."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        raise RuntimeError("embedding provider unreachable")

    def embed_query(self, text: str) -> list[float]:
        raise RuntimeError("embedding provider unreachable")


class RecordingExecutor:
    """Collects submitted jobs; run_all executes them in submission order."""

    def __init__(self):
        self.jobs: list[tuple[Any, tuple]] = []
        self.completed: list[str] = []

    def submit(self, fn, *args) -> None:
        self.jobs.append((fn, args))

    def names(self) -> list[str]:
        return [fn.__name__ for fn, _ in self.jobs]

    async def run_all(self) -> None:
        while self.jobs:
            fn, args = self.jobs.pop(0)
            await fn(*args)
            self.completed.append(fn.__name__)


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
def store(session_factory) -> TurnStore:
    return TurnStore(session_factory)


@pytest.fixture
def embeddings() -> EmbeddingService:
    return EmbeddingService(DeterministicFakeEmbedding(size=EMBEDDING_DIM), dimension=EMBEDDING_DIM)


@pytest.fixture
def index() -> InMemoryVectorIndex:
    return InMemoryVectorIndex()


@pytest.fixture
def context_store(index, embeddings) -> ContextStore:
    return ContextStore(index, embeddings)


@pytest.fixture
def provider() -> FakeModelProvider:
    return FakeModelProvider()


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def finalizer(store, provider) -> SessionFinalizer:
    return SessionFinalizer(store, provider)


@pytest.fixture
def processor(store, context_store, provider, finalizer, executor) -> TurnProcessor:
    return TurnProcessor(
        store=store,
        safety_gate=SafetyGate(),
        context_store=context_store,
        provider=provider,
        finalizer=finalizer,
        executor=executor,
        context_top_k=5,
        model_timeout_seconds=5.0,
    )


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
async def session(store, owner_id):
    return await store.create_session(owner_id)


def provider_down() -> ProviderError:
    return ProviderError("chat model unreachable")
