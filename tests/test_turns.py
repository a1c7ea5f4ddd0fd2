"""
Tests for TurnProcessor.

Background jobs go to a RecordingExecutor, so each test decides when (and
whether) embeddings and summaries run.
"""
import asyncio
import random
import uuid

import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding

from clinical_intake.errors import PersistenceError, ProviderError, ValidationError
from clinical_intake.services.context import ContextStore
from clinical_intake.services.executor import AsyncioTaskExecutor
from clinical_intake.services.prompts import CONTEXT_HEADER, INTAKE_SYSTEM_PROMPT
from clinical_intake.services.provider import EmbeddingService
from clinical_intake.services.safety import SAFETY_MESSAGE, SafetyGate
from clinical_intake.services.storage import TurnStore
from clinical_intake.services.summary import SessionFinalizer
from clinical_intake.services.turns import TurnProcessor, TurnRequest, derive_title
from conftest import DEFAULT_REPLY, EMBEDDING_DIM, BrokenEmbeddings, FakeModelProvider, provider_down


def _request(session, text: str) -> TurnRequest:
    return TurnRequest(owner_id=session.owner_id, session_id=session.id, message=text)


def _build(store, context_store, provider, executor, **kwargs) -> TurnProcessor:
    return TurnProcessor(
        store=store,
        safety_gate=SafetyGate(),
        context_store=context_store,
        provider=provider,
        finalizer=SessionFinalizer(store, provider),
        executor=executor,
        **kwargs,
    )


class _UserWriteFails(TurnStore):
    async def create_turn(self, session_id, role, content):
        raise PersistenceError("disk full", session_id)


class _AssistantWriteFails(TurnStore):
    async def create_turn(self, session_id, role, content):
        if role == "assistant":
            raise PersistenceError("disk full", session_id)
        return await super().create_turn(session_id, role, content)


class _SlowEmbeddings(EmbeddingService):
    async def embed(self, text: str) -> list[float]:
        await asyncio.sleep(random.uniform(0, 0.02))
        return await super().embed(text)


class TestDeriveTitle:
    def test_exactly_sixty_characters_is_unchanged(self) -> None:
        text = "a" * 60
        assert derive_title(text) == text

    def test_sixty_one_characters_is_truncated_with_ellipsis(self) -> None:
        text = "b" * 61
        assert derive_title(text) == "b" * 60 + "..."

    def test_short_text_is_unchanged(self) -> None:
        assert derive_title("Feeling low") == "Feeling low"


class TestCrisisPath:
    @pytest.mark.asyncio
    async def test_crisis_message_returns_safety_message_without_model(
        self, processor, provider, store, session, executor
    ) -> None:
        reply = await processor.process(_request(session, "I want to end my life"))

        assert reply.crisis is True
        assert await reply.text() == SAFETY_MESSAGE
        assert await reply.wait() is None
        assert provider.stream_calls == []

        turns = await store.list_turns(session.id)
        assert [(t.role, t.content) for t in turns] == [
            ("user", "I want to end my life"),
            ("assistant", SAFETY_MESSAGE),
        ]
        # Nothing queued: no embeddings, no summary
        assert executor.jobs == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["SUICIDE", "thinking about Self-Harm again", "I just want to die."])
    async def test_model_never_invoked_for_crisis_phrases(self, processor, provider, session, text) -> None:
        reply = await processor.process(_request(session, text))

        assert reply.crisis
        assert provider.stream_calls == []

    @pytest.mark.asyncio
    async def test_safety_message_survives_storage_failure(
        self, session_factory, context_store, provider, executor, session
    ) -> None:
        processor = _build(_UserWriteFails(session_factory), context_store, provider, executor)

        reply = await processor.process(_request(session, "I plan to die tonight"))

        assert await reply.text() == SAFETY_MESSAGE
        assert provider.stream_calls == []

    @pytest.mark.asyncio
    async def test_crisis_turn_sets_title_on_first_turn(self, processor, store, session) -> None:
        await processor.process(_request(session, "I want to hurt myself"))

        reloaded = await store.get_owned_session(session.id, session.owner_id)
        assert reloaded.title == "I want to hurt myself"


class TestSafePath:
    @pytest.mark.asyncio
    async def test_reply_streams_and_both_turns_persist(self, processor, store, session, executor) -> None:
        reply = await processor.process(_request(session, "I've been feeling down lately"))

        chunks = [chunk async for chunk in reply.chunks()]
        assistant = await reply.wait()

        assert len(chunks) > 1
        assert "".join(chunks) == DEFAULT_REPLY
        assert assistant.content == DEFAULT_REPLY
        turns = await store.list_turns(session.id)
        assert [(t.role, t.content) for t in turns] == [
            ("user", "I've been feeling down lately"),
            ("assistant", DEFAULT_REPLY),
        ]
        assert executor.names() == ["_index_turn", "_index_turn"]

    @pytest.mark.asyncio
    async def test_user_turn_persisted_before_model_call(self, processor, provider, session) -> None:
        reply = await processor.process(_request(session, "I feel anxious at work"))
        await reply.wait()

        # History is read back from storage, so the new turn was saved first
        _, history = provider.stream_calls[0]
        assert history == [("user", "I feel anxious at work")]

    @pytest.mark.asyncio
    async def test_history_includes_whole_active_session(self, processor, provider, session) -> None:
        await (await processor.process(_request(session, "first message"))).wait()
        await (await processor.process(_request(session, "second message"))).wait()

        _, history = provider.stream_calls[1]
        assert history == [
            ("user", "first message"),
            ("assistant", DEFAULT_REPLY),
            ("user", "second message"),
        ]

    @pytest.mark.asyncio
    async def test_whitespace_message_is_rejected(self, processor, provider, session) -> None:
        with pytest.raises(ValidationError):
            await processor.process(_request(session, "   \n "))
        assert provider.stream_calls == []

    @pytest.mark.asyncio
    async def test_embeddings_run_only_in_background(self, processor, session, executor, index) -> None:
        reply = await processor.process(_request(session, "My appetite is gone"))
        await reply.wait()

        assert len(index) == 0
        await executor.run_all()
        assert len(index) == 2


class TestContextInjection:
    @pytest.mark.asyncio
    async def test_prior_sessions_of_same_owner_are_injected(
        self, processor, provider, store, executor, owner_id
    ) -> None:
        earlier = await store.create_session(owner_id)
        await (await processor.process(_request(earlier, "I lost my job in March"))).wait()
        await executor.run_all()

        current = await store.create_session(owner_id)
        reply = await processor.process(_request(current, "I lost my job in March"))
        await reply.wait()

        # Both turns of the earlier session
        assert reply.context_size == 2

        system_prompt, history = provider.stream_calls[-1]
        assert CONTEXT_HEADER in system_prompt
        assert "[user]: I lost my job in March" in system_prompt
        # Only the active session's turns form the history
        assert history == [("user", "I lost my job in March")]

    @pytest.mark.asyncio
    async def test_other_owners_turns_never_injected(self, processor, provider, store, executor) -> None:
        someone_else = await store.create_session(uuid.uuid4())
        await (await processor.process(_request(someone_else, "Private detail about my brother"))).wait()
        await executor.run_all()

        mine = await store.create_session(uuid.uuid4())
        await (await processor.process(_request(mine, "Private detail about my brother"))).wait()

        system_prompt, _ = provider.stream_calls[-1]
        assert system_prompt == INTAKE_SYSTEM_PROMPT

    @pytest.mark.asyncio
    async def test_retrieval_outage_still_completes_turn(
        self, store, index, provider, executor, session
    ) -> None:
        broken = ContextStore(index, EmbeddingService(BrokenEmbeddings(), dimension=EMBEDDING_DIM))
        processor = _build(store, broken, provider, executor)

        reply = await processor.process(_request(session, "Hello, I'm here for my intake"))

        assert reply.context_size == 0

        assert await reply.text() == DEFAULT_REPLY
        assert provider.stream_calls[0][0] == INTAKE_SYSTEM_PROMPT
        # Write-behind failures are logged, not raised
        await executor.run_all()
        assert len(index) == 0
        assert len(await store.list_turns(session.id)) == 2


class TestSessionMetadata:
    @pytest.mark.asyncio
    async def test_title_set_once_from_first_turn(self, processor, store, session) -> None:
        first = "x" * 61
        await (await processor.process(_request(session, first))).wait()
        await (await processor.process(_request(session, "A completely different second message"))).wait()

        reloaded = await store.get_owned_session(session.id, session.owner_id)
        assert reloaded.title == "x" * 60 + "..."

    @pytest.mark.asyncio
    async def test_sixty_character_title_kept_whole(self, processor, store, session) -> None:
        text = "y" * 60
        await (await processor.process(_request(session, text))).wait()

        reloaded = await store.get_owned_session(session.id, session.owner_id)
        assert reloaded.title == text


class TestFailures:
    @pytest.mark.asyncio
    async def test_provider_failure_surfaces_and_keeps_user_turn(
        self, processor, provider, store, session, executor
    ) -> None:
        provider.stream_error = provider_down()

        reply = await processor.process(_request(session, "Are you there?"))

        with pytest.raises(ProviderError):
            await reply.text()
        with pytest.raises(ProviderError):
            await reply.wait()
        turns = await store.list_turns(session.id)
        assert [t.role for t in turns] == ["user"]
        assert executor.names() == ["_index_turn"]

    @pytest.mark.asyncio
    async def test_empty_model_reply_is_provider_error(self, store, context_store, executor, session) -> None:
        processor = _build(store, context_store, FakeModelProvider(replies=["   "]), executor)

        reply = await processor.process(_request(session, "Hello"))

        with pytest.raises(ProviderError):
            await reply.wait()
        assert [t.role for t in await store.list_turns(session.id)] == ["user"]

    @pytest.mark.asyncio
    async def test_model_timeout_is_provider_error(self, store, context_store, executor, session) -> None:
        slow = FakeModelProvider(replies=["one two three four five"], delay=0.2)
        processor = _build(store, context_store, slow, executor, model_timeout_seconds=0.05)

        reply = await processor.process(_request(session, "Hello"))

        with pytest.raises(ProviderError, match="timed out"):
            await reply.text()

    @pytest.mark.asyncio
    async def test_user_write_failure_aborts_before_model(
        self, session_factory, context_store, provider, executor, session
    ) -> None:
        processor = _build(_UserWriteFails(session_factory), context_store, provider, executor)

        with pytest.raises(PersistenceError):
            await processor.process(_request(session, "Hello"))
        assert provider.stream_calls == []
        assert executor.jobs == []

    @pytest.mark.asyncio
    async def test_assistant_write_failure_is_surfaced(
        self, session_factory, context_store, provider, executor, session
    ) -> None:
        processor = _build(_AssistantWriteFails(session_factory), context_store, provider, executor)

        reply = await processor.process(_request(session, "Hello"))

        with pytest.raises(PersistenceError):
            await reply.text()
        assert len(provider.stream_calls) == 1


class TestFinalizeTrigger:
    @pytest.mark.asyncio
    async def test_end_session_phrase_queues_finalization(self, processor, session, executor) -> None:
        await (await processor.process(_request(session, "I think we can END SESSION now"))).wait()

        assert "finalize_in_background" in executor.names()

    @pytest.mark.asyncio
    async def test_model_summary_marker_queues_finalization(self, store, context_store, executor, session) -> None:
        provider = FakeModelProvider(replies=["Take care. Intake Summary: low mood for months."])
        processor = _build(store, context_store, provider, executor)

        await (await processor.process(_request(session, "Thanks, that's all"))).wait()

        assert "finalize_in_background" in executor.names()

    @pytest.mark.asyncio
    async def test_ordinary_turn_does_not_finalize(self, processor, session, executor) -> None:
        await (await processor.process(_request(session, "I sleep about five hours"))).wait()

        assert "finalize_in_background" not in executor.names()


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_abandoned_stream_still_persists_assistant_turn(self, store, context_store, executor, session) -> None:
        provider = FakeModelProvider(replies=["a slow and rather long reply"], delay=0.01)
        processor = _build(store, context_store, provider, executor)

        reply = await processor.process(_request(session, "Hello"))
        stream = reply.chunks()
        first = await stream.__anext__()
        await stream.aclose()

        assistant = await reply.wait()
        assert first == "a "
        assert assistant.content == "a slow and rather long reply"
        assert [t.role for t in await store.list_turns(session.id)] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_turn_order_independent_of_embedding_timing(self, store, index, provider, session) -> None:
        executor = AsyncioTaskExecutor()
        slow_context = ContextStore(
            index,
            _SlowEmbeddings(DeterministicFakeEmbedding(size=EMBEDDING_DIM), EMBEDDING_DIM),
        )
        processor = _build(store, slow_context, provider, executor)

        for text in ["t1 message", "t2 message", "t3 message"]:
            await (await processor.process(_request(session, text))).wait()
        await executor.drain()

        user_turns = [t.content for t in await store.list_turns(session.id) if t.role == "user"]
        assert user_turns == ["t1 message", "t2 message", "t3 message"]
        assert len(index) == 6

    @pytest.mark.asyncio
    async def test_same_session_turns_are_serialized(self, store, context_store, executor, session) -> None:
        provider = FakeModelProvider(replies=["first reply here", "second reply here"], delay=0.01)
        processor = _build(store, context_store, provider, executor)

        reply_a = await processor.process(_request(session, "first"))
        task_b = asyncio.create_task(processor.process(_request(session, "second")))
        await asyncio.sleep(0)
        assert not task_b.done()

        await reply_a.wait()
        reply_b = await task_b
        await reply_b.wait()

        turns = await store.list_turns(session.id)
        assert [(t.role, t.content) for t in turns] == [
            ("user", "first"),
            ("assistant", "first reply here"),
            ("user", "second"),
            ("assistant", "second reply here"),
        ]