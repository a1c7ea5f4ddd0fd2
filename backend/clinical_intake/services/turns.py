"""Conversation turn pipeline.

One call to ``TurnProcessor.process`` handles one incoming patient message:

1. screen the text with the safety gate; a match short-circuits to the fixed
   safety message and the model is never called,
2. retrieve the owner's nearest prior turns across all sessions,
3. persist the user turn, then stream the model reply,
4. persist the assistant turn once the reply is complete,
5. queue embedding of both turns and, when the session is ending, the summary.

The model call and the assistant write run in their own task and feed a queue
that the caller drains; a caller that stops reading does not cancel them.
"""
import asyncio
import logging
from typing import AsyncIterator, Optional, Union
from dataclasses import dataclass
from uuid import UUID

from ..errors import PersistenceError, ProviderError, ValidationError
from ..models import Message
from .context import ContextStore
from .executor import SessionLocks, TaskExecutor
from .prompts import build_system_prompt
from .provider import ModelProvider
from .safety import SAFETY_MESSAGE, SafetyGate
from .storage import TurnStore
from .summary import SessionFinalizer

logger = logging.getLogger(__name__)

TITLE_ELLIPSIS = "..."


def derive_title(text: str, max_length: int = 60) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + TITLE_ELLIPSIS


@dataclass
class TurnRequest:
    owner_id: UUID
    session_id: UUID
    message: str


_END = object()


@dataclass
class _Failure:
    error: Exception


class TurnReply:
    """Reply to one turn: a single safety message, or the streamed model output."""

    def __init__(
        self,
        session_id: UUID,
        crisis: bool,
        queue: "asyncio.Queue[Union[str, _Failure, object]]",
        completion: Optional["asyncio.Task[Message]"] = None,
        context_size: int = 0,
    ):
        self.session_id = session_id
        self.crisis = crisis
        self.context_size = context_size
        self._queue = queue
        self._completion = completion

    @classmethod
    def safety(cls, session_id: UUID) -> "TurnReply":
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(SAFETY_MESSAGE)
        queue.put_nowait(_END)
        return cls(session_id, crisis=True, queue=queue)

    async def chunks(self) -> AsyncIterator[str]:
        """Reply text as it is produced. Raises the turn's error if it fails. Single use."""
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, _Failure):
                raise item.error
            yield item

    async def text(self) -> str:
        return "".join([chunk async for chunk in self.chunks()])

    async def wait(self) -> Optional[Message]:
        """Persisted assistant turn once the model call finishes; None on the crisis path."""
        if self._completion is None:
            return None
        return await asyncio.shield(self._completion)


class TurnProcessor:
    def __init__(
        self,
        store: TurnStore,
        safety_gate: SafetyGate,
        context_store: ContextStore,
        provider: ModelProvider,
        finalizer: SessionFinalizer,
        executor: TaskExecutor,
        context_top_k: int = 5,
        model_timeout_seconds: float = 30.0,
        title_max_length: int = 60,
        locks: Optional[SessionLocks] = None,
    ):
        self.store = store
        self.safety_gate = safety_gate
        self.context_store = context_store
        self.provider = provider
        self.finalizer = finalizer
        self.executor = executor
        self.context_top_k = context_top_k
        self.model_timeout_seconds = model_timeout_seconds
        self.title_max_length = title_max_length
        self.locks = locks or SessionLocks()
        self._inflight: set[asyncio.Task] = set()

    async def process(self, request: TurnRequest) -> TurnReply:
        text = (request.message or "").strip()
        if not text:
            raise ValidationError("Message must not be empty", request.session_id)

        lock = self.locks.get(request.session_id)
        await lock.acquire()
        handed_off = False
        try:
            if self.safety_gate.evaluate(text):
                logger.warning("Crisis override triggered", extra={"session_id": str(request.session_id)})
                await self._record_crisis(request, text)
                return TurnReply.safety(request.session_id)
            reply = await self._start_model_turn(request, text, lock)
            handed_off = True
            return reply
        finally:
            if not handed_off:
                lock.release()

    async def _record_user_turn(self, request: TurnRequest, text: str) -> Message:
        turn = await self.store.create_turn(request.session_id, "user", text)
        if turn.position == 1:
            try:
                await self.store.update_session_title(
                    request.session_id, derive_title(text, self.title_max_length)
                )
            except PersistenceError:
                logger.warning("Session title not saved", extra={"session_id": str(request.session_id)})
        return turn

    async def _record_crisis(self, request: TurnRequest, text: str) -> None:
        """Both turns are stored when possible; the safety reply never depends on it."""
        try:
            await self._record_user_turn(request, text)
            await self.store.create_turn(request.session_id, "assistant", SAFETY_MESSAGE)
            await self.store.touch_session(request.session_id)
        except PersistenceError:
            logger.error("Crisis turn not persisted", extra={"session_id": str(request.session_id)})
            return
        if self.finalizer.should_finalize(text):
            self.executor.submit(self.finalizer.finalize_in_background, request.session_id)

    async def _start_model_turn(self, request: TurnRequest, text: str, lock: asyncio.Lock) -> TurnReply:
        context = await self.context_store.retrieve(request.owner_id, text, self.context_top_k)

        # Saved before the model runs so a failed call never loses the patient's input
        user_turn = await self._record_user_turn(request, text)
        self.executor.submit(self._index_turn, user_turn.id, request.owner_id, "user", text)

        history = [(t.role, t.content) for t in await self.store.list_turns(request.session_id)]
        system_prompt = build_system_prompt(context)

        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._complete(request, text, system_prompt, history, queue, lock))
        self._inflight.add(task)
        task.add_done_callback(self._on_turn_done)
        return TurnReply(request.session_id, crisis=False, queue=queue, completion=task, context_size=len(context))

    async def _complete(
        self,
        request: TurnRequest,
        user_text: str,
        system_prompt: str,
        history: list[tuple[str, str]],
        queue: asyncio.Queue,
        lock: asyncio.Lock,
    ) -> Message:
        try:
            chunks: list[str] = []
            try:
                await asyncio.wait_for(
                    self._stream_into(system_prompt, history, chunks, queue),
                    timeout=self.model_timeout_seconds,
                )
            except asyncio.TimeoutError as e:
                raise ProviderError("Model call timed out", request.session_id) from e

            reply_text = "".join(chunks)
            if not reply_text.strip():
                raise ProviderError("Model returned an empty reply", request.session_id)

            assistant_turn = await self.store.create_turn(request.session_id, "assistant", reply_text)
            try:
                await self.store.touch_session(request.session_id)
            except PersistenceError:
                logger.warning("Session timestamp not refreshed", extra={"session_id": str(request.session_id)})
            self.executor.submit(self._index_turn, assistant_turn.id, request.owner_id, "assistant", reply_text)
            queue.put_nowait(_END)

            if self.finalizer.should_finalize(user_text, reply_text):
                self.executor.submit(self.finalizer.finalize_in_background, request.session_id)
            return assistant_turn
        except BaseException as e:
            error = e if isinstance(e, Exception) else ProviderError("Turn cancelled", request.session_id)
            queue.put_nowait(_Failure(error))
            raise
        finally:
            lock.release()

    async def _stream_into(
        self, system_prompt: str, history: list[tuple[str, str]], chunks: list[str], queue: asyncio.Queue
    ) -> None:
        async for chunk in self.provider.stream(system_prompt, history):
            chunks.append(chunk)
            queue.put_nowait(chunk)

    async def _index_turn(self, turn_id: UUID, owner_id: UUID, role: str, content: str) -> None:
        try:
            await self.context_store.index_turn(turn_id, owner_id, role, content)
        except (ProviderError, PersistenceError) as e:
            logger.warning(
                "Embedding write-behind failed",
                extra={"turn_id": str(turn_id), "reason": e.message},
            )

    def _on_turn_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Turn failed", extra={"reason": getattr(exc, "message", type(exc).__name__)})

    async def drain(self) -> None:
        """Wait for in-flight model calls to finish (shutdown and tests)."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
