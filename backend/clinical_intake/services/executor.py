"""Fire-and-forget execution of background work (embeddings, summaries)."""
import asyncio
import logging
import weakref
from typing import Any, Awaitable, Callable, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)

Job = Callable[..., Awaitable[Any]]


class TaskExecutor(Protocol):
    def submit(self, fn: Job, *args: Any) -> None: ...


class AsyncioTaskExecutor:
    """Runs each job as an asyncio task on the running loop. Jobs are never retried."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def submit(self, fn: Job, *args: Any) -> None:
        task = asyncio.create_task(fn(*args), name=getattr(fn, "__qualname__", "background-job"))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background job failed",
                exc_info=exc,
                extra={"job": task.get_name()},
            )

    async def drain(self) -> None:
        """Wait for every job submitted so far, including jobs they submit."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class SessionLocks:
    """One lock per session id; released locks are dropped with their last reference."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, session_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock
