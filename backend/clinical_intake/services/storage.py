"""Durable storage for sessions, turns and summaries.

Every operation opens its own short-lived database session and commits it, so
writes are transactional per record and callers running in background tasks or
after the HTTP request has ended never share a session with the request.
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import PersistenceError
from ..models import Session as SessionModel, Message, SessionSummary
from ..repositories import (
    SessionRepository,
    SessionMetadataRepository,
    MessageRepository,
    SessionSummaryRepository,
)

logger = logging.getLogger(__name__)


class TurnStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_session(self, owner_id: UUID, reviewer_id: Optional[UUID] = None) -> SessionModel:
        try:
            async with self.session_factory() as db:
                session = await SessionRepository(db, owner_id).create(reviewer_id)
                await db.commit()
                return session
        except SQLAlchemyError as e:
            logger.error("Failed to create session", extra={"owner_id": str(owner_id)})
            raise PersistenceError("Could not create session") from e

    async def get_owned_session(self, session_id: UUID, owner_id: UUID) -> Optional[SessionModel]:
        try:
            async with self.session_factory() as db:
                return await SessionRepository(db, owner_id).get(session_id)
        except SQLAlchemyError as e:
            raise PersistenceError("Could not load session", session_id) from e

    async def get_visible_session(self, session_id: UUID, user_id: UUID) -> Optional[SessionModel]:
        try:
            async with self.session_factory() as db:
                return await SessionRepository(db, user_id).get_visible(session_id)
        except SQLAlchemyError as e:
            raise PersistenceError("Could not load session", session_id) from e

    async def list_sessions(self, owner_id: UUID) -> list[tuple[SessionModel, int, bool]]:
        try:
            async with self.session_factory() as db:
                return await SessionRepository(db, owner_id).list_all()
        except SQLAlchemyError as e:
            raise PersistenceError("Could not list sessions") from e

    async def list_assigned_sessions(self, reviewer_id: UUID) -> list[tuple[SessionModel, int, bool]]:
        try:
            async with self.session_factory() as db:
                return await SessionRepository(db, reviewer_id).list_assigned()
        except SQLAlchemyError as e:
            raise PersistenceError("Could not list assigned sessions") from e

    async def create_turn(self, session_id: UUID, role: str, content: str) -> Message:
        try:
            async with self.session_factory() as db:
                msg = await MessageRepository(db, session_id).add(role, content)
                await db.commit()
                return msg
        except SQLAlchemyError as e:
            logger.error(
                "Failed to persist turn",
                extra={"session_id": str(session_id), "role": role},
            )
            raise PersistenceError("Could not save message", session_id) from e

    async def list_turns(self, session_id: UUID) -> list[Message]:
        try:
            async with self.session_factory() as db:
                return await MessageRepository(db, session_id).list_all()
        except SQLAlchemyError as e:
            raise PersistenceError("Could not load messages", session_id) from e

    async def update_session_title(self, session_id: UUID, title: str) -> None:
        try:
            async with self.session_factory() as db:
                await SessionMetadataRepository(db, session_id).set_title(title)
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError("Could not update session title", session_id) from e

    async def touch_session(self, session_id: UUID) -> None:
        try:
            async with self.session_factory() as db:
                await SessionMetadataRepository(db, session_id).touch()
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError("Could not update session timestamp", session_id) from e

    async def upsert_summary(
        self, session_id: UUID, summary_text: str, safety_flags: Optional[str]
    ) -> SessionSummary:
        try:
            async with self.session_factory() as db:
                summary = await SessionSummaryRepository(db).upsert(session_id, summary_text, safety_flags)
                await db.commit()
                return summary
        except SQLAlchemyError as e:
            logger.error("Failed to save session summary", extra={"session_id": str(session_id)})
            raise PersistenceError("Could not save summary", session_id) from e

    async def get_summary(self, session_id: UUID) -> Optional[SessionSummary]:
        try:
            async with self.session_factory() as db:
                return await SessionSummaryRepository(db).get(session_id)
        except SQLAlchemyError as e:
            raise PersistenceError("Could not load summary", session_id) from e
