"""Session, message, and summary repositories scoped by owner."""
from typing import Optional
from uuid import UUID
from sqlalchemy import select, update, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from ..models import Session as SessionModel, Message, SessionSummary, DEFAULT_SESSION_TITLE
from ..models.session import utcnow


class SessionRepository:
    def __init__(self, db: AsyncSession, owner_id: UUID):
        self.db = db
        self.owner_id = owner_id

    async def create(self, reviewer_id: Optional[UUID] = None) -> SessionModel:
        now = utcnow()
        session = SessionModel(
            owner_id=self.owner_id,
            reviewer_id=reviewer_id,
            title=DEFAULT_SESSION_TITLE,
            created_at=now,
            updated_at=now,
        )
        self.db.add(session)
        await self.db.flush()
        return session

    async def get(self, session_id: UUID) -> Optional[SessionModel]:
        result = await self.db.execute(
            select(SessionModel).where(
                and_(
                    SessionModel.id == session_id,
                    SessionModel.owner_id == self.owner_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_visible(self, session_id: UUID) -> Optional[SessionModel]:
        """Session owned by, or assigned for review to, this user."""
        result = await self.db.execute(
            select(SessionModel).where(
                and_(
                    SessionModel.id == session_id,
                    or_(
                        SessionModel.owner_id == self.owner_id,
                        SessionModel.reviewer_id == self.owner_id,
                    ),
                )
            )
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[tuple[SessionModel, int, bool]]:
        """Owner's sessions, most recently updated first, with turn count and summary presence."""
        return await self._list(SessionModel.owner_id == self.owner_id)

    async def list_assigned(self) -> list[tuple[SessionModel, int, bool]]:
        """Sessions this user is assigned to review."""
        return await self._list(SessionModel.reviewer_id == self.owner_id)

    async def _list(self, scope) -> list[tuple[SessionModel, int, bool]]:
        turn_count = (
            select(func.count(Message.id))
            .where(Message.session_id == SessionModel.id)
            .correlate(SessionModel)
            .scalar_subquery()
        )
        summary_id = (
            select(SessionSummary.id)
            .where(SessionSummary.session_id == SessionModel.id)
            .correlate(SessionModel)
            .scalar_subquery()
        )
        result = await self.db.execute(
            select(SessionModel, turn_count, summary_id)
            .where(scope)
            .order_by(SessionModel.updated_at.desc())
        )
        return [(row[0], int(row[1] or 0), row[2] is not None) for row in result.all()]


class SessionMetadataRepository:
    """Title and timestamp updates that do not need the owner scope."""

    def __init__(self, db: AsyncSession, session_id: UUID):
        self.db = db
        self.session_id = session_id

    async def set_title(self, title: str) -> None:
        await self.db.execute(
            update(SessionModel)
            .where(SessionModel.id == self.session_id)
            .values(title=title, updated_at=utcnow())
        )

    async def touch(self) -> None:
        await self.db.execute(
            update(SessionModel)
            .where(SessionModel.id == self.session_id)
            .values(updated_at=utcnow())
        )


class MessageRepository:
    def __init__(self, db: AsyncSession, session_id: UUID):
        self.db = db
        self.session_id = session_id

    async def add(self, role: str, content: str) -> Message:
        position = await self.count() + 1
        msg = Message(
            session_id=self.session_id,
            position=position,
            role=role,
            content=content,
            created_at=utcnow(),
        )
        self.db.add(msg)
        await self.db.flush()
        return msg

    async def list_all(self) -> list[Message]:
        result = await self.db.execute(
            select(Message)
            .where(Message.session_id == self.session_id)
            .order_by(Message.position.asc())
        )
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.db.execute(
            select(func.count(Message.id)).where(Message.session_id == self.session_id)
        )
        return int(result.scalar_one() or 0)


class SessionSummaryRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, session_id: UUID) -> Optional[SessionSummary]:
        result = await self.db.execute(
            select(SessionSummary).where(SessionSummary.session_id == session_id)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self, session_id: UUID, summary_text: str, safety_flags: Optional[str]
    ) -> SessionSummary:
        row = await self.get(session_id)
        if row:
            row.summary_text = summary_text
            row.safety_flags = safety_flags
            row.updated_at = utcnow()
            await self.db.flush()
            return row
        now = utcnow()
        summary = SessionSummary(
            session_id=session_id,
            summary_text=summary_text,
            safety_flags=safety_flags,
            created_at=now,
            updated_at=now,
        )
        self.db.add(summary)
        await self.db.flush()
        return summary
