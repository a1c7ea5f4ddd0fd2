"""Session, Message, and SessionSummary models."""
from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, DateTime, Integer, ForeignKey, UniqueConstraint, Uuid
from ..database import Base
import uuid

DEFAULT_SESSION_TITLE = "New Session"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(Base):
    __tablename__ = "sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid, nullable=False, index=True)
    reviewer_id = Column(Uuid, nullable=True, index=True)
    title = Column(String(255), nullable=False, default=DEFAULT_SESSION_TITLE)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (UniqueConstraint("session_id", "position", name="uq_messages_session_position"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(Uuid, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    # 1-based, strictly increasing per session
    position = Column(Integer, nullable=False)
    role = Column(String(32), nullable=False)  # user, assistant
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class SessionSummary(Base):
    __tablename__ = "session_summaries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(
        Uuid, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True, unique=True
    )
    summary_text = Column(Text, nullable=False)
    safety_flags = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
