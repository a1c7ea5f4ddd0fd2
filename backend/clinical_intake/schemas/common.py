"""Chat and session API schemas."""
from pydantic import BaseModel, Field
from typing import List, Optional
from uuid import UUID
from datetime import datetime

MAX_MESSAGE_CHARS = 8000


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_CHARS)
    session_id: Optional[UUID] = Field(None, alias="sessionId")

    class Config:
        populate_by_name = True


class SessionCreate(BaseModel):
    reviewer_id: Optional[UUID] = Field(None, alias="reviewerId")

    class Config:
        populate_by_name = True


class SessionOut(BaseModel):
    id: UUID
    title: str
    owner_id: UUID
    reviewer_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    turn_count: int = 0
    has_summary: bool = False

    class Config:
        from_attributes = True


class TurnOut(BaseModel):
    id: UUID
    role: str
    content: str
    created_at: datetime

    class Config:
        from_attributes = True


class SummaryOut(BaseModel):
    summary: str
    safety_flags: Optional[str] = Field(None, serialization_alias="safetyFlags")
    updated_at: Optional[datetime] = None


class SessionDetail(SessionOut):
    turns: List[TurnOut] = []
    summary: Optional[SummaryOut] = None
