"""Pydantic request/response schemas."""
from .common import (
    ChatRequest,
    SessionCreate,
    SessionOut,
    SessionDetail,
    TurnOut,
    SummaryOut,
    MAX_MESSAGE_CHARS,
)

__all__ = [
    "ChatRequest",
    "SessionCreate",
    "SessionOut",
    "SessionDetail",
    "TurnOut",
    "SummaryOut",
    "MAX_MESSAGE_CHARS",
]
