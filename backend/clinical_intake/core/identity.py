"""Caller identity from headers. Authentication happens upstream of this service."""
from dataclasses import dataclass
from typing import Literal
from uuid import UUID

from fastapi import Header, HTTPException

Role = Literal["patient", "reviewer"]


@dataclass(frozen=True)
class Identity:
    user_id: UUID
    role: Role


def get_identity(
    x_user_id: str = Header(..., alias="X-User-ID"),
    x_role: str = Header("patient", alias="X-Role"),
) -> Identity:
    try:
        user_id = UUID(x_user_id)
    except (ValueError, TypeError):
        raise HTTPException(status_code=400, detail="Invalid user ID format")
    role = (x_role or "patient").strip().lower()
    if role not in ("patient", "reviewer"):
        raise HTTPException(status_code=400, detail="Invalid role")
    return Identity(user_id=user_id, role=role)
