"""Session endpoints: explicit creation, listing, transcript, and clinical summary."""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from ...core import Identity, IntakeServices, get_identity, get_services
from ...schemas import SessionCreate, SessionDetail, SessionOut, SummaryOut, TurnOut

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _summary_out(summary) -> SummaryOut:
    return SummaryOut(
        summary=summary.summary_text,
        safety_flags=summary.safety_flags,
        updated_at=summary.updated_at,
    )


async def _visible_session(session_id: UUID, identity: Identity, services: IntakeServices):
    session = await services.store.get_visible_session(session_id, identity.user_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.post("", response_model=SessionOut, status_code=201)
async def create_session(
    body: Optional[SessionCreate] = None,
    identity: Identity = Depends(get_identity),
    services: IntakeServices = Depends(get_services),
):
    if identity.role != "patient":
        raise HTTPException(status_code=403, detail="Only patients can open intake sessions")
    session = await services.store.create_session(identity.user_id, body.reviewer_id if body else None)
    return SessionOut.model_validate(session)


@router.get("", response_model=List[SessionOut])
async def list_sessions(
    identity: Identity = Depends(get_identity),
    services: IntakeServices = Depends(get_services),
):
    if identity.role == "reviewer":
        rows = await services.store.list_assigned_sessions(identity.user_id)
    else:
        rows = await services.store.list_sessions(identity.user_id)
    return [
        SessionOut.model_validate(s).model_copy(update={"turn_count": count, "has_summary": has_summary})
        for s, count, has_summary in rows
    ]


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(
    session_id: UUID,
    identity: Identity = Depends(get_identity),
    services: IntakeServices = Depends(get_services),
):
    session = await _visible_session(session_id, identity, services)
    turns = await services.store.list_turns(session_id)
    summary = await services.store.get_summary(session_id)
    return SessionDetail(
        **SessionOut.model_validate(session).model_dump(exclude={"turn_count", "has_summary"}),
        turn_count=len(turns),
        has_summary=summary is not None,
        turns=[TurnOut.model_validate(t) for t in turns],
        summary=_summary_out(summary) if summary else None,
    )


@router.post("/{session_id}/summary", response_model=SummaryOut)
async def generate_summary(
    session_id: UUID,
    identity: Identity = Depends(get_identity),
    services: IntakeServices = Depends(get_services),
):
    await _visible_session(session_id, identity, services)
    summary = await services.finalizer.finalize(session_id)
    return _summary_out(summary)


@router.get("/{session_id}/summary", response_model=SummaryOut)
async def get_summary(
    session_id: UUID,
    identity: Identity = Depends(get_identity),
    services: IntakeServices = Depends(get_services),
):
    await _visible_session(session_id, identity, services)
    summary = await services.store.get_summary(session_id)
    if not summary:
        raise HTTPException(status_code=404, detail="No summary found")
    return _summary_out(summary)
