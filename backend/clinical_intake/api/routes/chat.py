"""Chat endpoint: one patient message in, safety message or streamed reply out."""
import logging
from typing import AsyncIterator
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse, StreamingResponse

from ...core import Identity, IntakeServices, get_identity, get_services
from ...errors import PersistenceError, ValidationError
from ...schemas import ChatRequest
from ...services import SAFETY_MESSAGE, TurnRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


async def _resolve_session(body: ChatRequest, identity: Identity, services: IntakeServices) -> UUID:
    if body.session_id is None:
        session = await services.store.create_session(identity.user_id)
        return session.id
    session = await services.store.get_owned_session(body.session_id, identity.user_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.id


async def _prepend(first: str, rest: AsyncIterator[str]) -> AsyncIterator[str]:
    if first:
        yield first
    try:
        async for chunk in rest:
            yield chunk
    except Exception:
        # Status is already sent; the turn's own error handling logged the cause
        logger.warning("Reply stream ended early")


@router.post("/chat")
async def chat(
    body: ChatRequest,
    identity: Identity = Depends(get_identity),
    services: IntakeServices = Depends(get_services),
):
    if identity.role != "patient":
        raise HTTPException(status_code=403, detail="Only patients can send intake messages")
    if not body.message.strip():
        raise ValidationError("Message must not be empty")

    try:
        session_id = await _resolve_session(body, identity, services)
    except PersistenceError:
        if services.safety_gate.evaluate(body.message):
            return PlainTextResponse(SAFETY_MESSAGE)
        raise

    reply = await services.processor.process(
        TurnRequest(owner_id=identity.user_id, session_id=session_id, message=body.message)
    )
    headers = {"X-Session-ID": str(session_id)}
    if reply.crisis:
        return PlainTextResponse(await reply.text(), headers=headers)

    logger.debug(
        "Streaming model reply",
        extra={"session_id": str(session_id), "context_items": reply.context_size},
    )
    # Wait for the first chunk so a failed model call still gets an error status
    stream = reply.chunks()
    try:
        first = await anext(stream)
    except StopAsyncIteration:
        first = ""
    return StreamingResponse(
        _prepend(first, stream),
        media_type="text/plain; charset=utf-8",
        headers=headers,
    )
