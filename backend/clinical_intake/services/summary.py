"""Session finalization: detect the end of an intake and store a structured clinical summary."""
import logging
from uuid import UUID

from ..errors import FinalizationError, PersistenceError, ProviderError, ValidationError
from ..models import SessionSummary
from .prompts import build_summary_prompt, format_transcript
from .provider import ModelProvider
from .safety import mentions_crisis_resource
from .storage import TurnStore

logger = logging.getLogger(__name__)

END_SESSION_PHRASE = "end session"
# Emitted by the interviewer prompt when it writes the summary inline
MODEL_SUMMARY_MARKER = "intake summary:"
SAFETY_FLAG_NOTE = "Crisis indicators detected during session"


class SessionFinalizer:
    def __init__(self, store: TurnStore, provider: ModelProvider, finalize_on_model_marker: bool = True):
        self.store = store
        self.provider = provider
        self.finalize_on_model_marker = finalize_on_model_marker

    def should_finalize(self, user_text: str, assistant_text: str = "") -> bool:
        if END_SESSION_PHRASE in (user_text or "").lower():
            return True
        return self.finalize_on_model_marker and MODEL_SUMMARY_MARKER in (assistant_text or "").lower()

    async def finalize(self, session_id: UUID) -> SessionSummary:
        """
        Summarize the full transcript and upsert the session's single summary row.
        Raises ValidationError when there is nothing to summarize, FinalizationError otherwise.
        """
        try:
            turns = await self.store.list_turns(session_id)
        except PersistenceError as e:
            raise FinalizationError("Could not load transcript", session_id) from e
        if not turns:
            raise ValidationError("No messages to summarize", session_id)

        transcript = format_transcript(turns)
        try:
            summary_text = await self.provider.generate(build_summary_prompt(transcript))
        except ProviderError as e:
            raise FinalizationError("Summary generation failed", session_id) from e

        flagged = any(t.role == "assistant" and mentions_crisis_resource(t.content) for t in turns)
        try:
            summary = await self.store.upsert_summary(
                session_id, summary_text, SAFETY_FLAG_NOTE if flagged else None
            )
        except PersistenceError as e:
            raise FinalizationError("Could not save summary", session_id) from e

        logger.info(
            "Session summary generated",
            extra={"session_id": str(session_id), "turns": len(turns), "safety_flagged": flagged},
        )
        return summary

    async def finalize_in_background(self, session_id: UUID) -> None:
        """Post-turn entry point: failures are logged, never raised or retried."""
        try:
            await self.finalize(session_id)
        except (FinalizationError, ValidationError) as e:
            logger.error(
                "Session finalization failed",
                extra={"session_id": str(session_id), "reason": e.message},
            )
