"""Business logic services."""
from .safety import SafetyGate, SAFETY_MESSAGE
from .context import ContextStore, InMemoryVectorIndex, PgVectorIndex
from .provider import ModelProvider, EmbeddingService
from .storage import TurnStore
from .summary import SessionFinalizer
from .turns import TurnProcessor, TurnRequest, TurnReply

__all__ = [
    "SafetyGate",
    "SAFETY_MESSAGE",
    "ContextStore",
    "InMemoryVectorIndex",
    "PgVectorIndex",
    "ModelProvider",
    "EmbeddingService",
    "TurnStore",
    "SessionFinalizer",
    "TurnProcessor",
    "TurnRequest",
    "TurnReply",
]
