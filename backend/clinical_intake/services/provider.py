"""Model provider wrappers: streamed chat, one-shot generation, and embeddings."""
import asyncio
from typing import AsyncIterator, Iterable, Optional

from langchain_core.embeddings import Embeddings
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI, OpenAIEmbeddings

from ..config import Settings
from ..errors import ProviderError


def to_chat_messages(system_prompt: str, history: Iterable[tuple[str, str]]) -> list[BaseMessage]:
    messages: list[BaseMessage] = [SystemMessage(content=system_prompt)]
    for role, content in history:
        if role == "user":
            messages.append(HumanMessage(content=content))
        else:
            messages.append(AIMessage(content=content))
    return messages


def _text_of(content) -> str:
    if isinstance(content, str):
        return content
    # Content blocks: keep only text parts
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class ModelProvider:
    """Chat model used for intake replies and session summaries."""

    def __init__(
        self,
        chat_model: BaseChatModel,
        summary_model: Optional[BaseChatModel] = None,
        timeout_seconds: float = 30.0,
    ):
        self.chat_model = chat_model
        self.summary_model = summary_model or chat_model
        self.timeout_seconds = timeout_seconds

    async def stream(self, system_prompt: str, history: Iterable[tuple[str, str]]) -> AsyncIterator[str]:
        """Yield reply text chunks. The caller bounds total duration."""
        messages = to_chat_messages(system_prompt, history)
        try:
            async for chunk in self.chat_model.astream(messages):
                text = _text_of(chunk.content)
                if text:
                    yield text
        except Exception as e:
            raise ProviderError(f"Chat model call failed: {type(e).__name__}") from e

    async def generate(self, prompt: str) -> str:
        """Non-streaming completion for a single prompt."""
        try:
            response = await asyncio.wait_for(
                self.summary_model.ainvoke([HumanMessage(content=prompt)]),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ProviderError("Model call timed out") from e
        except Exception as e:
            raise ProviderError(f"Model call failed: {type(e).__name__}") from e
        return _text_of(response.content if hasattr(response, "content") else str(response))


class EmbeddingService:
    def __init__(self, client: Embeddings, dimension: int, timeout_seconds: float = 10.0):
        self.client = client
        self.dimension = dimension
        self.timeout_seconds = timeout_seconds

    async def embed(self, text: str) -> list[float]:
        try:
            vector = await asyncio.wait_for(self.client.aembed_query(text), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ProviderError("Embedding call timed out") from e
        except Exception as e:
            raise ProviderError(f"Embedding call failed: {type(e).__name__}") from e
        if len(vector) != self.dimension:
            raise ProviderError(f"Embedding has dimension {len(vector)}, expected {self.dimension}")
        return list(vector)


def create_model_provider(settings: Settings) -> ModelProvider:
    api_key = settings.api_key_or_none()
    chat = ChatOpenAI(
        model=settings.chat_model,
        api_key=api_key,
        temperature=0.3,
        timeout=settings.model_timeout_seconds,
    )
    summary = None
    if settings.effective_summary_model != settings.chat_model:
        summary = ChatOpenAI(
            model=settings.effective_summary_model,
            api_key=api_key,
            temperature=0,
            timeout=settings.model_timeout_seconds,
        )
    return ModelProvider(chat, summary, timeout_seconds=settings.model_timeout_seconds)


def create_embedding_service(settings: Settings) -> EmbeddingService:
    client = OpenAIEmbeddings(
        model=settings.embedding_model,
        api_key=settings.api_key_or_none(),
        dimensions=settings.embedding_dimension,
    )
    return EmbeddingService(
        client,
        dimension=settings.embedding_dimension,
        timeout_seconds=settings.embedding_timeout_seconds,
    )
