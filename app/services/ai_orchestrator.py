import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

from app.core.config import Config
from app.core.exceptions import ProviderError
from app.database import SessionLocal
from app.services.embedding_service import HashEmbeddingProvider, OpenAIEmbeddingProvider
from app.services.openrouter_client import OpenRouterClassifier, OpenRouterClient
from app.services.providers import (
    ClassificationProvider,
    CompletionProvider,
    EmbeddingProvider,
    VectorIndex,
)
from app.services.vector_index import PineconeVectorIndex, SqlVectorIndex

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, ProviderError):
        return exc.transient
    return isinstance(exc, (asyncio.TimeoutError, httpx.TransportError))


async def call_with_timeout(awaitable: Awaitable[T], seconds: float, provider: str) -> T:
    """Await a provider call, turning a timeout into a transient ProviderError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        logger.warning(f"{provider} call exceeded {seconds:g}s")
        raise ProviderError(provider, f"timed out after {seconds:g}s")


async def retry_read_only(call: Callable[[], Awaitable[T]], backoff_seconds: float) -> T:
    """
    Run a read-only provider call, retrying once on a transient failure.
    Only embedding, vector query and classification go through here;
    generation is never retried.
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=backoff_seconds, min=backoff_seconds, max=backoff_seconds * 4),
        retry=retry_if_exception(_is_transient),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            result = await call()
    return result


class AIOrchestrator:
    """
    Process-wide container for AI provider clients.

    Built once in the application lifespan and kept on app.state; request
    handlers pass the individual providers into the pipeline components.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_index: VectorIndex,
        completion: CompletionProvider,
        classifier: ClassificationProvider,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.embedder = embedder
        self.vector_index = vector_index
        self.completion = completion
        self.classifier = classifier
        self._http_client = http_client

    @classmethod
    def from_settings(cls, config: Config, session_scope: Callable[[], Any] = SessionLocal) -> "AIOrchestrator":
        ai = config.ai
        http_client = httpx.AsyncClient(timeout=httpx.Timeout(config.pipeline.generation_timeout, connect=5.0))

        if ai.embedding_backend == "openai":
            embedder = OpenAIEmbeddingProvider(ai, http_client=http_client)
        else:
            embedder = HashEmbeddingProvider()

        if ai.vector_backend == "pinecone":
            vector_index = PineconeVectorIndex(ai, http_client=http_client)
        else:
            vector_index = SqlVectorIndex(session_scope)

        completion = OpenRouterClient(ai, http_client=http_client)
        classifier = OpenRouterClassifier(
            OpenRouterClient(ai, model_name=ai.classifier_model_name, http_client=http_client)
        )

        logger.info(
            "AI providers initialised",
            extra={
                "embedding_backend": ai.embedding_backend,
                "vector_backend": ai.vector_backend,
                "model": ai.model_name,
                "kill_switch": ai.kill_switch,
            },
        )
        return cls(embedder, vector_index, completion, classifier, http_client=http_client)

    async def aclose(self):
        if self._http_client is not None:
            await self._http_client.aclose()
            logger.info("AI provider HTTP client closed")
