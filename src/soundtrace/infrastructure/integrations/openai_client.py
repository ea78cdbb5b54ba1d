"""OpenAI-compatible embedding and completion client."""

import logging

from openai import AsyncOpenAI, OpenAIError

from soundtrace.config.settings import OpenAISettings
from soundtrace.domain.exceptions import ExternalServiceException
from soundtrace.domain.ports import ICompletionService, IEmbeddingService

logger = logging.getLogger(__name__)


class OpenAIClient(IEmbeddingService, ICompletionService):
    """Embeds text and runs single-turn chat completions.

    SDK errors are converted into ExternalServiceException so callers only deal with
    one error type for "the model service didn't answer".
    """

    # Like SpotifyClient, the SDK client is created lazily. AsyncOpenAI refuses to construct
    # without an API key, and wiring the app must not need one.
    def __init__(self, settings: OpenAISettings, client: AsyncOpenAI | None = None) -> None:
        self.settings = settings
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.api_key or None,
                base_url=self.settings.base_url,
                timeout=self.settings.request_timeout,
            )
        return self._client

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self._get_client().embeddings.create(
                model=self.settings.embedding_model,
                input=text,
            )
        except OpenAIError as e:
            logger.error(
                "openai.embedding.failed",
                extra={"model": self.settings.embedding_model, "error": str(e)},
            )
            raise ExternalServiceException("embedding", str(e)) from e

        embedding = list(response.data[0].embedding)
        if len(embedding) != self.settings.embedding_dimensions:
            raise ExternalServiceException(
                "embedding",
                f"expected {self.settings.embedding_dimensions} dimensions, got {len(embedding)}",
            )
        return embedding

    async def complete(self, prompt: str, system: str | None = None) -> str:
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self._get_client().chat.completions.create(
                model=self.settings.completion_model,
                messages=messages,  # type: ignore[arg-type]
                temperature=self.settings.temperature,
            )
        except OpenAIError as e:
            logger.error(
                "openai.completion.failed",
                extra={"model": self.settings.completion_model, "error": str(e)},
            )
            raise ExternalServiceException("completion", str(e)) from e

        content = response.choices[0].message.content or ""
        logger.debug("openai.completion.received", extra={"length": len(content)})
        return content

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
