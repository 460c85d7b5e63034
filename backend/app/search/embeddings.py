"""Query embedding provider.

Stored content already carries its embedding; this module only turns the
incoming query text into a vector for the semantic ranker. Uses the OpenAI
embeddings API (text-embedding-3-small by default) or a local HTTP service.
"""

from __future__ import annotations

import logging

import httpx
from openai import APIError, AsyncOpenAI

from app.config import Settings

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when an embedding API call fails."""


class EmbeddingService:
    """Generate a vector embedding for a search query.

    Supports two modes:

    * **OpenAI API mode** (default) -- uses the OpenAI embeddings endpoint.
    * **Local HTTP mode** -- when ``local_url`` is set, requests are sent to
      a local embedding service instead.

    Parameters
    ----------
    api_key : str
        OpenAI API key.  Ignored when running in local mode.
    model : str
        Embedding model name (default: ``text-embedding-3-small``).
        Only used in OpenAI mode.
    dimensions : int
        Output vector dimensions (default: 1536).
    local_url : str | None
        Base URL of a local embedding service exposing ``POST /embed``.
    timeout : float
        Request timeout in seconds for local mode.
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        local_url: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._model = model
        self._dimensions = dimensions
        self._local_url = local_url or None
        self._timeout = timeout

        if self._local_url:
            logger.info("EmbeddingService: local mode enabled (%s)", self._local_url)
            self._client = None
        else:
            self._client = AsyncOpenAI(api_key=api_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> EmbeddingService:
        return cls(
            api_key=settings.OPENAI_API_KEY,
            model=settings.EMBEDDING_MODEL,
            dimensions=settings.EMBEDDING_DIMENSION,
            local_url=settings.EMBEDDING_SERVICE_URL,
            timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
        )

    async def embed_text(self, text: str) -> list[float]:
        """Embed a single text string.

        Returns an empty list when *text* is empty or whitespace-only.

        Raises
        ------
        EmbeddingError
            If the provider call fails.
        """
        if not text or not text.strip():
            return []

        if self._local_url:
            return await self._call_local_api(text)
        return await self._call_openai_api(text)

    async def _call_openai_api(self, text: str) -> list[float]:
        """Call the OpenAI embeddings API.

        Raises
        ------
        EmbeddingError
            Wraps any ``openai.APIError`` into a domain-specific exception.
        """
        try:
            response = await self._client.embeddings.create(
                input=[text],
                model=self._model,
                dimensions=self._dimensions,
            )
        except APIError as exc:
            logger.error("Embedding API error: %s", exc)
            raise EmbeddingError(str(exc)) from exc

        if not response.data:
            raise EmbeddingError("Embedding API returned no data")
        return list(response.data[0].embedding)

    async def _call_local_api(self, text: str) -> list[float]:
        """Call a local HTTP embedding service.

        Expects ``POST /embed`` accepting ``{"input": [...], "dimensions": N}``
        and returning ``{"embeddings": [[...], ...]}``.

        Raises
        ------
        EmbeddingError
            If the HTTP request fails or returns an unexpected response.
        """
        url = f"{self._local_url.rstrip('/')}/embed"
        payload = {"input": [text], "dimensions": self._dimensions}

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
                return list(response.json()["embeddings"][0])
        except httpx.HTTPStatusError as exc:
            logger.error("Local embedding HTTP error: %s", exc)
            raise EmbeddingError(str(exc)) from exc
        except httpx.RequestError as exc:
            logger.error("Local embedding request error: %s", exc)
            raise EmbeddingError(str(exc)) from exc
        except (KeyError, IndexError, ValueError) as exc:
            logger.error("Local embedding response parse error: %s", exc)
            raise EmbeddingError(f"Unexpected response from local embedding service: {exc}") from exc
