"""Tests for the query EmbeddingService.

All OpenAI and HTTP calls are mocked. Tests cover:
1. OpenAI mode success and request parameters
2. Empty text handling
3. API error handling (EmbeddingError)
4. Local HTTP mode success and failures
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from app.search.embeddings import EmbeddingError, EmbeddingService

_RealAsyncClient = httpx.AsyncClient

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def embedding_service() -> EmbeddingService:
    """Create an EmbeddingService with a dummy API key."""
    return EmbeddingService(api_key="test-api-key-fake", dimensions=8)


@pytest.fixture
def sample_embedding() -> list[float]:
    return [0.125 * i for i in range(8)]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_openai_response(embeddings: list[list[float]]):
    """Build a fake OpenAI embeddings.create() response object."""
    data = []
    for idx, emb in enumerate(embeddings):
        item = MagicMock()
        item.embedding = emb
        item.index = idx
        data.append(item)
    response = MagicMock()
    response.data = data
    return response


def _client_with_handler(handler):
    """Replacement for ``httpx.AsyncClient`` routing requests to *handler*."""

    def factory(**kwargs):
        return _RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    return factory


# ---------------------------------------------------------------------------
# 1. OpenAI mode
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_embed_text_returns_vector(embedding_service: EmbeddingService, sample_embedding: list[float]):
    fake_response = _make_openai_response([sample_embedding])

    with patch.object(
        embedding_service._client.embeddings, "create", new_callable=AsyncMock, return_value=fake_response
    ) as create:
        result = await embedding_service.embed_text("machine learning")

    assert result == sample_embedding
    create.assert_awaited_once_with(input=["machine learning"], model="text-embedding-3-small", dimensions=8)


@pytest.mark.asyncio
async def test_empty_response_raises(embedding_service: EmbeddingService):
    with patch.object(
        embedding_service._client.embeddings, "create", new_callable=AsyncMock, return_value=_make_openai_response([])
    ), pytest.raises(EmbeddingError):
        await embedding_service.embed_text("machine learning")


# ---------------------------------------------------------------------------
# 2. Empty text
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
async def test_blank_text_returns_empty_without_calling_api(embedding_service: EmbeddingService, text: str):
    with patch.object(embedding_service._client.embeddings, "create", new_callable=AsyncMock) as create:
        result = await embedding_service.embed_text(text)

    assert result == []
    create.assert_not_awaited()


# ---------------------------------------------------------------------------
# 3. API errors
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_embed_text_api_error(embedding_service: EmbeddingService):
    """embed_text should raise EmbeddingError on OpenAI API failures."""
    from openai import APIError

    api_error = APIError(
        message="Rate limit exceeded",
        request=MagicMock(),
        body=None,
    )

    with patch.object(
        embedding_service._client.embeddings, "create", new_callable=AsyncMock, side_effect=api_error
    ), pytest.raises(EmbeddingError, match="Rate limit exceeded"):
        await embedding_service.embed_text("Hello world")


# ---------------------------------------------------------------------------
# 4. Local HTTP mode
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_local_mode_posts_to_embed_endpoint(sample_embedding: list[float]):
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.read()
        return httpx.Response(200, json={"embeddings": [sample_embedding]})

    service = EmbeddingService(local_url="http://embedder:8080/", dimensions=8)
    with patch("app.search.embeddings.httpx.AsyncClient", _client_with_handler(handler)):
        result = await service.embed_text("한국어 검색")

    assert result == sample_embedding
    assert seen["url"] == "http://embedder:8080/embed"
    assert b'"dimensions":8' in seen["body"].replace(b" ", b"")


@pytest.mark.asyncio
async def test_local_mode_http_error_raises():
    service = EmbeddingService(local_url="http://embedder:8080", dimensions=8)
    handler = lambda request: httpx.Response(500, json={"detail": "boom"})  # noqa: E731

    with patch("app.search.embeddings.httpx.AsyncClient", _client_with_handler(handler)), pytest.raises(
        EmbeddingError
    ):
        await service.embed_text("machine")


@pytest.mark.asyncio
async def test_local_mode_unexpected_payload_raises():
    service = EmbeddingService(local_url="http://embedder:8080", dimensions=8)
    handler = lambda request: httpx.Response(200, json={"vectors": []})  # noqa: E731

    with patch("app.search.embeddings.httpx.AsyncClient", _client_with_handler(handler)), pytest.raises(
        EmbeddingError, match="Unexpected response"
    ):
        await service.embed_text("machine")


@pytest.mark.asyncio
async def test_local_mode_connection_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    service = EmbeddingService(local_url="http://embedder:8080", dimensions=8)
    with patch("app.search.embeddings.httpx.AsyncClient", _client_with_handler(handler)), pytest.raises(
        EmbeddingError
    ):
        await service.embed_text("machine")
