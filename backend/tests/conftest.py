import os
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from jose import jwt

# Set test environment variables before importing app modules
os.environ.setdefault("DATABASE_URL", "postgresql+asyncpg://notesearch:notesearch@db:5432/notesearch_test")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


def make_mock_session(rows: list | None = None, rowcount: int = 0):
    """Build a mock AsyncSession whose execute() returns the given rows."""
    session = AsyncMock()
    result_mock = MagicMock()
    result_mock.fetchall.return_value = rows if rows is not None else []
    result_mock.rowcount = rowcount
    session.execute = AsyncMock(return_value=result_mock)
    session.commit = AsyncMock()
    session.add = MagicMock()
    return session


class FakeSessionFactory:
    """Stands in for ``async_session_factory``: every call yields the same mock session."""

    def __init__(self, session=None):
        self.session = session if session is not None else make_mock_session()
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, exc_type, exc, tb):
        return False


@pytest.fixture
def session_factory() -> FakeSessionFactory:
    return FakeSessionFactory()


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


def make_access_token(claims: dict, expires_delta: timedelta = timedelta(minutes=5)) -> str:
    """Mint a token the way the external auth service does (``type=access``)."""
    from app.config import get_settings

    settings = get_settings()
    payload = {**claims, "type": "access", "exp": datetime.now(UTC) + expires_delta}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
