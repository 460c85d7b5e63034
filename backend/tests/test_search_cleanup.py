"""Tests for the search data retention sweep."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy.dialects import postgresql

from app.services.search_cleanup import cleanup_search_data
from conftest import FakeSessionFactory, make_mock_session


def _compiled(call) -> str:
    return str(call.args[0].compile(dialect=postgresql.dialect()))


@pytest.mark.asyncio
async def test_cleanup_deletes_from_each_table(now):
    session = make_mock_session(rowcount=2)
    factory = FakeSessionFactory(session)

    removed = await cleanup_search_data(factory, now=now)

    assert removed == {"analytics": 2, "history": 2, "cache": 2}
    statements = [_compiled(c) for c in session.execute.await_args_list]
    assert statements[0].startswith("DELETE FROM search_analytics")
    assert statements[1].startswith("DELETE FROM search_history")
    assert "search_history.use_count <" in statements[1]
    assert statements[2].startswith("DELETE FROM search_cache")
    assert session.commit.await_count == 2


@pytest.mark.asyncio
async def test_retention_cutoffs(now):
    session = make_mock_session()
    await cleanup_search_data(FakeSessionFactory(session), now=now)

    params = [c.args[0].compile(dialect=postgresql.dialect()).params for c in session.execute.await_args_list]
    assert now - timedelta(days=180) in params[0].values()
    assert now - timedelta(days=90) in params[1].values()
    assert 3 in params[1].values()
    assert now in params[2].values()
