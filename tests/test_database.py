"""Session scope and connection URL handling."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from okk.database import get_engine_url_and_connect_args, recover_session, session_scope


def maker_for(session):
    maker = MagicMock()
    maker.return_value.__aenter__.return_value = session
    return maker


@pytest.mark.asyncio
async def test_scope_commits_on_success():
    session = AsyncMock()
    async with session_scope(maker_for(session)) as s:
        assert s is session
    session.commit.assert_awaited_once()
    session.rollback.assert_not_awaited()


@pytest.mark.asyncio
async def test_scope_rolls_back_and_reraises():
    """A failed unit of work is never committed."""
    session = AsyncMock()
    with pytest.raises(ValueError):
        async with session_scope(maker_for(session)):
            raise ValueError("bad row")
    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_recover_session_rolls_back():
    session = AsyncMock()
    await recover_session(session)
    session.rollback.assert_awaited_once()


def test_sslmode_stripped_from_url():
    url, connect_args = get_engine_url_and_connect_args(
        "postgresql+asyncpg://u:p@localhost:5432/okk?sslmode=require&application_name=okk"
    )
    assert "sslmode" not in url
    assert "application_name=okk" in url
    assert connect_args == {}


def test_supabase_gets_ssl_context():
    _, connect_args = get_engine_url_and_connect_args(
        "postgresql+asyncpg://u:p@db.abc.supabase.co:5432/postgres"
    )
    assert "ssl" in connect_args
