"""Database engine and session handling for audit passes.

A pass issues many reads on one session. PostgreSQL aborts the whole
transaction on the first failed statement, so callers that catch a store error
and keep going must call :func:`recover_session` before the next query.
"""

import logging
import ssl
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from okk.config import settings

logger = logging.getLogger(__name__)


def _supabase_ssl_context() -> ssl.SSLContext:
    # Supabase pooler chain does not verify on every host
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


def get_engine_url_and_connect_args(url: str | None = None) -> tuple[str, dict]:
    """asyncpg URL without ``sslmode``/``ssl`` query args, plus SSL connect args."""
    url = url or settings.database_url
    connect_args: dict = {}
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    if "sslmode" in query or "ssl" in query:
        query.pop("sslmode", None)
        query.pop("ssl", None)
        url = urlunparse(parsed._replace(query=urlencode(query, doseq=True)))
    if "supabase" in parsed.netloc:
        connect_args["ssl"] = _supabase_ssl_context()
    return url, connect_args


class Base(DeclarativeBase):
    """Declarative base for the audit and CRM mirror tables."""


_db_url, _connect_args = get_engine_url_and_connect_args()

engine = create_async_engine(
    _db_url,
    echo=settings.log_level == "DEBUG",
    connect_args=_connect_args,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def session_scope(
    maker: async_sessionmaker[AsyncSession] = async_session_maker,
) -> AsyncIterator[AsyncSession]:
    """One session; commit on success, roll back and re-raise on error."""
    async with maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def recover_session(session: AsyncSession) -> None:
    """Discard a (possibly aborted) transaction so the session can query again.

    Everything an audit pass writes is committed per rule, so only reads are
    lost here.
    """
    await session.rollback()
    logger.debug("Session rolled back after a failed statement")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request."""
    async with session_scope() as session:
        yield session
