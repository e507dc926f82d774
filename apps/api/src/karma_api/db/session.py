from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def build_session_factory(database_url: str, *, echo: bool = False) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Create the async engine and a session factory bound to it."""

    engine = create_async_engine(database_url, echo=echo, future=True, pool_pre_ping=True)
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    return engine, factory
