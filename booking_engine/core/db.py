from collections.abc import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from booking_engine.core.config import settings


def to_async_url(database_url: str) -> str:
    """Map a plain database URL onto its async driver.

    asyncpg does not accept psycopg params like sslmode/channel_binding, so they are
    stripped; SSL is requested with asyncpg's own ssl param instead.
    """
    url = make_url(database_url)
    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+asyncpg")
    elif url.drivername == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")
    ssl_required = url.query.get("sslmode") in ("require", "verify-ca", "verify-full")
    url = url.difference_update_query(["sslmode", "channel_binding"])
    if ssl_required:
        url = url.update_query_dict({"ssl": "require"})
    return url.render_as_string(hide_password=False)


def make_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    url = to_async_url(database_url)
    if url.startswith("sqlite"):
        # SQLite picks its own pool; queue pool sizing does not apply
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


def make_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = make_engine(settings.database_url, echo=settings.env == "development")
async_session_maker = make_session_maker(engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Session factory for work that needs one transaction per unit (reminder sweep)."""
    return async_session_maker


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create tables if using create_all; prefer Alembic in production."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
