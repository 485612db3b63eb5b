"""Async SQLAlchemy engine and session factory."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from cadence.config import config


def build_session_factory(database_url: str, echo: bool = False) -> tuple[AsyncEngine, async_sessionmaker]:
    """Engine plus session factory for *database_url*."""
    db_engine = create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=not database_url.startswith("sqlite"),
    )
    return db_engine, async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


engine, async_session = build_session_factory(config.database_url, echo=config.debug)


async def get_session() -> AsyncSession:
    """Dependency injection for FastAPI routes."""
    async with async_session() as session:
        yield session


async def init_db(db_engine: AsyncEngine = None) -> None:
    """Create all tables. Called at startup."""
    from cadence.db.models import Base
    async with (db_engine or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
