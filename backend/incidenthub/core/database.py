from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .config import Settings

Base = declarative_base()


def build_engine(settings: Settings) -> AsyncEngine:
    url = settings.DATABASE_URL
    connect_args = {}
    if url.startswith("sqlite"):
        # writers from concurrent requests wait instead of failing fast
        connect_args["timeout"] = 15
    elif settings.DATABASE_SSL:
        connect_args = {
            "ssl": "require",
            "server_settings": {
                "application_name": "incidenthub"
            }
        }
    return create_async_engine(
        url,
        echo=settings.DATABASE_ECHO,
        pool_pre_ping=not url.startswith("sqlite"),
        connect_args=connect_args,
    )


def uses_postgis(engine: AsyncEngine) -> bool:
    return engine.dialect.name == "postgresql"


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    # models must be imported so their tables are registered on Base
    from ..models import incident, user  # noqa: F401

    async with engine.begin() as conn:
        if uses_postgis(engine):
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS postgis"))
        await conn.run_sync(Base.metadata.create_all)
