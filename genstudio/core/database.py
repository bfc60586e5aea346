# genstudio/core/database.py
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from genstudio.core.config import get_database_url


def make_engine(db_url: Optional[str] = None) -> AsyncEngine:
    db_url = db_url or get_database_url()

    # Configure engine based on database type
    if "sqlite" in db_url:
        return create_async_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        db_url,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


def make_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, expire_on_commit=False, class_=AsyncSession)


engine = make_engine()

SessionLocal = make_sessionmaker(engine)


class Base(DeclarativeBase):
    pass


async def init_models(bind: Optional[AsyncEngine] = None) -> None:
    # Registers every table on Base.metadata before create_all
    import genstudio.models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db():
    async with SessionLocal() as session:
        yield session
