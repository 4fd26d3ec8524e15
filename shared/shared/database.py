from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

Base = declarative_base()


def get_engine(database_url: str, *, pooled: bool = True):
    if not database_url:
        raise RuntimeError("database url is not set")
    if pooled:
        return create_async_engine(database_url, echo=False, future=True)
    return create_async_engine(database_url, echo=False, future=True, poolclass=NullPool)


def get_session(engine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False
    )


async def create_all(engine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
