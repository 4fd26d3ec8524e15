from shared.database import Base, get_engine, get_session

from .config import DATABASE_URL

__all__ = ["Base", "engine", "SessionLocal", "get_db"]

engine = get_engine(DATABASE_URL) if DATABASE_URL else None
SessionLocal = get_session(engine) if engine is not None else None


async def get_db():
    if SessionLocal is None:
        raise RuntimeError("BOOKING_DB environment variable is not set")
    async with SessionLocal() as session:
        yield session
