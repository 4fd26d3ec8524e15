import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date, datetime
from typing import AsyncIterator

from redis.exceptions import LockError
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from .config import SLOT_LOCK_TIMEOUT_SECONDS, SLOT_LOCK_TTL_SECONDS
from .errors import ConflictError
from .models import SlotGuard
from .redis_client import redis_client
from .timeslots import utcnow

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def slot_key(kind: str, resource_id: str, day: date) -> str:
    return f"slot:{kind}:{resource_id}:{day.isoformat()}"


async def guard_slots(db: AsyncSession, keys: list[str], now: datetime | None = None):
    """
    Upsert the guard row of every key inside the caller's transaction.

    The row (Postgres) or database (SQLite) write lock is held until the caller
    commits or rolls back, so a second writer for the same resource and date
    waits here and then sees the first writer's booking.
    """
    now = now or utcnow()
    dialect = db.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"slot guards are not supported on {dialect}")

    for key in sorted(set(keys)):
        stmt = insert(SlotGuard).values(key=key, touched_at=now)
        await db.execute(
            stmt.on_conflict_do_update(index_elements=[SlotGuard.key], set_={"touched_at": now})
        )


class SlotLocks:
    """
    Mutex per (resource, date) held across the availability check and the insert.

    With a redis client the lock is shared by every booking-service process;
    without one it only serializes callers inside this process and the
    database guard rows are what keep separate processes apart.
    """

    def __init__(
        self,
        redis_client=None,
        timeout: float = SLOT_LOCK_TIMEOUT_SECONDS,
        ttl: float = SLOT_LOCK_TTL_SECONDS,
    ):
        self.redis_client = redis_client
        self.timeout = timeout
        self.ttl = ttl
        self._local_locks: dict[str, asyncio.Lock] = {}
        self._local_users: dict[str, int] = {}

    @property
    def distributed(self) -> bool:
        return self.redis_client is not None

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        # fixed order so two requests sharing venue and coach cannot deadlock
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self._acquire(key))
            yield

    def _acquire(self, key: str):
        if self.redis_client is None:
            return self._acquire_local(key)
        return self._acquire_redis(key)

    @asynccontextmanager
    async def _acquire_local(self, key: str) -> AsyncIterator[None]:
        lock = self._local_locks.setdefault(key, asyncio.Lock())
        self._local_users[key] = self._local_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._local_users[key] -= 1
            if self._local_users[key] == 0:
                del self._local_users[key]
                del self._local_locks[key]

    @asynccontextmanager
    async def _acquire_redis(self, key: str) -> AsyncIterator[None]:
        # ttl outlives the catalog calls and db round trips of one booking;
        # timeout only bounds how long a second request waits for it
        lock = self.redis_client.lock(
            f"lock:{key}",
            timeout=self.ttl,
            blocking_timeout=self.timeout,
        )
        if not await lock.acquire():
            raise ConflictError(
                "Slot is being booked by another request, try again shortly",
                code="slot_busy",
                details={"lock": key},
            )
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("slot lock %s expired before release", key)


slot_locks = SlotLocks(redis_client)
