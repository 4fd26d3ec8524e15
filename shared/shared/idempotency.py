IDEMPOTENCY_TTL_SECONDS = 60 * 60 * 24


def processed_key(event_id: str) -> str:
    return f"processed_event:{event_id}"


async def claim_event(redis_client, event_id: str, ttl_seconds: int = IDEMPOTENCY_TTL_SECONDS) -> bool:
    """
    Atomically mark an event as processed.
    Returns False if another delivery already claimed it.
    Without a redis client every delivery is handled.
    """
    if redis_client is None:
        return True
    claimed = await redis_client.set(processed_key(event_id), "1", ex=ttl_seconds, nx=True)
    return bool(claimed)


async def release_event(redis_client, event_id: str):
    if redis_client is None:
        return
    await redis_client.delete(processed_key(event_id))
