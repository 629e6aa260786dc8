IDEMPOTENCY_TTL_SECONDS = 86400


def processed_key(event_id: str) -> str:
    return f"event:{event_id}"


async def claim_event(redis_client, event_id: str, ttl: int = IDEMPOTENCY_TTL_SECONDS) -> bool:
    """
    Atomically mark an event as seen. Returns False if it was already claimed.
    """
    claimed = await redis_client.set(processed_key(event_id), "1", ex=ttl, nx=True)
    return bool(claimed)


async def release_event(redis_client, event_id: str):
    await redis_client.delete(processed_key(event_id))
