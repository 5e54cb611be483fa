"""Fixed-window request limiter backed by Redis."""

from redis.asyncio import Redis


async def allow(
    redis: Redis,
    scope: str,
    identity: str,
    client_ip: str,
    max_attempts: int,
    window_sec: int,
) -> bool:
    """
    Count one hit for (scope, identity, ip) and report whether it is within budget.

    Both the identity (email/phone/user id) and the client IP get their own
    counter; either one exceeding max_attempts refuses the request.
    """
    keys = [
        f"rl:{scope}:id:{(identity or '').lower()}",
        f"rl:{scope}:ip:{client_ip}",
    ]
    allowed = True
    for key in keys:
        count = await redis.incr(key)
        if count == 1:
            await redis.expire(key, window_sec)
        if count > max_attempts:
            allowed = False
    return allowed
