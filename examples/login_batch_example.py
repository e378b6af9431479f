#!/usr/bin/env python3
"""Example: login attempt tracking with the cache facade and batch dispatch

Records login attempts in Redis under a per-user lock and flushes the
pending batch every two seconds. The flush here only prints the batch;
in the login service it publishes to the message queue.

Requires a Redis server on localhost:6379 (or REDIS_URL).
"""

import asyncio

from login_store.config import Settings
from login_store.infra.cache import LoginCacheManager
from login_store.infra.jobs.scheduler import BatchDispatchScheduler
from login_store.infra.observability import ErrorEvent, configure_logging

PENDING_KEY = "login:pending"


def on_error(event: ErrorEvent) -> None:
    print(f"  ! {event.source}: {event.error}")


async def main():
    """Track a few login attempts and dispatch them in batches."""
    settings = Settings(log_format="text", batch_interval_ms=2000)
    configure_logging(settings)

    cache = LoginCacheManager(settings, on_error=on_error)

    async def flush_pending() -> None:
        batch = await cache.hgetall(PENDING_KEY)
        if batch:
            await cache.delete(PENDING_KEY)
            print(f"Dispatching {len(batch)} login event(s): {batch}")

    dispatcher = BatchDispatchScheduler(
        flush_pending,
        default_interval_ms=settings.batch_interval_ms,
        on_error=on_error,
    )

    try:
        await dispatcher.start()

        for user_id in ("user-1", "user-2", "user-1"):
            async with cache.lock.lock(f"login:{user_id}", 5000):
                attempts = await cache.hget(PENDING_KEY, user_id)
                await cache.hset(PENDING_KEY, user_id, int(attempts or 0) + 1)
            await cache.zadd("login:attempt-times", asyncio.get_running_loop().time(), user_id)

        seen = await cache.multi_hexists(PENDING_KEY, ["user-1", "user-2", "user-3"])
        print(f"Pending users: {seen}")

        await asyncio.sleep(5)
    finally:
        await dispatcher.shutdown()
        await cache.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
