"""Redis connection management.

Creates the two independent Redis connections used by the login store:

- primary: serves every data command issued through the cache facade
- lock: reserved for lock coordination and subscriptions

Both connections share one configuration. Reconnection is automatic: a
command that hits a connection or timeout error is retried by redis-py up to
``redis_max_retries_per_request`` times, sleeping ``min(attempt * step, cap)``
between attempts, before the error reaches the caller.

Example:
    connections = StoreConnections(Settings(redis_url="redis://cache:6379/0"))
    await connections.primary.set("login:123", "pending")
    await connections.close()
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import AbstractBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from login_store.config import Settings
from login_store.infra.exceptions import StoreConnectionError

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., Redis]


class LinearBackoff(AbstractBackoff):
    """Backoff growing by a fixed step per failure, capped at a maximum.

    Args:
        step: Delay added per failed attempt (seconds)
        cap: Maximum delay (seconds)
    """

    def __init__(self, step: float = 0.1, cap: float = 3.0) -> None:
        self._step = step
        self._cap = cap

    def compute(self, failures: int) -> float:
        return min(failures * self._step, self._cap)


def build_connection_kwargs(settings: Settings) -> dict[str, Any]:
    """Build keyword arguments for a ``redis.asyncio.Redis`` client.

    Args:
        settings: Login store settings

    Returns:
        Client keyword arguments shared by both connections
    """
    backoff = LinearBackoff(
        step=settings.redis_retry_step_ms / 1000,
        cap=settings.redis_retry_max_delay_ms / 1000,
    )
    return {
        "host": settings.redis_target_host,
        "port": settings.redis_target_port,
        "decode_responses": True,
        "socket_connect_timeout": settings.redis_connect_timeout_seconds,
        "retry": Retry(backoff, settings.redis_max_retries_per_request),
        "retry_on_error": [RedisConnectionError, RedisTimeoutError],
    }


class StoreConnections:
    """Owner of the primary and lock Redis connections.

    Neither connection depends on the other; each keeps its own socket
    state. Clients connect lazily on their first command.
    """

    def __init__(
        self,
        settings: Settings,
        client_factory: ClientFactory = Redis,
    ) -> None:
        """Create both connections from identical configuration.

        Args:
            settings: Login store settings
            client_factory: Callable building a client from keyword arguments
        """
        kwargs = build_connection_kwargs(settings)

        self.primary = client_factory(**kwargs)
        self.lock = client_factory(**kwargs)
        self._closed = False

        logger.info(
            "Redis connections configured",
            extra={"host": kwargs["host"], "port": kwargs["port"]},
        )

    @property
    def clients(self) -> tuple[Redis, Redis]:
        """Both connections, primary first."""
        return (self.primary, self.lock)

    @property
    def closed(self) -> bool:
        return self._closed

    async def ping(self, timeout: float = 5.0) -> dict[str, bool]:
        """Check that each connection answers PING.

        Args:
            timeout: Maximum wait per connection (seconds)

        Returns:
            Reachability per connection name
        """
        results: dict[str, bool] = {}
        for name, client in (("primary", self.primary), ("lock", self.lock)):
            try:
                results[name] = bool(await asyncio.wait_for(client.ping(), timeout))
            except (RedisError, OSError, asyncio.TimeoutError) as e:
                logger.warning(f"Redis {name} connection unreachable: {e}")
                results[name] = False
        return results

    async def close(self) -> None:
        """Close both connections.

        Both closes are attempted even if the first one fails. Calling
        close() again is a no-op.

        Raises:
            StoreConnectionError: If any connection failed to close
        """
        if self._closed:
            return
        self._closed = True

        failures: list[tuple[str, Exception]] = []
        for name, client in (("primary", self.primary), ("lock", self.lock)):
            try:
                await client.aclose()
            except (RedisError, OSError) as e:
                logger.warning(f"Failed to close Redis {name} connection: {e}")
                failures.append((name, e))

        if failures:
            names = ", ".join(name for name, _ in failures)
            raise StoreConnectionError(
                f"Failed to close Redis connection(s): {names}"
            ) from failures[0][1]

        logger.info("Disconnected from Redis")


__all__ = [
    "LinearBackoff",
    "StoreConnections",
    "build_connection_kwargs",
]
