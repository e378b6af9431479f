"""Redis-backed cache facade for the login service.

Exposes string, hash and sorted-set commands, pipelined batches and
distributed locks on top of the two store connections. Data commands always
go to the primary connection; the lock connection only takes part in lock
coordination.

Keys are used exactly as given. The facade does not namespace keys and does
not check that a key keeps the same Redis type across calls.

Example:
    cache = LoginCacheManager(Settings(redis_url="redis://cache:6379/0"))

    await cache.hset("login:attempts", "user-42", "3")
    seen = await cache.multi_hexists("login:attempts", ["user-41", "user-42"])

    async with cache.lock.lock("login:user-42", 5000):
        ...

    await cache.disconnect()
"""

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from redis.asyncio import Redis
from redis.asyncio.client import Pipeline
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import DataError, RedisError, ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from login_store.config import Settings, get_settings
from login_store.infra.connection import StoreConnections
from login_store.infra.exceptions import (
    CommandError,
    PipelineTransportError,
    StoreConnectionError,
)
from login_store.infra.lock import Lock, LockCoordinator
from login_store.infra.observability.events import ErrorEvent, ErrorObserver, report_error
from login_store.infra.observability.metrics import record_store_operation

logger = logging.getLogger(__name__)


class LoginCacheManager:
    """Cache and lock facade over the shared Redis store.

    Command errors reach the caller as CommandError, and a store that stays
    unreachable after the retry policy gives up is reported as
    StoreConnectionError. Pipeline failures are additionally sent to the
    error observer before being raised as PipelineTransportError.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        connections: StoreConnections | None = None,
        on_error: ErrorObserver | None = None,
    ) -> None:
        """Initialize the facade.

        Args:
            settings: Login store settings (defaults to the global settings)
            connections: Pre-built connections, mainly for tests
            on_error: Observer receiving lock and pipeline errors
        """
        self.settings = settings or get_settings()
        self.on_error = on_error
        self._connections = connections or StoreConnections(self.settings)

        self.lock = LockCoordinator.from_settings(
            self._connections.clients,
            self.settings,
            on_error=on_error,
        )

    @property
    def client(self) -> Redis:
        """Primary connection used for data commands."""
        return self._connections.primary

    # ========================================
    # Strings
    # ========================================

    async def set(self, key: str, value: Any, **options: Any) -> Any:
        """Write a value.

        Args:
            key: Cache key
            value: Value to store
            **options: Passed unmodified to Redis SET (ex, px, nx, xx, keepttl, get)

        Returns:
            True on success, None when an nx/xx condition prevented the write
        """
        return await self._run("set", self.client.set, key, value, **options)

    async def get(self, key: str) -> str | None:
        """Read a value; None when the key does not exist."""
        return await self._run("get", self.client.get, key)

    async def delete(self, key: str) -> int:
        """Delete a key; returns 0 when it did not exist."""
        return await self._run("delete", self.client.delete, key)

    # ========================================
    # Hashes
    # ========================================

    async def hset(self, key: str, field: str, value: Any) -> int:
        """Set a hash field; returns 1 if the field is new."""
        return await self._run("hset", self.client.hset, key, field, value)

    async def hget(self, key: str, field: str) -> str | None:
        return await self._run("hget", self.client.hget, key, field)

    async def hgetall(self, key: str) -> dict[str, str]:
        """Read a whole hash; an empty dict when the key does not exist."""
        return await self._run("hgetall", self.client.hgetall, key)

    async def multi_hexists(self, key: str, fields: Sequence[str]) -> dict[str, bool]:
        """Check several hash fields in one round trip.

        Args:
            key: Hash key
            fields: Field names, checked in order

        Returns:
            Mapping of field name to existence. A field whose check failed
            maps to False.

        Raises:
            PipelineTransportError: If the round trip itself failed
        """
        pipeline = self.client.pipeline(transaction=False)
        for field in fields:
            pipeline.hexists(key, field)

        start = time.perf_counter()
        try:
            results = await pipeline.execute(raise_on_error=False)
        except RedisError as e:
            record_store_operation("multi_hexists", time.perf_counter() - start, "error")
            report_error(
                logger,
                self.on_error,
                ErrorEvent(source="multi_hexists", error=e, context={"key": key}),
                f"Failed to check multiple hash fields for key {key}",
            )
            raise PipelineTransportError(f"multi_hexists failed for key {key}: {e}") from e

        record_store_operation("multi_hexists", time.perf_counter() - start, "success")

        response: dict[str, bool] = {}
        for field, result in zip(fields, results):
            response[field] = not isinstance(result, Exception) and result == 1
        return response

    # ========================================
    # Sorted Sets
    # ========================================

    async def zadd(self, key: str, score: float, member: str) -> int:
        """Add a member with a score; returns 1 if the member is new."""
        return await self._run("zadd", self.client.zadd, key, {member: score})

    async def zcount(
        self, key: str, min_score: float | str, max_score: float | str
    ) -> int:
        """Count members with min_score <= score <= max_score ("-inf"/"+inf" allowed)."""
        return await self._run("zcount", self.client.zcount, key, min_score, max_score)

    # ========================================
    # Pipelines
    # ========================================

    def create_pipeline(self, transaction: bool = False) -> Pipeline:
        """Create a pipeline on the primary connection.

        Args:
            transaction: Wrap the batch in MULTI/EXEC

        Returns:
            Pipeline to queue commands on, e.g. ``pipeline.hset(...)``
        """
        return self.client.pipeline(transaction=transaction)

    async def execute_pipeline(self, pipeline: Pipeline) -> list[Any]:
        """Send a pipeline in one round trip.

        Args:
            pipeline: Pipeline from create_pipeline()

        Returns:
            Results in submission order. A failed command yields its
            exception instance instead of a value.

        Raises:
            PipelineTransportError: If the round trip itself failed
        """
        start = time.perf_counter()
        try:
            results = await pipeline.execute(raise_on_error=False)
        except RedisError as e:
            record_store_operation("pipeline", time.perf_counter() - start, "error")
            report_error(
                logger,
                self.on_error,
                ErrorEvent(source="pipeline", error=e),
                "Failed to execute Redis pipeline",
            )
            raise PipelineTransportError(f"Pipeline execution failed: {e}") from e

        record_store_operation("pipeline", time.perf_counter() - start, "success")
        logger.debug(
            "Pipeline executed",
            extra={"command_count": len(results)},
        )
        return results

    # ========================================
    # Locks
    # ========================================

    async def acquire_lock(self, resource: str, duration_ms: int) -> Lock:
        """Acquire a distributed lock (see LockCoordinator.acquire)."""
        return await self.lock.acquire(resource, duration_ms)

    async def release_lock(self, lock: Lock) -> int:
        """Release a distributed lock; never raises."""
        return await self.lock.release(lock)

    # ========================================
    # Lifecycle
    # ========================================

    async def health_check(self) -> dict[str, bool]:
        """Report whether each connection answers PING."""
        return await self._connections.ping()

    async def disconnect(self) -> None:
        """Close both connections. Safe to call more than once."""
        await self._connections.close()

    async def _run(
        self,
        operation: str,
        command: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Run a single command on the primary connection and record metrics."""
        start = time.perf_counter()
        try:
            result = await command(*args, **kwargs)
        except (ResponseError, DataError) as e:
            record_store_operation(operation, time.perf_counter() - start, "error")
            logger.warning(f"Redis {operation} failed: {e}", extra={"operation": operation})
            raise CommandError(f"Redis {operation} failed: {e}", operation) from e
        except (RedisConnectionError, RedisTimeoutError) as e:
            record_store_operation(operation, time.perf_counter() - start, "error")
            logger.error(
                f"Redis unreachable during {operation}: {e}",
                extra={"operation": operation},
            )
            raise StoreConnectionError(f"Redis unreachable during {operation}: {e}") from e

        record_store_operation(operation, time.perf_counter() - start, "success")
        return result


# Global cache instance
_cache_manager: LoginCacheManager | None = None


def get_cache_manager() -> LoginCacheManager:
    """Get global cache manager instance.

    Raises:
        RuntimeError: If the cache manager was not initialized
    """
    if _cache_manager is None:
        raise RuntimeError(
            "LoginCacheManager not initialized. Call initialize_cache_manager() first."
        )
    return _cache_manager


def initialize_cache_manager(
    settings: Settings | None = None,
    on_error: ErrorObserver | None = None,
) -> LoginCacheManager:
    """Initialize global cache manager instance.

    Args:
        settings: Login store settings (defaults to the global settings)
        on_error: Observer receiving lock and pipeline errors

    Returns:
        Initialized LoginCacheManager instance
    """
    global _cache_manager
    _cache_manager = LoginCacheManager(settings, on_error=on_error)
    logger.info("Global LoginCacheManager initialized")
    return _cache_manager


def reset_cache_manager() -> None:
    """Reset the global cache manager instance (primarily for testing)."""
    global _cache_manager
    _cache_manager = None


__all__ = [
    "LoginCacheManager",
    "get_cache_manager",
    "initialize_cache_manager",
    "reset_cache_manager",
]
