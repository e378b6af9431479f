"""Quorum-based distributed locks over independent Redis connections.

Implements the Redlock scheme: a lock is held once a quorum of connections
has stored the owner token under the resource key. Every attempt is timed
and the lease is shortened by a clock drift allowance, so a lock granted
too slowly counts as failed.

Lock coordination never crashes the caller because of transport problems.
A connection that errors or fails to answer in time counts as a vote
against. The error goes to the log and the error observer, and acquisition
degrades to LockUnavailable once the retry budget is spent.

Example:
    coordinator = LockCoordinator([primary, lock_conn], quorum=2)

    async with coordinator.lock("login:123", 5000):
        # exclusive across processes for at most 5 seconds
        ...
"""

import asyncio
import dataclasses
import logging
import random
import secrets
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass

from redis.asyncio import Redis

from login_store.config import Settings
from login_store.infra.exceptions import LockUnavailable
from login_store.infra.observability.events import ErrorEvent, ErrorObserver, report_error
from login_store.infra.observability.metrics import (
    record_lock_acquisition,
    record_lock_client_error,
)

logger = logging.getLogger(__name__)

# A connection grants the lock when the key is free or already carries our
# token, so connections pointing at the same server all vote for the owner.
ACQUIRE_SCRIPT = """
local current = redis.call("get", KEYS[1])
if current == false or current == ARGV[1] then
    redis.call("set", KEYS[1], ARGV[1], "PX", ARGV[2])
    return 1
end
return 0
"""

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
end
return 0
"""

# Fixed allowance (ms) added to the proportional drift
DRIFT_CONSTANT_MS = 2


@dataclass(frozen=True)
class Lock:
    """A held distributed lock.

    Attributes:
        resource: Locked resource name (the Redis key)
        value: Random owner token
        expiration: time.monotonic() deadline after which the lock is void
        attempts: Attempts needed to obtain the lock
    """

    resource: str
    value: str
    expiration: float
    attempts: int = 1

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expiration

    @property
    def remaining_ms(self) -> int:
        return max(0, int((self.expiration - time.monotonic()) * 1000))


class LockCoordinator:
    """Acquires, extends and releases quorum locks."""

    def __init__(
        self,
        clients: Sequence[Redis],
        *,
        drift_factor: float = 0.01,
        retry_count: int = 10,
        retry_delay_ms: int = 200,
        retry_jitter_ms: int = 200,
        client_timeout_ms: int = 50,
        quorum: int | None = None,
        on_error: ErrorObserver | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            clients: Independent Redis connections taking part in the vote
            drift_factor: Share of the lease reserved for clock drift
            retry_count: Retries after the first attempt
            retry_delay_ms: Base wait between attempts
            retry_jitter_ms: Random spread applied to the wait (+/-)
            client_timeout_ms: Time limit for one connection to answer a script
            quorum: Votes needed for a lock; defaults to a majority
            on_error: Observer receiving transport errors

        Raises:
            ValueError: If there are no clients or quorum is out of range
        """
        if not clients:
            raise ValueError("LockCoordinator needs at least one Redis connection")

        if quorum is None:
            quorum = len(clients) // 2 + 1
        if not 1 <= quorum <= len(clients):
            raise ValueError(f"quorum must be between 1 and {len(clients)}, got {quorum}")

        self._clients = tuple(clients)
        self.drift_factor = drift_factor
        self.retry_count = retry_count
        self.retry_delay_ms = retry_delay_ms
        self.retry_jitter_ms = retry_jitter_ms
        self.client_timeout_ms = client_timeout_ms
        self.quorum = quorum
        self.on_error = on_error

    @classmethod
    def from_settings(
        cls,
        clients: Sequence[Redis],
        settings: Settings,
        on_error: ErrorObserver | None = None,
    ) -> "LockCoordinator":
        """Build a coordinator from the lock section of the settings."""
        return cls(
            clients,
            drift_factor=settings.lock_drift_factor,
            retry_count=settings.lock_retry_count,
            retry_delay_ms=settings.lock_retry_delay_ms,
            retry_jitter_ms=settings.lock_retry_jitter_ms,
            client_timeout_ms=settings.lock_client_timeout_ms,
            quorum=settings.lock_quorum,
            on_error=on_error,
        )

    async def acquire(self, resource: str, duration_ms: int) -> Lock:
        """Acquire a lock on a resource.

        Args:
            resource: Resource name, used as the Redis key
            duration_ms: Lease duration in milliseconds

        Returns:
            The held lock

        Raises:
            LockUnavailable: If quorum was not reached within the retry budget
        """
        value = secrets.token_hex(16)
        max_attempts = self.retry_count + 1

        for attempt in range(1, max_attempts + 1):
            start = time.monotonic()
            votes = await self._vote(ACQUIRE_SCRIPT, resource, value, duration_ms)
            expiration = self._expiration(start, duration_ms)

            if votes >= self.quorum and expiration > time.monotonic():
                record_lock_acquisition(True, attempt)
                logger.debug(
                    f"Lock acquired: {resource}",
                    extra={"resource": resource, "attempts": attempt, "votes": votes},
                )
                return Lock(resource=resource, value=value, expiration=expiration, attempts=attempt)

            # Drop partial holds before the next attempt
            await self._vote(RELEASE_SCRIPT, resource, value)

            if attempt < max_attempts:
                await asyncio.sleep(self._retry_wait())

        record_lock_acquisition(False, max_attempts)
        logger.warning(
            f"Lock unavailable: {resource}",
            extra={"resource": resource, "attempts": max_attempts, "quorum": self.quorum},
        )
        raise LockUnavailable(resource, max_attempts)

    async def extend(self, lock: Lock, duration_ms: int) -> Lock:
        """Extend a held lock to a new lease duration.

        Args:
            lock: Lock returned by acquire() or a previous extend()
            duration_ms: New lease duration in milliseconds, from now

        Returns:
            The lock with its new expiration

        Raises:
            LockUnavailable: If the lock already expired or quorum was not reached
        """
        if lock.expired:
            raise LockUnavailable(lock.resource, 0)

        start = time.monotonic()
        votes = await self._vote(EXTEND_SCRIPT, lock.resource, lock.value, duration_ms)
        expiration = self._expiration(start, duration_ms)

        if votes >= self.quorum and expiration > time.monotonic():
            return dataclasses.replace(lock, expiration=expiration)

        raise LockUnavailable(lock.resource, 1)

    async def release(self, lock: Lock) -> int:
        """Release a lock on every connection.

        Safe to call on a lock that expired or was already released.

        Args:
            lock: Lock to release

        Returns:
            Number of connections that still held and deleted the lock
        """
        released = await self._vote(RELEASE_SCRIPT, lock.resource, lock.value)
        logger.debug(
            f"Lock released: {lock.resource}",
            extra={"resource": lock.resource, "votes": released},
        )
        return released

    @asynccontextmanager
    async def lock(self, resource: str, duration_ms: int) -> AsyncIterator[Lock]:
        """Hold a lock for the duration of an ``async with`` block.

        Raises:
            LockUnavailable: If the lock could not be acquired
        """
        held = await self.acquire(resource, duration_ms)
        try:
            yield held
        finally:
            await self.release(held)

    async def _vote(self, script: str, resource: str, value: str, *args: int) -> int:
        """Run a script on every connection and count the ones returning 1.

        A connection that does not answer within client_timeout_ms votes
        against, even while redis-py is still retrying it.
        """
        timeout = self.client_timeout_ms / 1000
        results = await asyncio.gather(
            *(
                asyncio.wait_for(client.eval(script, 1, resource, value, *args), timeout)
                for client in self._clients
            ),
            return_exceptions=True,
        )

        votes = 0
        for index, result in enumerate(results):
            if isinstance(result, Exception):
                record_lock_client_error()
                report_error(
                    logger,
                    self.on_error,
                    ErrorEvent(
                        source="lock",
                        error=result,
                        context={"resource": resource, "connection": index},
                    ),
                    f"Redis error during lock coordination for {resource}",
                )
            elif isinstance(result, BaseException):
                raise result
            elif result == 1:
                votes += 1
        return votes

    def _expiration(self, start: float, duration_ms: int) -> float:
        drift_ms = round(self.drift_factor * duration_ms) + DRIFT_CONSTANT_MS
        return start + (duration_ms - drift_ms) / 1000

    def _retry_wait(self) -> float:
        jitter = random.uniform(-self.retry_jitter_ms, self.retry_jitter_ms)
        return max(0.0, self.retry_delay_ms + jitter) / 1000


__all__ = ["Lock", "LockCoordinator"]
