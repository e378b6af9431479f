"""Shared pytest fixtures.

Key goals:
- Prevent global singletons (settings, cache manager, batch scheduler) from
  leaking state across tests.
- Keep REDIS_URL / REDIS_HOST from the developer's shell out of Settings().
- Provide a fakeredis-backed pair of store connections.
"""

from __future__ import annotations

import fakeredis
import fakeredis.aioredis
import pytest

from login_store.config import Settings, set_settings
from login_store.infra.cache import reset_cache_manager
from login_store.infra.connection import StoreConnections
from login_store.infra.jobs.scheduler import reset_batch_scheduler


@pytest.fixture(autouse=True)
def _reset_global_singletons(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure global singletons do not leak between tests."""
    for name in ("REDIS_URL", "REDIS_HOST", "LOGIN_STORE_REDIS_URL", "LOGIN_STORE_REDIS_HOST"):
        monkeypatch.delenv(name, raising=False)

    set_settings(None)
    reset_cache_manager()
    reset_batch_scheduler()
    yield
    set_settings(None)
    reset_cache_manager()
    reset_batch_scheduler()


@pytest.fixture
def settings() -> Settings:
    """Settings with fast lock retries."""
    return Settings(lock_retry_count=2, lock_retry_delay_ms=0, lock_retry_jitter_ms=0)


@pytest.fixture
def fake_server() -> fakeredis.FakeServer:
    """In-memory Redis server shared by both connections."""
    return fakeredis.FakeServer()


@pytest.fixture
def fake_connections(settings: Settings, fake_server: fakeredis.FakeServer) -> StoreConnections:
    """Primary and lock connections backed by fakeredis."""

    def _factory(**kwargs):
        return fakeredis.aioredis.FakeRedis(server=fake_server, decode_responses=True)

    return StoreConnections(settings, client_factory=_factory)
