"""
Test configuration and fixtures for the TaskHub test suite.

Required environment variables are set before any taskhub module loads its
configuration.
"""

import os

os.environ.setdefault("TASKHUB_JWT_SECRET", "test-access-secret-for-unit-tests")
os.environ.setdefault("TASKHUB_JWT_REFRESH_SECRET", "test-refresh-secret-for-unit-tests")
os.environ.setdefault("LOGGING_ENVIRONMENT", "unit_test")
os.environ.setdefault("DATABASE_URL", "memory://")

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402

from taskhub.auth.refresh_registry import RefreshTokenRegistry  # noqa: E402
from taskhub.auth.token_service import TokenService  # noqa: E402
from taskhub.config import reset_config  # noqa: E402
from taskhub.config.models import AppConfig, SecurityConfig  # noqa: E402
from taskhub.persistence import InMemoryPersistence  # noqa: E402
from taskhub.realtime.event_router import EventRouter  # noqa: E402
from taskhub.realtime.messaging import MessageBroadcaster  # noqa: E402
from taskhub.realtime.notification_dispatcher import NotificationDispatcher  # noqa: E402
from taskhub.realtime.presence_registry import PresenceRegistry, PresenceService  # noqa: E402

from .fixtures.realtime import MutableClock, seed_store  # noqa: E402


@pytest.fixture(autouse=True)
def reset_config_cache():
    """Ensure each test starts with a fresh configuration."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def security_config() -> SecurityConfig:
    return SecurityConfig(
        jwt_secret="unit-access-secret-0123456789",
        jwt_refresh_secret="unit-refresh-secret-0123456789",
    )


@pytest.fixture
def app_config(security_config: SecurityConfig) -> AppConfig:
    return AppConfig(security=security_config)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def token_service(security_config: SecurityConfig, clock: MutableClock) -> TokenService:
    return TokenService(security_config, RefreshTokenRegistry(clock=clock))


@pytest.fixture
def store() -> InMemoryPersistence:
    return seed_store(InMemoryPersistence())


@pytest.fixture
def realtime(store: InMemoryPersistence) -> SimpleNamespace:
    """A fully wired real-time core over the seeded in-memory store."""
    registry = PresenceRegistry()
    broadcaster = MessageBroadcaster(registry)
    presence = PresenceService(registry, store, broadcaster, persistence_timeout=1.0)
    dispatcher = NotificationDispatcher(store, registry, broadcaster, persistence_timeout=1.0)
    router = EventRouter(registry, presence, store, broadcaster, dispatcher, persistence_timeout=1.0)
    return SimpleNamespace(
        store=store,
        registry=registry,
        broadcaster=broadcaster,
        presence=presence,
        dispatcher=dispatcher,
        router=router,
    )
