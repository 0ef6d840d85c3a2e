"""
Fixtures for HTTP and WebSocket tests against a fully wired application.
"""

import pytest
from fastapi.testclient import TestClient

from taskhub.app.factory import create_app
from taskhub.auth.argon2_utils import hash_password
from taskhub.container import ApplicationContainer
from taskhub.persistence import InMemoryPersistence

from ...fixtures.realtime import PASSWORD, seed_store


@pytest.fixture(scope="session")
def password_hash() -> str:
    return hash_password(PASSWORD)


@pytest.fixture
def container(app_config, password_hash) -> ApplicationContainer:
    store = seed_store(InMemoryPersistence(), password_hash=password_hash)
    return ApplicationContainer(config=app_config, persistence=store)


@pytest.fixture
def client(container):
    """TestClient with the lifespan running, so the container is initialized."""
    with TestClient(create_app(container)) as test_client:
        yield test_client


@pytest.fixture
def token_for(container):
    """Issue an access token for a seeded principal. Requires the client fixture."""

    def _issue(principal_id: int) -> str:
        return container.token_service.issue_access_token(principal_id)

    return _issue