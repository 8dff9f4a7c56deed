"""Shared fixtures for web API tests."""

import pytest
from fastapi.testclient import TestClient

from web.app import app
from web.deps import get_handler


@pytest.fixture
def handler(make_handler):
    return make_handler()


@pytest.fixture
def client(handler):
    """TestClient whose routes share one offline turn handler."""
    app.dependency_overrides[get_handler] = lambda: handler
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
