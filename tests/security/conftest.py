"""Security test fixtures.

Responsibilities:
- Builds the FastAPI app around an in-memory store and a recording
  account service (no Postgres, Redis, or network)
- Wraps it in TestClient instances with chosen sender secrets
- Scoped to tests/security/ only

The global tests/conftest.py provides signing helpers, store, and accounts.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from webhook_ingest.config import load_settings
from webhook_ingest.serve import create_app


@pytest.fixture
def make_client(make_services):
    """Factory for TestClients; secrets default to the shared test secrets."""
    clients = []

    def _make(**secrets) -> TestClient:
        services = make_services(**secrets)
        app = create_app(load_settings(event_store="memory", _env_file=None), services=services)
        client = TestClient(app, raise_server_exceptions=False)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    """Client with both sender secrets configured."""
    return make_client()


@pytest.fixture
def unsigned_client(make_client):
    """Client with no Figma secret (unsigned mode)."""
    return make_client(figma_secret=None)
