"""
tests/conftest.py -- Shared test fixtures for PollGate tests.

This module provides:
  - provider: a fresh FakeIdentityProvider (tests/fakes.py) per test
  - _patch_lifespan(): wires a fake provider and a non-sweeping RateLimiter
    into app.state, bypassing real startup (no network, no sweeper thread)
  - app_client: (client, provider) -- TestClient over the real app,
    follow_redirects=False so tests can assert on Location headers

The provider environment variables must be set before any core/auth/api
import: api.main reads get_settings() at import time and refuses to start
without PROVIDER_URL and PROVIDER_ANON_KEY. "testserver" is TestClient's Host
header and has to pass TrustedHostMiddleware.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set provider config before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("PROVIDER_URL", "http://provider.test")
os.environ.setdefault("PROVIDER_ANON_KEY", "test-anon-key")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.gate import SessionGate
from auth.orchestrator import AuthOrchestrator
from core.config import get_settings
from core.ratelimit import RateLimiter
from fakes import FakeIdentityProvider

# ---------------------------------------------------------------------------
# App wiring
# ---------------------------------------------------------------------------


def _patch_lifespan(provider: FakeIdentityProvider, rate_limiter: RateLimiter):
    """Return an async context manager that replaces the real lifespan.

    Wires the fake provider into app.state so TestClient routes never touch
    the network. The RateLimiter is built without its sweeper thread.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        app.state.settings = settings
        app.state.rate_limiter = rate_limiter
        app.state.provider = provider
        app.state.orchestrator = AuthOrchestrator(rate_limiter, provider, settings)
        app.state.session_gate = SessionGate(provider, settings)
        yield
        rate_limiter.close()

    return test_lifespan


@pytest.fixture()
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture()
def app_client(provider: FakeIdentityProvider) -> Generator[tuple[TestClient, FakeIdentityProvider], None, None]:
    """Yield (client, provider) over the real app with fresh limiter state.

    follow_redirects=False is essential for gate tests: we assert on redirect
    *locations*, which are invisible once the client follows the redirect.
    """
    app.router.lifespan_context = _patch_lifespan(provider, RateLimiter(start_sweeper=False))
    limiter.reset()
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, provider
