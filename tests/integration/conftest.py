"""Integration test fixtures for the HTTP API."""

from collections.abc import AsyncGenerator, Callable
from typing import Any
from uuid import UUID

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from marketplace_ledger.api.app import create_app
from marketplace_ledger.api.dependencies import get_db_session
from marketplace_ledger.providers import SIGNATURE_HEADER, compute_signature


@pytest.fixture
def app(settings, gateway, emitter, session_factory) -> FastAPI:
    """Application wired to the test database and stub gateway.

    The lifespan is not run, so the global engine is never initialised.
    """
    application = create_app(settings, gateway=gateway, emitter=emitter)

    async def override_db_session() -> AsyncGenerator[Any, None]:
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db_session] = override_db_session
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for testing."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def user_headers() -> Callable[[UUID], dict[str, str]]:
    def build(user_id: UUID) -> dict[str, str]:
        return {"X-User-ID": str(user_id)}

    return build


@pytest.fixture
def sign(settings) -> Callable[[bytes], dict[str, str]]:
    """Headers carrying a valid webhook signature for a raw body."""

    def build(body: bytes) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: compute_signature(body, settings.gateway_webhook_secret),
        }

    return build
