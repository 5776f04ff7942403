"""Security test fixtures.

Responsibilities:
- Creates the FastAPI `app` fixture over an in-memory order store
- Wraps it in client/admin_client TestClients
- Provides post_order for signed (or deliberately mis-signed) deliveries
"""

from __future__ import annotations

from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient
from limits.storage import MemoryStorage

from storefront.app import create_app
from storefront.config import Settings
from storefront.security import limiter
from storefront.webhooks.handlers import ORDERS_CREATE_PATH
from storefront.webhooks.ratelimit import RateLimiter
from tests.helpers import ADMIN_TOKEN, WEBHOOK_SECRET, encode, make_order_payload, sign

WEBHOOK_RATE_LIMIT = 5


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        webhook_secret=WEBHOOK_SECRET,
        admin_api_token=ADMIN_TOKEN,
        webhook_rate_limit=WEBHOOK_RATE_LIMIT,
        webhook_rate_warning_threshold=2,
    )


@pytest.fixture
def rate_limiter() -> RateLimiter:
    return RateLimiter(MemoryStorage(), WEBHOOK_RATE_LIMIT, 60)


@pytest.fixture
def app(settings, store, rate_limiter):
    limiter.reset()
    return create_app(settings, store, rate_limiter)


@pytest.fixture
def client(app):
    """Unauthenticated TestClient (attacker perspective)."""
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def admin_client(app):
    with TestClient(app, raise_server_exceptions=False) as c:
        c.headers.update({"Authorization": f"Bearer {ADMIN_TOKEN}"})
        yield c


@pytest.fixture
def post_order(client) -> Callable[..., Any]:
    """POST a delivery; signs the exact bytes sent unless told otherwise."""

    def _post(
        payload: dict[str, Any] | None = None,
        *,
        body: bytes | None = None,
        signature: str | None = None,
        ip: str = "203.0.113.7",
        headers: dict[str, str] | None = None,
        path: str = ORDERS_CREATE_PATH,
    ):
        if body is None:
            body = encode(payload if payload is not None else make_order_payload())
        request_headers = {
            "Content-Type": "application/json",
            "X-Webhook-Hmac-Sha256": sign(body) if signature is None else signature,
            "CF-Connecting-IP": ip,
        }
        request_headers.update(headers or {})
        return client.post(path, content=body, headers=request_headers)

    return _post
