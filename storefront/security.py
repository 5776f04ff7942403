"""Security plumbing for FastAPI: CORS, per-IP throttling, admin token auth.

Middleware ordering (outermost first):
1. CORS -- handles OPTIONS preflight
2. Rate limiting -- slowapi limits on user-facing routes

The webhook endpoint does not use the slowapi limiter: it charges its own
injected RateLimiter inside the handler, ahead of signature verification.

The slowapi limiter is process-wide: its storage and the report limit string
come from the module-level ``settings``, not from a Settings passed to
``create_app``.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from storefront.config import settings
from storefront.webhooks.ratelimit import client_ip

logger = logging.getLogger(__name__)


def _get_client_ip(request: Request) -> str:
    """Client IP from proxy headers, falling back to the socket peer."""
    ip = client_ip({k.lower(): v for k, v in request.headers.items()})
    if ip == "unknown":
        return get_remote_address(request)
    return ip


# Rate limiter for user-facing routes
limiter = Limiter(key_func=_get_client_ip, storage_uri=settings.rate_limit_storage_uri)


def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded errors."""
    retry_after = getattr(exc, "retry_after", 60)
    return JSONResponse(
        {"error": "Rate limit exceeded", "retry_after": retry_after},
        status_code=429,
        headers={"Retry-After": str(retry_after)},
    )


def extract_bearer_token(auth_header: str | None) -> str | None:
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_admin_token(request: Request) -> None:
    """FastAPI dependency: bearer token must equal the configured admin token.

    Fail-closed: with no token configured every request is rejected.
    """
    expected = request.app.state.settings.admin_api_token
    token = extract_bearer_token(request.headers.get("authorization"))
    if not expected or not token or not hmac.compare_digest(
        token.encode("utf-8"), expected.encode("utf-8")
    ):
        logger.debug("Admin auth failed for %s", request.url.path)
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def install_security_middleware(app: FastAPI) -> None:
    """Install throttling and CORS on the app.

    Middleware is added in reverse order (last added = outermost = runs first).
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app.state.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["Authorization", "Content-Type"],
    )
