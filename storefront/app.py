"""FastAPI application factory.

Collaborators (settings, order store, webhook rate limiter, listing match
strategies) live on ``app.state`` so tests and alternative deployments can
inject their own.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from storefront import __version__, config
from storefront.config import Settings, get_settings
from storefront.routers import health, reports
from storefront.security import install_security_middleware
from storefront.store import OrderStore, PostgresOrderStore
from storefront.webhooks.handlers import register_webhook_routes
from storefront.webhooks.matching import build_strategies
from storefront.webhooks.ratelimit import RateLimiter

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    store: OrderStore | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    """Build the app around the given collaborators.

    The webhook budget, store and match strategies come from ``settings``.
    Report throttling does not: the slowapi ``limiter`` and the
    ``report_rate_limit`` string are process-wide and read from
    ``storefront.config.settings`` (the ``STOREFRONT_`` environment), since
    slowapi resolves limits without access to the request. Injected values
    that disagree are logged and ignored.
    """
    settings = settings or get_settings()
    _warn_process_wide_overrides(settings)

    app = FastAPI(title="Storefront", version=__version__)
    app.state.settings = settings
    app.state.order_store = store or PostgresOrderStore(settings.database_url)
    app.state.webhook_rate_limiter = rate_limiter or RateLimiter.from_uri(
        settings.rate_limit_storage_uri,
        settings.webhook_rate_limit,
        settings.webhook_rate_window_seconds,
    )
    app.state.match_strategies = build_strategies(settings.product_gid_template)

    register_webhook_routes(app)
    app.include_router(health.router)
    app.include_router(reports.router)
    install_security_middleware(app)

    if not settings.webhook_secret:
        logger.warning("STOREFRONT_WEBHOOK_SECRET is not set — all webhooks will be rejected")
    return app


def _warn_process_wide_overrides(settings: Settings) -> None:
    process = config.settings
    if settings is process:
        return
    for field in ("report_rate_limit", "rate_limit_storage_uri"):
        if getattr(settings, field) != getattr(process, field):
            logger.warning(
                "Ignoring injected %s=%r; report throttling uses the process setting %r",
                field,
                getattr(settings, field),
                getattr(process, field),
            )
