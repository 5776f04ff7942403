"""Webhook HTTP handler — FastAPI route for inbound order notifications.

The handler:
1. Rejects non-POST (405)
2. Charges the caller's IP against the rate budget (429) before any crypto
3. Streams the raw body up to the size cap (401 past it), then verifies the
   HMAC signature (401)
4. Parses and validates the order (400)
5. Matches and applies the order in a worker thread

Security contract:
- Processing failures still answer 200 so the platform doesn't retry-storm
  on errors it can't fix; details stay in server logs
- 401/400 bodies never include secrets, signatures or stack traces
- Every delivery leaves a WEBHOOK_AUDIT log line
"""

from __future__ import annotations

import asyncio
import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from storefront.activity import ActivityLog
from storefront.webhooks.payload import (
    PayloadError,
    normalize_order,
    parse_payload,
    validate_order,
)
from storefront.webhooks.processing import process_order
from storefront.webhooks.ratelimit import client_ip
from storefront.webhooks.verification import (
    declared_length_exceeds,
    get_signature_header,
    verify_request,
)

logger = logging.getLogger(__name__)

ORDERS_CREATE_PATH = "/webhooks/orders/create"
# Path the commerce platform was originally configured with
LEGACY_ORDERS_CREATE_PATH = "/webhooks/shopify/orders/create"

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _audit(status: str, ip: str, order_id: str = "-", **extra: object) -> None:
    """Audit log for webhook activity."""
    details = " ".join(f"{k}={v}" for k, v in extra.items())
    logger.info(
        "WEBHOOK_AUDIT topic=orders/create status=%s ip=%s order=%s %s",
        status,
        ip,
        order_id,
        details,
    )


async def _read_body(request: Request, max_bytes: int) -> bytes | None:
    """Read the raw body, or None once it grows past max_bytes.

    Chunked uploads carry no Content-Length, so the cap is enforced while
    streaming rather than after buffering.
    """
    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_bytes:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


async def handle_order_created(request: Request) -> JSONResponse:
    """Receive one orders/create delivery. See module docstring for the flow."""
    start = time.time()
    state = request.app.state
    settings = state.settings
    headers = {k.lower(): v for k, v in request.headers.items()}
    ip = client_ip(headers)

    # 1. Method guard
    if request.method != "POST":
        _audit("method_not_allowed", ip, method=request.method)
        return JSONResponse(
            {"error": "Method not allowed"}, status_code=405, headers={"Allow": "POST"}
        )

    # 2. Rate limit, before signature verification
    try:
        rate = state.webhook_rate_limiter.check(f"webhook:orders:create:{ip}")
    except Exception:
        # Counter store unavailable: fail open
        logger.warning("Rate limit store unavailable, allowing %s", ip, exc_info=True)
        rate = None

    if rate is not None and not rate.allowed:
        retry_after = rate.retry_after()
        logger.warning(
            "Webhook rate limit exceeded: ip=%s remaining=%d reset_at=%.0f",
            ip,
            rate.remaining,
            rate.reset_at,
        )
        _audit("rate_limited", ip)
        return JSONResponse(
            {"error": "Rate limit exceeded", "retryAfter": retry_after},
            status_code=429,
            headers={"Retry-After": str(retry_after), **rate.headers()},
        )
    if rate is not None and rate.remaining < settings.webhook_rate_warning_threshold:
        logger.warning(
            "Webhook rate limit warning: ip=%s remaining=%d reset_at=%.0f",
            ip,
            rate.remaining,
            rate.reset_at,
        )

    # 3. Authenticity; refuse oversized bodies before reading them
    if declared_length_exceeds(headers, settings.max_webhook_body_bytes):
        logger.warning("Webhook verification failed: Payload too large (ip=%s)", ip)
        _audit("signature_failed", ip, reason="payload_too_large")
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    body = await _read_body(request, settings.max_webhook_body_bytes)
    if body is None:
        logger.warning(
            "Webhook verification failed: Payload too large (ip=%s, streamed past %d bytes)",
            ip,
            settings.max_webhook_body_bytes,
        )
        _audit("signature_failed", ip, reason="payload_too_large")
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    verification = verify_request(
        body, headers, settings.webhook_secret, settings.max_webhook_body_bytes
    )
    if not verification.valid:
        logger.warning(
            "Webhook verification failed: %s (ip=%s, signature=%s, bytes=%d)",
            verification.error,
            ip,
            "present" if get_signature_header(headers) else "missing",
            len(body),
        )
        _audit("signature_failed", ip)
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    # 4-5. Parse, validate, apply
    order_id = "-"
    try:
        try:
            data = parse_payload(body)
        except PayloadError as e:
            logger.warning("Invalid webhook payload from %s: %s", ip, e)
            _audit("invalid_payload", ip)
            return JSONResponse({"error": str(e)}, status_code=400)

        problem = validate_order(data)
        if problem:
            logger.warning("Invalid order data from %s: %s", ip, problem)
            _audit("invalid_payload", ip, order_id=str(data.get("id", "-")))
            return JSONResponse({"error": problem}, status_code=400)

        order = normalize_order(data)
        order_id = order.external_order_id
        logger.info(
            "Parsed order %s (%s): total=%d %s, %d line items, financial_status=%s",
            order_id,
            order.display_name,
            order.total_price_minor,
            order.currency_code,
            len(order.line_items),
            order.financial_status,
        )

        store = state.order_store
        result = await asyncio.to_thread(
            process_order,
            order,
            store,
            ActivityLog(store),
            strategies=state.match_strategies,
        )
    except Exception:
        logger.exception("Unexpected error processing order webhook %s", order_id)
        _audit("error", ip, order_id=order_id)
        return JSONResponse({"error": "Internal server error"}, status_code=200)

    elapsed_ms = (time.time() - start) * 1000
    if result.success:
        _audit(
            "duplicate" if result.duplicate else "processed",
            ip,
            order_id=order_id,
            sold=result.sales.updated,
            failed=result.sales.failed,
            skipped=result.sales.skipped,
            ms=f"{elapsed_ms:.1f}",
        )
        return JSONResponse({"success": True, "orderId": order_id}, status_code=200)

    logger.error("Error processing order %s: %s", order_id, result.error)
    _audit("failed", ip, order_id=order_id, ms=f"{elapsed_ms:.1f}")
    return JSONResponse({"error": result.error or "Processing failed"}, status_code=200)


def register_webhook_routes(app: FastAPI) -> None:
    """Register webhook endpoint routes on the FastAPI app.

    The route accepts every method so non-POST gets our 405 body.
    """
    for path in (ORDERS_CREATE_PATH, LEGACY_ORDERS_CREATE_PATH):
        app.add_api_route(
            path,
            handle_order_created,
            methods=_ALL_METHODS,
            include_in_schema=path == ORDERS_CREATE_PATH,
        )

    logger.info("Webhook routes registered: %s", ORDERS_CREATE_PATH)
