"""Webhook signature verification — constant-time HMAC over the raw body.

Security contract:
- The digest is computed over the exact bytes received; the body is never
  re-serialized before verification
- All comparisons use hmac.compare_digest() (constant-time)
- Missing secret, missing header, oversized body or mismatch -> invalid (fail-closed)
- Neither the secret nor the provided signature is ever logged
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Mapping

logger = logging.getLogger(__name__)

# Signature headers, in lookup order (lowercase). The second is the
# platform's native name and is accepted as an alias.
SIGNATURE_HEADERS = ("x-webhook-hmac-sha256", "x-shopify-hmac-sha256")

DEFAULT_MAX_BODY_BYTES = 5 * 1024 * 1024


@dataclass
class VerificationResult:
    """Outcome of verifying one delivery."""

    valid: bool
    error: str | None = None


def compute_signature(body: bytes, secret: str) -> str:
    """Base64-encoded HMAC-SHA256 of body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_signature(body: bytes, signature_header: str | None, secret: str) -> bool:
    """Verify a base64 HMAC-SHA256 signature header against the raw body.

    Args:
        body: Raw request body bytes
        signature_header: Value of the signature header
        secret: Shared webhook secret

    Returns:
        True if signature is valid
    """
    if not secret:
        return False
    if not signature_header:
        return False
    computed = compute_signature(body, secret)
    return hmac.compare_digest(computed.encode("utf-8"), signature_header.strip().encode("utf-8"))


def get_signature_header(headers: Mapping[str, str]) -> str | None:
    """Return the first signature header present (headers have lowercase keys)."""
    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def declared_length_exceeds(headers: Mapping[str, str], max_body_bytes: int) -> bool:
    """True if Content-Length is unparseable or larger than max_body_bytes."""
    raw = headers.get("content-length")
    if raw is None:
        return False
    try:
        size = int(raw)
    except ValueError:
        return True
    return size < 0 or size > max_body_bytes


def verify_request(
    body: bytes,
    headers: Mapping[str, str],
    secret: str,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
) -> VerificationResult:
    """Verify one delivery: size guard first, then signature.

    Args:
        body: Raw request body
        headers: Request headers (lowercase keys)
        secret: Shared webhook secret
        max_body_bytes: Largest body the digest will be computed over

    Returns:
        VerificationResult; error names the reason without leaking values
    """
    if declared_length_exceeds(headers, max_body_bytes) or len(body) > max_body_bytes:
        return VerificationResult(False, "Payload too large")
    if not secret:
        logger.warning("Webhook secret not set — rejecting webhook")
        return VerificationResult(False, "Webhook secret not configured")
    signature = get_signature_header(headers)
    if not signature:
        return VerificationResult(False, "Missing signature")
    if not verify_signature(body, signature, secret):
        return VerificationResult(False, "Invalid signature")
    return VerificationResult(True)
