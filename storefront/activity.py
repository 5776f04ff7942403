"""Creator activity feed writer.

Every write is best effort: ``record()`` never raises, it returns an
ActivityResult that callers log and otherwise ignore. A failed activity
entry must never undo or fail the business operation that produced it.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from storefront.store import OrderStore, StoreError

if TYPE_CHECKING:
    from storefront.webhooks.matching import ListingMatch

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 500
MAX_METADATA_BYTES = 10 * 1024

ENTITY_TYPES = frozenset({"listing", "payout", "verification", "logistics_event", "creator"})

ACTIVITY_TYPES = frozenset({
    "listing_created", "listing_updated", "listing_status_changed", "listing_published",
    "listing_submitted", "listing_approved", "listing_rejected", "listing_deleted",
    "listing_sold", "listing_shipped", "listing_delivered", "listing_received",
    "payout_created", "payout_completed", "payout_pending", "payout_failed",
    "verification_submitted", "verification_approved", "verification_rejected",
    "creator_joined", "creator_created", "creator_status_changed",
    "creator_verification_status_changed",
})

_FORBIDDEN_METADATA_KEYS = frozenset({"__proto__", "constructor", "prototype"})
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_HTML_TAGS = re.compile(r"<[^>]*>")


@dataclass
class ActivityResult:
    """Outcome of a best-effort activity write. Callers must not propagate it."""

    success: bool
    error: str | None = None


def is_valid_uuid(value: Any) -> bool:
    if not value or not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def sanitize_description(description: Any, max_length: int = MAX_DESCRIPTION_LENGTH) -> str:
    """Strip control characters and HTML tags, then cap the length."""
    if not description or not isinstance(description, str):
        return ""
    cleaned = _HTML_TAGS.sub("", _CONTROL_CHARS.sub("", description.strip()))
    return cleaned[:max_length]


def sanitize_metadata(metadata: Any, max_bytes: int = MAX_METADATA_BYTES) -> dict | None:
    """Return a JSON-clean copy of metadata, or None if it can't be stored."""
    if not metadata or not isinstance(metadata, dict):
        return None
    if _FORBIDDEN_METADATA_KEYS & set(metadata):
        logger.warning("Activity metadata contains forbidden keys, dropping it")
        return None
    try:
        encoded = json.dumps(metadata, default=str)
    except (TypeError, ValueError):
        logger.warning("Activity metadata is not serializable, dropping it", exc_info=True)
        return None
    if len(encoded.encode("utf-8")) > max_bytes:
        logger.warning(
            "Activity metadata size %d bytes exceeds %d, dropping it",
            len(encoded.encode("utf-8")),
            max_bytes,
        )
        return None
    return json.loads(encoded)


def describe_sale(title: str, quantity: int, total: float) -> str:
    """Human-readable sale line for the creator feed."""
    if quantity > 1:
        return f'Sold "{title}" ({quantity}x) for ${total:.2f}'
    return f'Sold "{title}" for ${total:.2f}'


class ActivityLog:
    """Append-only writer for the creator activity feed."""

    def __init__(self, store: OrderStore):
        self._store = store

    def record(
        self,
        *,
        creator_id: str,
        activity_type: str,
        entity_type: str,
        description: str,
        entity_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ActivityResult:
        """Validate and append one activity entry. Never raises."""
        if not creator_id or not activity_type or not entity_type or not description:
            return ActivityResult(False, "Missing required parameters for activity logging")
        if not is_valid_uuid(creator_id):
            return ActivityResult(False, "Invalid creator ID format")
        if entity_id and not is_valid_uuid(entity_id):
            return ActivityResult(False, "Invalid entity ID format")
        if activity_type not in ACTIVITY_TYPES or entity_type not in ENTITY_TYPES:
            return ActivityResult(False, "Invalid activity type or entity type")

        clean_description = sanitize_description(description)
        if not clean_description:
            return ActivityResult(
                False, "Description is required and cannot be empty after sanitization"
            )

        entry = {
            "creator_id": creator_id,
            "activity_type": activity_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "description": clean_description,
            "metadata": sanitize_metadata(metadata),
        }
        try:
            self._store.insert_activity(entry)
        except StoreError as e:
            return ActivityResult(False, str(e))
        except Exception as e:
            logger.exception("Unexpected error writing activity for creator %s", creator_id)
            return ActivityResult(False, str(e))
        return ActivityResult(True)

    def record_sale(
        self,
        match: ListingMatch,
        *,
        order_id: str | None,
        external_order_id: str,
    ) -> ActivityResult:
        """Append the listing_sold entry for one successful live -> sold transition."""
        title = match.listing.get("title") or "Untitled Listing"
        total = match.unit_price * match.quantity
        return self.record(
            creator_id=str(match.creator_id),
            activity_type="listing_sold",
            entity_type="listing",
            entity_id=str(match.listing["id"]),
            description=describe_sale(title, match.quantity, total),
            metadata={
                "listingId": str(match.listing["id"]),
                "listingTitle": title,
                "quantity": match.quantity,
                "unitPrice": match.unit_price,
                "totalPrice": total,
                "orderId": str(order_id) if order_id else None,
                "externalOrderId": external_order_id,
            },
        )
