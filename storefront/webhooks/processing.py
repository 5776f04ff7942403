"""Order application: record the order, its line items, and sell listings.

Each step stands alone and is individually idempotent; there is no
transaction spanning them. The orders.external_order_id unique constraint
decides which delivery "owns" an order, and the conditional live -> sold
update decides which delivery sells a listing. Once the order row exists
the delivery is a success, even if later steps partially fail.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

from storefront.activity import ActivityLog
from storefront.store import DuplicateOrderError, OrderStore, StoreError
from storefront.webhooks.matching import (
    DEFAULT_STRATEGIES,
    ListingMatch,
    MatchStrategy,
    match_line_items,
)
from storefront.webhooks.payload import ExternalOrder

logger = logging.getLogger(__name__)


@dataclass
class SaleSummary:
    """Per-order tally of conditional listing updates."""

    updated: int = 0
    failed: int = 0
    skipped: int = 0
    updated_listing_ids: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.updated + self.failed + self.skipped


@dataclass
class ProcessResult:
    """Outcome of applying one order delivery."""

    success: bool
    external_order_id: str
    order_id: str | None = None
    duplicate: bool = False
    error: str | None = None
    matched: int = 0
    line_items_recorded: bool = False
    sales: SaleSummary = field(default_factory=SaleSummary)
    warnings: list[str] = field(default_factory=list)


def build_line_item_records(order_id: Any, matches: Sequence[ListingMatch]) -> list[dict[str, Any]]:
    """Rows for order_line_items, one per matched listing."""
    return [
        {
            "order_id": order_id,
            "listing_id": match.listing_id,
            "creator_id": match.creator_id,
            "external_line_item_id": match.line_item.external_line_item_id,
            "external_product_id": match.product_id,
            "external_variant_id": match.line_item.external_variant_id,
            "quantity": match.quantity,
            "unit_price_minor": match.unit_price_minor,
            "line_total_minor": match.line_total_minor,
            "line_subtotal_minor": match.line_subtotal_minor,
            "product_title": match.line_item.title,
            "variant_title": match.line_item.variant_title,
        }
        for match in matches
    ]


def _sell_listings(
    store: OrderStore,
    activity_log: ActivityLog,
    matches: Sequence[ListingMatch],
    *,
    order_id: str | None,
    external_order_id: str,
    sold_at: datetime,
    result: ProcessResult,
) -> None:
    """Conditionally move each matched listing live -> sold, one at a time."""
    summary = result.sales

    for match in matches:
        try:
            updated = store.mark_listing_sold(match.listing_id, sold_at)
        except StoreError as e:
            summary.failed += 1
            logger.error(
                "Failed to mark listing %s (product %s) sold for order %s: %s",
                match.listing_id,
                match.product_id,
                external_order_id,
                e,
            )
            result.warnings.append(f"listing {match.listing_id} update failed")
            continue

        if updated is None:
            summary.skipped += 1
            try:
                current = store.get_listing_status(match.listing_id)
            except StoreError:
                current = "unknown"
            logger.warning(
                "Listing %s (product %s) was not updated for order %s. Current status: %s",
                match.listing_id,
                match.product_id,
                external_order_id,
                current or "not found",
            )
            continue

        summary.updated += 1
        summary.updated_listing_ids.append(match.listing_id)
        logger.info(
            "Listing %s (product %s) marked sold for order %s",
            match.listing_id,
            match.product_id,
            external_order_id,
        )

        activity = activity_log.record_sale(
            match, order_id=order_id, external_order_id=external_order_id
        )
        if not activity.success:
            logger.warning(
                "Failed to log sale activity for listing %s: %s", match.listing_id, activity.error
            )
            result.warnings.append(f"activity for listing {match.listing_id} not recorded")


def process_order(
    order: ExternalOrder,
    store: OrderStore,
    activity_log: ActivityLog | None = None,
    *,
    strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
    now: datetime | None = None,
) -> ProcessResult:
    """Apply one normalized order. Safe under concurrent duplicate delivery.

    Returns success=False only when the order row could not be written;
    everything after that is reported through warnings and the sale summary.
    """
    activity_log = activity_log or ActivityLog(store)
    external_id = order.external_order_id
    result = ProcessResult(success=False, external_order_id=external_id)

    # 1. Already processed?
    try:
        existing = store.get_order_by_external_id(external_id)
    except StoreError as e:
        logger.error("Error checking existing order %s: %s", external_id, e)
        result.error = "Order lookup failed"
        return result
    if existing:
        logger.info("Order %s already processed, skipping", external_id)
        result.success = True
        result.duplicate = True
        result.order_id = str(existing.get("id")) if existing.get("id") else None
        return result

    # 2. Match line items to live listings
    matches = match_line_items(store, order, strategies)
    result.matched = len(matches)

    # 3. Insert the order; the unique constraint settles concurrent deliveries
    try:
        row = store.insert_order(order.to_record())
    except DuplicateOrderError:
        logger.info("Order %s was processed concurrently, skipping", external_id)
        result.success = True
        result.duplicate = True
        return result
    except StoreError as e:
        logger.error("Error creating order %s (code=%s): %s", external_id, e.code, e)
        result.error = "Order insert failed"
        return result

    result.success = True
    result.order_id = str(row["id"]) if row and row.get("id") else None
    logger.info(
        "Created order %s (id=%s, total=%d %s, %d matched line items)",
        external_id,
        result.order_id,
        order.total_price_minor,
        order.currency_code,
        len(matches),
    )

    # 4. Line items, one bulk write; failure leaves the order in place
    if matches:
        try:
            store.insert_line_items(build_line_item_records(row["id"] if row else None, matches))
            result.line_items_recorded = True
        except StoreError as e:
            logger.error(
                "Error creating %d line items for order %s: %s", len(matches), external_id, e
            )
            result.warnings.append("line items not recorded")
    else:
        logger.warning("No matching listings for order %s, nothing to sell", external_id)

    # 5. Sell listings (sequential), logging activity for each sale
    _sell_listings(
        store,
        activity_log,
        matches,
        order_id=result.order_id,
        external_order_id=external_id,
        sold_at=now or datetime.now(timezone.utc),
        result=result,
    )

    summary = result.sales
    if matches:
        logger.info(
            "Listing update summary for order %s: %d updated, %d failed, %d skipped, %d total",
            external_id,
            summary.updated,
            summary.failed,
            summary.skipped,
            summary.total,
        )
        if summary.updated == 0:
            logger.warning(
                "No listings were updated for order %s (listings=%s)",
                external_id,
                [m.listing_id for m in matches],
            )

    return result
