"""Line item -> live listing resolution.

The platform's product identifier has been stored in more than one
encoding over time, so each lookup runs an ordered list of strategies and
takes the first one that yields exactly one live listing. Append a strategy
to DEFAULT_STRATEGIES to support a new encoding.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Sequence

from storefront.store import OrderStore, StoreError
from storefront.webhooks.payload import (
    ExternalLineItem,
    ExternalOrder,
    round_half_up,
    sanitize_price,
    sanitize_quantity,
)

logger = logging.getLogger(__name__)


class MatchStrategy:
    """One way of looking up a live listing for a numeric product id."""

    name = "base"

    def find(self, store: OrderStore, product_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError


class ExactIdStrategy(MatchStrategy):
    """Stored value equals the bare numeric id."""

    name = "exact"

    def find(self, store: OrderStore, product_id: str) -> list[dict[str, Any]]:
        return store.find_live_listings(product_id)


class StructuredIdStrategy(MatchStrategy):
    """Stored value equals the structured global identifier."""

    name = "structured"

    def __init__(self, template: str = "gid://shopify/Product/{id}"):
        self.template = template

    def find(self, store: OrderStore, product_id: str) -> list[dict[str, Any]]:
        return store.find_live_listings(self.template.format(id=product_id))


class SuffixStrategy(MatchStrategy):
    """Stored value ends with the numeric id (other structured variants)."""

    name = "suffix"

    def find(self, store: OrderStore, product_id: str) -> list[dict[str, Any]]:
        return store.find_live_listings(product_id, suffix=True)


DEFAULT_STRATEGIES: tuple[MatchStrategy, ...] = (
    ExactIdStrategy(),
    StructuredIdStrategy(),
    SuffixStrategy(),
)


def build_strategies(product_gid_template: str) -> tuple[MatchStrategy, ...]:
    return (ExactIdStrategy(), StructuredIdStrategy(product_gid_template), SuffixStrategy())


@dataclass
class ListingMatch:
    """A line item resolved to a live listing, with sanitized quantity and price."""

    listing: dict[str, Any]
    creator_id: str
    quantity: int
    unit_price: float
    line_item: ExternalLineItem

    @property
    def listing_id(self) -> str:
        return str(self.listing["id"])

    @property
    def product_id(self) -> str | None:
        return self.line_item.external_product_id

    @property
    def unit_price_minor(self) -> int:
        return round_half_up(self.unit_price * 100)

    @property
    def line_total_minor(self) -> int:
        return round_half_up(self.unit_price * self.quantity * 100)

    @property
    def line_subtotal_minor(self) -> int:
        if self.line_item.subtotal not in (None, ""):
            subtotal = sanitize_price(self.line_item.subtotal)
            if math.isfinite(subtotal):
                return round_half_up(subtotal * 100)
        return self.line_total_minor


def resolve_listing(
    store: OrderStore,
    product_id: str,
    strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
) -> tuple[dict[str, Any], str] | None:
    """Try each strategy in order; return (listing, strategy name) or None."""
    for strategy in strategies:
        try:
            rows = strategy.find(store, product_id)
        except StoreError as e:
            logger.warning(
                "Listing lookup (%s) failed for product %s: %s", strategy.name, product_id, e
            )
            continue
        if len(rows) == 1:
            return rows[0], strategy.name
        if len(rows) > 1:
            logger.warning(
                "Ambiguous %s match for product %s (%d live listings), trying next strategy",
                strategy.name,
                product_id,
                len(rows),
            )
    return None


def match_line_items(
    store: OrderStore,
    order: ExternalOrder,
    strategies: Sequence[MatchStrategy] = DEFAULT_STRATEGIES,
) -> list[ListingMatch]:
    """Resolve every line item independently; misses are logged and skipped."""
    matches: list[ListingMatch] = []

    for item in order.line_items:
        product_id = item.external_product_id
        if not product_id:
            if item.raw_product_id is not None:
                logger.warning(
                    "Invalid product_id format (expected numeric) on order %s: %r",
                    order.external_order_id,
                    item.raw_product_id,
                )
            continue

        resolved = resolve_listing(store, product_id, strategies)
        if resolved is None:
            logger.info(
                "No live listing for product %s on order %s",
                product_id,
                order.external_order_id,
            )
            continue
        listing, strategy_name = resolved

        if not listing.get("id") or not listing.get("creator_id"):
            logger.error(
                "Listing for product %s is missing id or creator_id: %r", product_id, listing
            )
            continue

        quantity = sanitize_quantity(item.quantity)
        price = sanitize_price(item.price)
        if not math.isfinite(quantity) or not math.isfinite(price):
            logger.warning(
                "Invalid quantity or price for product %s on order %s (quantity=%r, price=%r)",
                product_id,
                order.external_order_id,
                item.quantity,
                item.price,
            )
            continue

        logger.info(
            "Matched product %s to listing %s via %s (stored as %s)",
            product_id,
            listing["id"],
            strategy_name,
            listing.get("external_product_id"),
        )
        matches.append(
            ListingMatch(
                listing=listing,
                creator_id=str(listing["creator_id"]),
                quantity=int(quantity),
                unit_price=price,
                line_item=item,
            )
        )

    return matches
