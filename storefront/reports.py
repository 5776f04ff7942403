"""Creator sales and payout reporting over recorded order line items.

All amounts are integer minor units. Read failures degrade to empty
summaries (logged) so dashboards keep rendering.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Iterable

from storefront.activity import is_valid_uuid
from storefront.store import OrderStore, StoreError
from storefront.webhooks.payload import round_half_up

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM_FEE_PERCENT = 10.0
DEFAULT_LINE_ITEM_LIMIT = 100
MAX_LINE_ITEM_LIMIT = 1000


@dataclass
class SalesSummary:
    total_sales_minor: int = 0
    total_items_sold: int = 0
    total_orders: int = 0
    total_creators: int = 0
    average_order_value_minor: int = 0
    start: datetime | None = None
    end: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["total_sales"] = format_minor(self.total_sales_minor)
        d["average_order_value"] = format_minor(self.average_order_value_minor)
        d["period"] = {"start": _iso(self.start), "end": _iso(self.end)}
        del d["start"], d["end"]
        return d


@dataclass
class PayoutSummary:
    gross_minor: int = 0
    platform_fee_minor: int = 0
    net_minor: int = 0
    platform_fee_percent: float = DEFAULT_PLATFORM_FEE_PERCENT
    total_items_sold: int = 0
    total_orders: int = 0
    start: datetime | None = None
    end: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["gross"] = format_minor(self.gross_minor)
        d["platform_fee"] = format_minor(self.platform_fee_minor)
        d["net"] = format_minor(self.net_minor)
        d["period"] = {"start": _iso(self.start), "end": _iso(self.end)}
        del d["start"], d["end"]
        return d


@dataclass
class LineItemPage:
    items: list[dict[str, Any]] = field(default_factory=list)
    limit: int = DEFAULT_LINE_ITEM_LIMIT


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def format_minor(amount_minor: int) -> str:
    """12345 -> "123.45"."""
    sign = "-" if amount_minor < 0 else ""
    whole, cents = divmod(abs(amount_minor), 100)
    return f"{sign}{whole}.{cents:02d}"


def clamp_limit(limit: Any) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or not 0 < limit <= MAX_LINE_ITEM_LIMIT:
        return DEFAULT_LINE_ITEM_LIMIT
    return limit


def resolve_fee_percent(fee_percent: Any) -> float:
    """Fee percentage in [0, 100], else the platform default."""
    if isinstance(fee_percent, bool) or not isinstance(fee_percent, (int, float)):
        return DEFAULT_PLATFORM_FEE_PERCENT
    if not 0 <= fee_percent <= 100:
        return DEFAULT_PLATFORM_FEE_PERCENT
    return float(fee_percent)


def summarize_sales(
    rows: Iterable[dict[str, Any]],
    start: datetime | None = None,
    end: datetime | None = None,
) -> SalesSummary:
    """Aggregate line item rows into totals."""
    rows = list(rows)
    summary = SalesSummary(start=start, end=end)
    if not rows:
        return summary

    summary.total_sales_minor = sum(r.get("line_total_minor") or 0 for r in rows)
    summary.total_items_sold = sum(r.get("quantity") or 0 for r in rows)
    summary.total_orders = len({r.get("order_id") for r in rows})
    summary.total_creators = len({r["creator_id"] for r in rows if r.get("creator_id")})
    if summary.total_orders:
        summary.average_order_value_minor = round_half_up(
            summary.total_sales_minor / summary.total_orders
        )
    return summary


def compute_payout(sales: SalesSummary, fee_percent: Any = DEFAULT_PLATFORM_FEE_PERCENT) -> PayoutSummary:
    """Gross sales minus the platform fee."""
    percent = resolve_fee_percent(fee_percent)
    fee = round_half_up(sales.total_sales_minor * percent / 100)
    return PayoutSummary(
        gross_minor=sales.total_sales_minor,
        platform_fee_minor=fee,
        net_minor=sales.total_sales_minor - fee,
        platform_fee_percent=percent,
        total_items_sold=sales.total_items_sold,
        total_orders=sales.total_orders,
        start=sales.start,
        end=sales.end,
    )


def creator_sales(
    store: OrderStore,
    creator_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
) -> SalesSummary:
    if not is_valid_uuid(creator_id):
        logger.error("Invalid creator ID format: %r", creator_id)
        return SalesSummary(start=start, end=end)
    try:
        rows = store.fetch_line_items(creator_id=creator_id, start=start, end=end)
    except StoreError as e:
        logger.error("Error calculating sales for creator %s: %s", creator_id, e)
        return SalesSummary(start=start, end=end)
    return summarize_sales(rows, start, end)


def creator_payouts(
    store: OrderStore,
    creator_id: str,
    fee_percent: Any = DEFAULT_PLATFORM_FEE_PERCENT,
    start: datetime | None = None,
    end: datetime | None = None,
) -> PayoutSummary:
    return compute_payout(creator_sales(store, creator_id, start, end), fee_percent)


def admin_sales_summary(
    store: OrderStore,
    start: datetime | None = None,
    end: datetime | None = None,
    fee_percent: Any = DEFAULT_PLATFORM_FEE_PERCENT,
) -> dict[str, Any]:
    """Platform-wide totals plus the platform's fee take."""
    try:
        rows = store.fetch_line_items(start=start, end=end)
    except StoreError as e:
        logger.error("Error fetching admin sales summary: %s", e)
        rows = []
    sales = summarize_sales(rows, start, end)
    payout = compute_payout(sales, fee_percent)
    report = sales.to_dict()
    report["platform_fee_minor"] = payout.platform_fee_minor
    report["platform_fee"] = format_minor(payout.platform_fee_minor)
    report["platform_fee_percent"] = payout.platform_fee_percent
    return report


def creator_line_items(
    store: OrderStore,
    creator_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: Any = DEFAULT_LINE_ITEM_LIMIT,
) -> LineItemPage:
    """Most recent line items sold by one creator."""
    limit = clamp_limit(limit)
    if not is_valid_uuid(creator_id):
        logger.error("Invalid creator ID format: %r", creator_id)
        return LineItemPage(limit=limit)
    try:
        rows = store.fetch_line_items(creator_id=creator_id, start=start, end=end, limit=limit)
    except StoreError as e:
        logger.error("Error fetching line items for creator %s: %s", creator_id, e)
        return LineItemPage(limit=limit)
    return LineItemPage(items=list(rows), limit=limit)
