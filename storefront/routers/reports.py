"""Sales and payout reporting routes (admin token required)."""

from __future__ import annotations

import asyncio
from datetime import datetime

from fastapi import APIRouter, Depends, Request

from storefront import reports
from storefront.config import settings
from storefront.security import limiter, require_admin_token

router = APIRouter(
    prefix="/reports",
    tags=["reports"],
    dependencies=[Depends(require_admin_token)],
)


def _fee_percent(request: Request, fee_percent: float | None) -> float:
    if fee_percent is None:
        return request.app.state.settings.platform_fee_percent
    return fee_percent


@router.get("/sales")
@limiter.limit(lambda: settings.report_rate_limit)
async def sales_summary(
    request: Request,
    start: datetime | None = None,
    end: datetime | None = None,
    fee_percent: float | None = None,
):
    """Platform-wide sales across all creators."""
    return await asyncio.to_thread(
        reports.admin_sales_summary,
        request.app.state.order_store,
        start,
        end,
        _fee_percent(request, fee_percent),
    )


@router.get("/creators/{creator_id}/sales")
@limiter.limit(lambda: settings.report_rate_limit)
async def creator_sales(
    request: Request,
    creator_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
):
    """Sales totals for one creator."""
    summary = await asyncio.to_thread(
        reports.creator_sales, request.app.state.order_store, creator_id, start, end
    )
    return summary.to_dict()


@router.get("/creators/{creator_id}/payouts")
@limiter.limit(lambda: settings.report_rate_limit)
async def creator_payouts(
    request: Request,
    creator_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    fee_percent: float | None = None,
):
    """Gross, fee and net payout for one creator."""
    payout = await asyncio.to_thread(
        reports.creator_payouts,
        request.app.state.order_store,
        creator_id,
        _fee_percent(request, fee_percent),
        start,
        end,
    )
    return payout.to_dict()


@router.get("/creators/{creator_id}/line-items")
@limiter.limit(lambda: settings.report_rate_limit)
async def creator_line_items(
    request: Request,
    creator_id: str,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = reports.DEFAULT_LINE_ITEM_LIMIT,
):
    """Most recent line items sold by one creator."""
    page = await asyncio.to_thread(
        reports.creator_line_items,
        request.app.state.order_store,
        creator_id,
        start,
        end,
        limit,
    )
    return {"items": page.items, "limit": page.limit}
