"""Storefront command line.

Usage:
    python -m storefront.cli serve
    python -m storefront.cli init-db
    python -m storefront.cli sales [--creator UUID] [--start ISO] [--end ISO]
    python -m storefront.cli payouts --creator UUID [--fee-percent 10]
"""

from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime

from storefront import reports
from storefront.config import get_settings
from storefront.store import PostgresOrderStore


def _store() -> PostgresOrderStore:
    return PostgresOrderStore(get_settings().database_url)


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def cmd_serve(args: argparse.Namespace) -> None:
    """Run the HTTP service."""
    import uvicorn

    from storefront.app import create_app

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.log_level,
    )


def cmd_init_db(args: argparse.Namespace) -> None:
    """Create tables and indexes."""
    _store().init_tables()
    print("Storefront tables initialized")


def cmd_sales(args: argparse.Namespace) -> None:
    """Print a sales summary (one creator or the whole platform)."""
    store = _store()
    start, end = _parse_time(args.start), _parse_time(args.end)
    if args.creator:
        report = reports.creator_sales(store, args.creator, start, end).to_dict()
    else:
        report = reports.admin_sales_summary(
            store, start, end, get_settings().platform_fee_percent
        )
    print(json.dumps(report, indent=2, default=str))


def cmd_payouts(args: argparse.Namespace) -> None:
    """Print gross, fee and net payout for one creator."""
    fee = args.fee_percent if args.fee_percent is not None else get_settings().platform_fee_percent
    payout = reports.creator_payouts(
        _store(), args.creator, fee, _parse_time(args.start), _parse_time(args.end)
    )
    print(json.dumps(payout.to_dict(), indent=2, default=str))


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="storefront",
        description="Creator storefront service tooling",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    # serve
    p_serve = sub.add_parser("serve", help="Run the HTTP service")
    p_serve.add_argument("--host", help="Bind address")
    p_serve.add_argument("--port", type=int, help="Bind port")
    p_serve.set_defaults(func=cmd_serve)

    # init-db
    p_init = sub.add_parser("init-db", help="Create tables and indexes")
    p_init.set_defaults(func=cmd_init_db)

    # sales
    p_sales = sub.add_parser("sales", help="Sales summary")
    p_sales.add_argument("--creator", help="Creator UUID (platform-wide if omitted)")
    p_sales.add_argument("--start", help="ISO-8601 start time")
    p_sales.add_argument("--end", help="ISO-8601 end time")
    p_sales.set_defaults(func=cmd_sales)

    # payouts
    p_payouts = sub.add_parser("payouts", help="Creator payout calculation")
    p_payouts.add_argument("--creator", required=True, help="Creator UUID")
    p_payouts.add_argument("--fee-percent", type=float, help="Platform fee percentage")
    p_payouts.add_argument("--start", help="ISO-8601 start time")
    p_payouts.add_argument("--end", help="ISO-8601 end time")
    p_payouts.set_defaults(func=cmd_payouts)

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args.func(args)


if __name__ == "__main__":
    main()
