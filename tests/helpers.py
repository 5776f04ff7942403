"""Test doubles and payload builders shared by the storefront test suite."""

from __future__ import annotations

import base64
import copy
import hashlib
import hmac
import json
import threading
import uuid
from datetime import datetime, timezone
from typing import Any


from storefront.store import DuplicateOrderError, StoreError

WEBHOOK_SECRET = "test-webhook-secret"
ADMIN_TOKEN = "test-admin-token"


class InMemoryOrderStore:
    """OrderStore double with the same conflict semantics as Postgres.

    - insert_order enforces uniqueness of external_order_id
    - mark_listing_sold only updates rows whose status is 'live'
    Both run under one lock, like a row lock / index check would.

    Failure injection:
    - fail_order_insert / fail_order_lookup / fail_line_items / fail_activity
    - fail_listing_updates: set of listing ids whose update raises
    - lookup_barrier: threading.Barrier every order lookup waits on, to force
      concurrent deliveries past the pre-check together
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.listings: dict[str, dict[str, Any]] = {}
        self.orders: dict[str, dict[str, Any]] = {}
        self.line_items: list[dict[str, Any]] = []
        self.activity: list[dict[str, Any]] = []
        self.fail_order_insert = False
        self.fail_order_lookup = False
        self.fail_line_items = False
        self.fail_activity = False
        self.fail_listing_updates: set[str] = set()
        self.lookup_barrier: threading.Barrier | None = None
        self.order_insert_attempts = 0

    # ── Seeding ──────────────────────────────────────────────────────────

    def add_listing(
        self,
        external_product_id: str | None,
        status: str = "live",
        *,
        creator_id: str | None = None,
        title: str = "Vintage Denim Jacket",
        listing_id: str | None = None,
    ) -> dict[str, Any]:
        listing = {
            "id": listing_id or str(uuid.uuid4()),
            "creator_id": creator_id or str(uuid.uuid4()),
            "external_product_id": external_product_id,
            "status": status,
            "title": title,
            "sold_at": None,
        }
        self.listings[listing["id"]] = listing
        return listing

    def add_line_item_row(self, **fields: Any) -> dict[str, Any]:
        row = {
            "id": str(uuid.uuid4()),
            "order_id": str(uuid.uuid4()),
            "creator_id": str(uuid.uuid4()),
            "quantity": 1,
            "line_total_minor": 0,
            "created_at": datetime.now(timezone.utc),
        }
        row.update(fields)
        self.line_items.append(row)
        return row

    # ── OrderStore ───────────────────────────────────────────────────────

    def get_order_by_external_id(self, external_order_id: str) -> dict[str, Any] | None:
        if self.fail_order_lookup:
            raise StoreError("connection reset")
        with self._lock:
            found = copy.deepcopy(self.orders.get(external_order_id))
        if self.lookup_barrier is not None:
            self.lookup_barrier.wait(timeout=5)
        return found

    def insert_order(self, record: dict[str, Any]) -> dict[str, Any]:
        if self.fail_order_insert:
            raise StoreError("disk full", "53100")
        with self._lock:
            self.order_insert_attempts += 1
            if record["external_order_id"] in self.orders:
                raise DuplicateOrderError("duplicate key value", "23505")
            row = dict(record, id=str(uuid.uuid4()))
            self.orders[record["external_order_id"]] = row
            return copy.deepcopy(row)

    def insert_line_items(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if self.fail_line_items:
            raise StoreError("line items rejected")
        with self._lock:
            rows = [dict(r, id=str(uuid.uuid4()), created_at=datetime.now(timezone.utc)) for r in records]
            self.line_items.extend(rows)
            return copy.deepcopy(rows)

    def find_live_listings(self, value: str, *, suffix: bool = False) -> list[dict[str, Any]]:
        with self._lock:
            rows = [
                copy.deepcopy(listing)
                for listing in self.listings.values()
                if listing["status"] == "live"
                and listing["external_product_id"] is not None
                and (
                    listing["external_product_id"].endswith(value)
                    if suffix
                    else listing["external_product_id"] == value
                )
            ]
        return rows[:2]

    def mark_listing_sold(self, listing_id: str, sold_at: datetime) -> dict[str, Any] | None:
        if listing_id in self.fail_listing_updates:
            raise StoreError("deadlock detected", "40P01")
        with self._lock:
            listing = self.listings.get(listing_id)
            if listing is None or listing["status"] != "live":
                return None
            listing["status"] = "sold"
            listing["sold_at"] = sold_at
            return copy.deepcopy(listing)

    def get_listing_status(self, listing_id: str) -> str | None:
        listing = self.listings.get(listing_id)
        return listing["status"] if listing else None

    def insert_activity(self, entry: dict[str, Any]) -> None:
        if self.fail_activity:
            raise StoreError("activity_log unavailable")
        with self._lock:
            self.activity.append(dict(entry))

    def fetch_line_items(
        self,
        *,
        creator_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = [
            r
            for r in self.line_items
            if (creator_id is None or r.get("creator_id") == creator_id)
            and (start is None or r["created_at"] >= start)
            and (end is None or r["created_at"] <= end)
        ]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return rows[:limit] if limit else rows


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Valid base64 HMAC-SHA256 signature header for body."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def make_order_payload(
    order_id: int | str = 5001,
    line_items: list[dict[str, Any]] | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": order_id,
        "order_number": 1001,
        "name": "#1001",
        "email": "  Buyer@Example.COM ",
        "customer": {"first_name": "Ada", "last_name": "Lovelace"},
        "total_price": "29.99",
        "subtotal_price": "27.00",
        "total_tax": "2.99",
        "total_shipping_price_set": {"shop_money": {"amount": "0.00", "currency_code": "USD"}},
        "currency": "USD",
        "financial_status": "paid",
        "fulfillment_status": None,
        "line_items": line_items
        if line_items is not None
        else [
            {
                "id": 7001,
                "product_id": 9001,
                "variant_id": 8001,
                "quantity": 1,
                "price": "29.99",
                "title": "Vintage Denim Jacket",
                "variant_title": "M",
            }
        ],
    }
    payload.update(overrides)
    return payload


def encode(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload).encode()
