"""Order payload parsing, validation and normalization.

The platform sends money as decimal strings ("29.99"); everything we
persist is integer minor units. Customer fields are sanitized rather than
rejected: a bad email becomes None, it never fails the whole order.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

# Maximum lengths for persisted string fields
MAX_ORDER_NUMBER_LENGTH = 50
MAX_DISPLAY_NAME_LENGTH = 100
MAX_STATUS_LENGTH = 50
MAX_EMAIL_LENGTH = 255
MAX_NAME_PART_LENGTH = 100
MAX_CUSTOMER_NAME_LENGTH = 200
MAX_TITLE_LENGTH = 255

_NUMERIC_ID = re.compile(r"^\d+$")
_STRUCTURED_ID = re.compile(r"^gid://[^/]+/[^/]+/(\d+)$")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_CURRENCY = re.compile(r"^[A-Za-z]{3}$")

# Top-level money fields validated before normalization
_VALIDATED_MONEY_FIELDS = ("total_price", "subtotal_price", "total_tax")


class PayloadError(ValueError):
    """The body is not a JSON object."""


@dataclass
class ExternalLineItem:
    """One line item as received. Quantity and price stay raw until matching."""

    external_line_item_id: str | None
    external_product_id: str | None
    raw_product_id: Any
    external_variant_id: str | None
    quantity: Any
    price: Any
    subtotal: Any
    title: str | None
    variant_title: str | None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExternalOrder:
    """Normalized order. Never mutated after normalize_order() returns it."""

    external_order_id: str
    order_number: str | None
    display_name: str
    customer_email: str | None
    customer_name: str | None
    total_price_minor: int
    subtotal_minor: int
    tax_minor: int
    shipping_minor: int
    currency_code: str
    financial_status: str
    fulfillment_status: str | None
    processed_at: str
    created_at: str
    line_items: list[ExternalLineItem]
    raw: dict[str, Any]

    def to_record(self) -> dict[str, Any]:
        """Row for the orders table."""
        return {
            "external_order_id": self.external_order_id,
            "order_number": self.order_number,
            "display_name": self.display_name,
            "customer_email": self.customer_email,
            "customer_name": self.customer_name,
            "total_price_minor": self.total_price_minor,
            "subtotal_minor": self.subtotal_minor,
            "tax_minor": self.tax_minor,
            "shipping_minor": self.shipping_minor,
            "currency_code": self.currency_code,
            "financial_status": self.financial_status,
            "fulfillment_status": self.fulfillment_status,
            "processed_at": self.processed_at,
            "created_at": self.created_at,
            "order_data": self.raw,
        }


# ── Numeric helpers ───────────────────────────────────────────────────────


def parse_decimal(value: Any) -> float:
    """Parse a decimal string or number; NaN when it isn't one."""
    if value is None or isinstance(value, bool):
        return math.nan
    try:
        if isinstance(value, (int, float)):
            return float(value)
        return float(str(value).strip())
    except (ValueError, OverflowError):
        return math.nan


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves rounded up."""
    return math.floor(value + 0.5)


def to_minor_units(value: Any) -> int:
    """Decimal amount -> non-negative integer minor units (0 if unparseable)."""
    scaled = parse_decimal(value) * 100
    if not math.isfinite(scaled):
        return 0
    return max(0, round_half_up(scaled))


def sanitize_quantity(value: Any) -> float:
    """Floor the quantity, minimum 1. Returns inf for infinite input."""
    quantity = parse_decimal(value)
    if math.isnan(quantity) or quantity == 0:
        quantity = 1.0
    if math.isinf(quantity):
        return quantity
    return float(max(1, math.floor(quantity)))


def sanitize_price(value: Any) -> float:
    """Unit price in major units, clamped to >= 0. NaN/inf pass through."""
    price = parse_decimal(value if value not in (None, "") else "0")
    if math.isnan(price):
        return price
    return max(0.0, price)


def extract_numeric_id(value: Any) -> str | None:
    """Numeric id from a bare id ("123") or a structured one ("gid://x/Product/123")."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if _NUMERIC_ID.match(text):
        return text
    structured = _STRUCTURED_ID.match(text)
    if structured:
        return structured.group(1)
    return None


def _truncate(value: Any, length: int) -> str | None:
    if value is None or value == "":
        return None
    return str(value)[:length]


# ── Parsing & validation ──────────────────────────────────────────────────


def parse_payload(body: bytes) -> dict[str, Any]:
    """Decode the verified raw body into a JSON object."""
    if not body:
        raise PayloadError("Invalid body")
    try:
        parsed = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise PayloadError("Invalid JSON payload") from e
    if not isinstance(parsed, dict):
        raise PayloadError("Payload must be an object")
    return parsed


def validate_order(data: dict[str, Any]) -> str | None:
    """Return a message naming the first invalid required field, or None."""
    if not isinstance(data, dict):
        return "Order data must be an object"

    order_id = data.get("id")
    if order_id is None or order_id == "" or isinstance(order_id, bool):
        return "Missing order ID"
    if not _NUMERIC_ID.match(str(order_id).strip()):
        return "Invalid order ID format"

    currency = data.get("currency")
    if currency is None or currency == "":
        return "Missing currency code"
    if not isinstance(currency, str) or not _CURRENCY.match(currency.strip()):
        return "Invalid currency code"

    if not isinstance(data.get("line_items"), list):
        return "line_items must be an array"

    for name in _VALIDATED_MONEY_FIELDS:
        if data.get(name) is not None:
            amount = parse_decimal(data[name])
            if not math.isfinite(amount) or amount < 0:
                return f"Invalid {name} value"

    return None


# ── Normalization ─────────────────────────────────────────────────────────


def sanitize_email(value: Any) -> str | None:
    if not value or not isinstance(value, str):
        return None
    email = value.strip().lower()
    if len(email) > MAX_EMAIL_LENGTH or not _EMAIL.match(email):
        return None
    return email


def sanitize_timestamp(value: Any, fallback: str) -> str:
    """ISO-8601 timestamp normalized to an explicit offset, else fallback.

    A trailing ``Z`` is read as UTC and naive values are assumed UTC.
    """
    if not value:
        return fallback
    try:
        parsed = datetime.fromisoformat(re.sub(r"[Zz]$", "+00:00", str(value).strip()))
    except ValueError:
        logger.warning("Unparseable order timestamp %r, using %s", str(value)[:64], fallback)
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.isoformat()


def sanitize_customer_name(customer: Any) -> str | None:
    if not isinstance(customer, dict):
        return None
    first = str(customer.get("first_name") or "").strip()[:MAX_NAME_PART_LENGTH]
    last = str(customer.get("last_name") or "").strip()[:MAX_NAME_PART_LENGTH]
    name = " ".join(part for part in (first, last) if part)
    return name[:MAX_CUSTOMER_NAME_LENGTH] or None


def _shipping_amount(data: dict[str, Any]) -> Any:
    price_set = data.get("total_shipping_price_set")
    if not isinstance(price_set, dict):
        return None
    shop_money = price_set.get("shop_money")
    if not isinstance(shop_money, dict):
        return None
    return shop_money.get("amount")


def normalize_line_item(item: dict[str, Any]) -> ExternalLineItem:
    raw_product_id = item.get("product_id")
    return ExternalLineItem(
        external_line_item_id=_truncate(item.get("id"), MAX_TITLE_LENGTH),
        external_product_id=extract_numeric_id(raw_product_id),
        raw_product_id=raw_product_id,
        external_variant_id=_truncate(item.get("variant_id"), MAX_TITLE_LENGTH),
        quantity=item.get("quantity"),
        price=item.get("price"),
        subtotal=item.get("subtotal"),
        title=_truncate(item.get("title") or item.get("name"), MAX_TITLE_LENGTH),
        variant_title=_truncate(item.get("variant_title"), MAX_TITLE_LENGTH),
        raw=item,
    )


def normalize_order(data: dict[str, Any], now: datetime | None = None) -> ExternalOrder:
    """Build the canonical order from a payload that passed validate_order()."""
    now_iso = (now or datetime.now(timezone.utc)).isoformat()
    order_number = data.get("order_number") or data.get("number")
    display_name = data.get("name") or f"#{order_number or 'unknown'}"

    return ExternalOrder(
        external_order_id=str(data["id"]).strip(),
        order_number=_truncate(order_number, MAX_ORDER_NUMBER_LENGTH),
        display_name=str(display_name)[:MAX_DISPLAY_NAME_LENGTH],
        customer_email=sanitize_email(data.get("email")),
        customer_name=sanitize_customer_name(data.get("customer")),
        total_price_minor=to_minor_units(data.get("total_price")),
        subtotal_minor=to_minor_units(data.get("subtotal_price")),
        tax_minor=to_minor_units(data.get("total_tax")),
        shipping_minor=to_minor_units(_shipping_amount(data)),
        currency_code=str(data["currency"]).strip().upper()[:3],
        financial_status=str(data.get("financial_status") or "pending")[:MAX_STATUS_LENGTH],
        fulfillment_status=_truncate(data.get("fulfillment_status"), MAX_STATUS_LENGTH),
        processed_at=sanitize_timestamp(data.get("processed_at"), now_iso),
        created_at=sanitize_timestamp(data.get("created_at"), now_iso),
        line_items=[
            normalize_line_item(item)
            for item in data["line_items"]
            if isinstance(item, dict)
        ],
        raw=data,
    )
