"""P1 CRITICAL: Reporting API authentication and response tests.

Verifies:
- Every /reports route requires the admin bearer token (fail-closed)
- Token comparison rejects near-misses and wrong schemes
- Authenticated routes return creator/platform totals in minor units
"""

from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient
from limits.storage import MemoryStorage

from storefront.app import create_app
from storefront.config import Settings
from storefront.webhooks.ratelimit import RateLimiter
from tests.helpers import ADMIN_TOKEN

CREATOR_ID = str(uuid.uuid4())

REPORT_PATHS = [
    "/reports/sales",
    f"/reports/creators/{CREATOR_ID}/sales",
    f"/reports/creators/{CREATOR_ID}/payouts",
    f"/reports/creators/{CREATOR_ID}/line-items",
]


class TestReportAuthentication:

    @pytest.mark.parametrize("path", REPORT_PATHS)
    def test_no_token_returns_401(self, client, path):
        resp = client.get(path)
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.parametrize(
        "header",
        [
            f"Bearer {ADMIN_TOKEN}x",
            f"Bearer {ADMIN_TOKEN[:-1]}",
            f"Basic {ADMIN_TOKEN}",
            ADMIN_TOKEN,
            "Bearer ",
        ],
    )
    def test_wrong_token_returns_401(self, client, header):
        resp = client.get("/reports/sales", headers={"Authorization": header})
        assert resp.status_code == 401
        assert ADMIN_TOKEN not in resp.text

    @pytest.mark.parametrize("path", REPORT_PATHS)
    def test_admin_token_accepted(self, admin_client, path):
        assert admin_client.get(path).status_code == 200

    def test_unconfigured_token_rejects_everything(self, store):
        settings = Settings(_env_file=None, admin_api_token="")
        app = create_app(settings, store, RateLimiter(MemoryStorage(), 100, 60))
        with TestClient(app, raise_server_exceptions=False) as c:
            resp = c.get("/reports/sales", headers={"Authorization": "Bearer "})
            assert resp.status_code == 401
            resp = c.get("/reports/sales", headers={"Authorization": "Bearer anything"})
            assert resp.status_code == 401


class TestReportRoutes:

    @pytest.fixture
    def seeded(self, store):
        other = str(uuid.uuid4())
        store.add_line_item_row(creator_id=CREATOR_ID, order_id="o1", quantity=1, line_total_minor=2999)
        store.add_line_item_row(creator_id=CREATOR_ID, order_id="o2", quantity=2, line_total_minor=5000)
        store.add_line_item_row(creator_id=other, order_id="o2", quantity=1, line_total_minor=1001)
        return store

    def test_creator_sales(self, admin_client, seeded):
        body = admin_client.get(f"/reports/creators/{CREATOR_ID}/sales").json()
        assert body["total_sales_minor"] == 7999
        assert body["total_sales"] == "79.99"
        assert body["total_items_sold"] == 3
        assert body["total_orders"] == 2
        assert body["average_order_value_minor"] == 4000

    def test_creator_payouts_default_fee(self, admin_client, seeded):
        body = admin_client.get(f"/reports/creators/{CREATOR_ID}/payouts").json()
        assert body["gross_minor"] == 7999
        assert body["platform_fee_minor"] == 800
        assert body["net_minor"] == 7199
        assert body["platform_fee_percent"] == 10.0

    def test_creator_payouts_custom_fee(self, admin_client, seeded):
        body = admin_client.get(
            f"/reports/creators/{CREATOR_ID}/payouts", params={"fee_percent": 20}
        ).json()
        assert body["platform_fee_minor"] == 1600
        assert body["net_minor"] == 6399

    def test_admin_sales_summary(self, admin_client, seeded):
        body = admin_client.get("/reports/sales").json()
        assert body["total_sales_minor"] == 9000
        assert body["total_creators"] == 2
        assert body["total_orders"] == 2
        assert body["platform_fee_minor"] == 900

    def test_line_items_limit(self, admin_client, seeded):
        body = admin_client.get(
            f"/reports/creators/{CREATOR_ID}/line-items", params={"limit": 1}
        ).json()
        assert body["limit"] == 1
        assert len(body["items"]) == 1

    def test_invalid_creator_id_returns_empty(self, admin_client, seeded):
        body = admin_client.get("/reports/creators/not-a-uuid/sales").json()
        assert body["total_sales_minor"] == 0
        assert body["total_orders"] == 0
