"""Shared fixtures for the storefront test suite."""

from __future__ import annotations

from typing import Any

import pytest

from tests.helpers import InMemoryOrderStore, make_order_payload


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def order_payload() -> dict[str, Any]:
    return make_order_payload()
