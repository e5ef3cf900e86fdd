"""Pytest fixtures for Pointsman tests."""

import pytest

from pointsman.services.ledger import LedgerService
from pointsman.tests.fakes import FakeCommerceBackend, make_catalog

SHOP = "test-shop.myshopify.com"
VIP_ID = "1001"
REGULAR_ID = "2002"


@pytest.fixture
def shop():
    return SHOP


@pytest.fixture
def catalog():
    """Three variants across two products."""
    return make_catalog(("gid://shopify/Product/1", ["V1", "V2"]), ("gid://shopify/Product/2", ["V3"]))


@pytest.fixture
def backend(catalog):
    """Platform with one VIP and one regular customer; V2 excluded."""
    return FakeCommerceBackend(
        shop=SHOP,
        tags={VIP_ID: ["VIP", "newsletter"], REGULAR_ID: ["newsletter"]},
        catalog=catalog,
        excluded=["V2"],
    )


@pytest.fixture
def vip_customer(db):
    """VIP customer holding 200 points from order O1."""
    LedgerService.credit(VIP_ID, SHOP, "O1", 200)
    return LedgerService.get_customer(VIP_ID)


@pytest.fixture
def order_payload():
    """Shopify orders/create payload for the VIP customer."""
    return {
        "id": 820982911946154508,
        "customer": {"id": int(VIP_ID), "email": "vip@example.com"},
        "subtotal_price": "100.00",
        "currency": "USD",
    }
