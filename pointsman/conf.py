"""
Pointsman configuration.

Usage in settings.py:
    POINTSMAN = {
        "VIP_TAG": "VIP",
        "ACCRUAL_RATE": "2",
        "SHOPIFY_ACCESS_TOKENS": {"example.myshopify.com": "shpat_..."},
        "SHOPIFY_WEBHOOK_SECRET": "...",
    }
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from django.conf import settings


@dataclass
class PointsmanSettings:
    """Pointsman configuration settings."""

    # Accrual
    VIP_TAG: str = "VIP"
    ACCRUAL_RATE: Decimal | str = "2"

    # Redemption
    POINT_VALUE: Decimal | str = "1"  # currency units per point
    REDEMPTION_ORDER_ID: str = "REDEEM"
    DISCOUNT_CODE_PREFIX: str = "VIP"
    PENDING_LEASE_SECONDS: int = 300  # pending redemptions older than this may be resumed

    # Commerce platform
    COMMERCE_BACKEND: str = "pointsman.adapters.shopify.ShopifyCommerceBackend"
    SHOPIFY_API_VERSION: str = "2024-10"
    SHOPIFY_ACCESS_TOKENS: dict[str, str] = field(default_factory=dict)
    SHOPIFY_WEBHOOK_SECRET: str = ""
    SHOPIFY_API_SECRET: str = ""
    SHOPIFY_TIMEOUT_SECONDS: int = 20
    SHOPIFY_MAX_RETRIES: int = 3
    CATALOG_PAGE_SIZE: int = 100
    VARIANT_PAGE_SIZE: int = 50

    # Exclusion metafield
    EXCLUSION_NAMESPACE: str = "group_discount"
    EXCLUSION_KEY: str = "config"

    # ProcessedEvent cleanup
    EVENT_CLEANUP_DAYS: int = 90

    def __post_init__(self):
        self.ACCRUAL_RATE = Decimal(str(self.ACCRUAL_RATE))
        self.POINT_VALUE = Decimal(str(self.POINT_VALUE))


def get_pointsman_settings() -> PointsmanSettings:
    """Load settings from Django settings."""
    user_settings: dict[str, Any] = getattr(settings, "POINTSMAN", {})
    return PointsmanSettings(**user_settings)


class _LazySettings:
    """Lazy proxy that re-reads settings on every attribute access."""

    def __getattr__(self, name):
        return getattr(get_pointsman_settings(), name)


pointsman_settings = _LazySettings()
