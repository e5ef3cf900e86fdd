"""Commerce platform protocol for catalog, tags, config and discounts."""

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol, runtime_checkable

from pointsman.exceptions import PointsmanError


@dataclass(frozen=True)
class Variant:
    """A purchasable product variant."""

    variant_id: str
    title: str = ""


@dataclass(frozen=True)
class Product:
    """A catalog product with its variants, in platform order."""

    product_id: str
    title: str = ""
    variants: tuple[Variant, ...] = ()


@dataclass(frozen=True)
class ExclusionConfig:
    """
    Variants excluded from promotional discounts, per shop.

    Stored by the platform as a JSON blob:
        {"schemaVersion": 1, "excludedVariantIds": ["gid://shopify/ProductVariant/1"]}

    Blobs written before versioning have no schemaVersion and decode as 1.
    """

    SCHEMA_VERSION = 1

    excluded_variant_ids: frozenset[str] = frozenset()
    schema_version: int = SCHEMA_VERSION

    @classmethod
    def from_json(cls, raw: str | None) -> "ExclusionConfig":
        """
        Decode the stored blob.

        Raises:
            PointsmanError: INVALID_CONFIG if the blob is not valid JSON,
                has the wrong shape, or uses an unknown schema version
        """
        if not raw:
            return cls()
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, ValueError) as exc:
            raise PointsmanError("INVALID_CONFIG", message=f"Exclusion config is not JSON: {exc}")
        if not isinstance(data, dict):
            raise PointsmanError("INVALID_CONFIG", message="Exclusion config must be an object")

        version = data.get("schemaVersion", 1)
        if not isinstance(version, int) or version < 1 or version > cls.SCHEMA_VERSION:
            raise PointsmanError(
                "INVALID_CONFIG",
                message=f"Unsupported exclusion config version: {version!r}",
            )

        excluded = data.get("excludedVariantIds") or []
        if not isinstance(excluded, list):
            raise PointsmanError("INVALID_CONFIG", message="excludedVariantIds must be a list")

        return cls(
            excluded_variant_ids=frozenset(str(v) for v in excluded),
            schema_version=version,
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "schemaVersion": self.SCHEMA_VERSION,
                "excludedVariantIds": sorted(self.excluded_variant_ids),
            }
        )


@dataclass(frozen=True)
class DiscountRequest:
    """A single-use, customer-restricted, fixed-amount discount code."""

    code: str
    amount: Decimal
    customer_id: str
    variant_ids: tuple[str, ...]
    usage_limit: int = 1


@dataclass(frozen=True)
class DiscountResult:
    """Outcome of a discount issuance: a code, or user-facing errors."""

    code: str | None = None
    user_errors: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return bool(self.code) and not self.user_errors


@runtime_checkable
class CommerceBackend(Protocol):
    """
    Protocol for the storefront platform.

    Implemented by adapters/shopify.py. One instance serves one shop.
    Transport and auth failures raise PointsmanError("UPSTREAM_UNAVAILABLE").

    Configuration in settings.py:
        POINTSMAN = {
            "COMMERCE_BACKEND": "pointsman.adapters.shopify.ShopifyCommerceBackend",
        }
    """

    shop: str

    def get_customer_tags(self, customer_id: str) -> frozenset[str]:
        """Return the customer's tags (empty if the customer is unknown)."""
        ...

    def get_catalog(self) -> list[Product]:
        """Return the full catalog, following pagination to the end."""
        ...

    def get_exclusion_config(self) -> ExclusionConfig:
        """Return the shop's current exclusion config (empty if unset)."""
        ...

    def set_exclusion_config(self, config: ExclusionConfig) -> None:
        """Replace the shop's exclusion config."""
        ...

    def create_discount_code(self, request: DiscountRequest) -> DiscountResult:
        """
        Create a discount code.

        Creating a code that already exists returns that code, so a
        retried request does not produce a second discount.
        """
        ...
