"""Pointsman protocols."""

from pointsman.protocols.commerce import (
    CommerceBackend,
    DiscountRequest,
    DiscountResult,
    ExclusionConfig,
    Product,
    Variant,
)

__all__ = [
    "CommerceBackend",
    "DiscountRequest",
    "DiscountResult",
    "ExclusionConfig",
    "Product",
    "Variant",
]
