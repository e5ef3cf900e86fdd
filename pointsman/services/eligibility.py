"""Eligibility filter - which catalog variants a redemption discount may cover."""

from collections.abc import Iterable

from pointsman.protocols.commerce import Product


def flatten_variants(catalog: Iterable[Product]) -> list[str]:
    """Variant IDs of the catalog in product/variant order, deduplicated."""
    return list(dict.fromkeys(variant.variant_id for product in catalog for variant in product.variants))


def eligible_variant_ids(catalog: Iterable[Product], excluded: Iterable[str]) -> list[str]:
    """
    Variants present in the catalog and absent from the exclusion set.

    Args:
        catalog: Products with their variants
        excluded: Variant IDs excluded from promotional discounts

    Returns:
        Deduplicated variant IDs, in first-seen catalog order
    """
    excluded = frozenset(excluded)
    return [variant_id for variant_id in flatten_variants(catalog) if variant_id not in excluded]
