"""Pointsman adapters.

- pointsman.adapters.shopify: ShopifyCommerceBackend (CommerceBackend)
"""

from django.utils.module_loading import import_string

from pointsman.conf import pointsman_settings
from pointsman.protocols.commerce import CommerceBackend


def get_commerce_backend(shop: str) -> CommerceBackend:
    """Instantiate the configured CommerceBackend for a shop."""
    backend_class = import_string(pointsman_settings.COMMERCE_BACKEND)
    return backend_class(shop)


__all__ = ["get_commerce_backend"]
