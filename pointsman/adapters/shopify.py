"""Shopify CommerceBackend adapter (Admin GraphQL API)."""

from __future__ import annotations

import logging
import math
import time
from typing import Any

import requests
from django.utils import timezone

from pointsman.conf import pointsman_settings
from pointsman.exceptions import PointsmanError
from pointsman.protocols.commerce import (
    DiscountRequest,
    DiscountResult,
    ExclusionConfig,
    Product,
    Variant,
)

logger = logging.getLogger(__name__)


CUSTOMER_TAGS_QUERY = """
query customerTags($id: ID!) {
  customer(id: $id) {
    id
    tags
  }
}
"""

PRODUCTS_QUERY = """
query catalog($first: Int!, $after: String, $variantsFirst: Int!) {
  products(first: $first, after: $after) {
    pageInfo { hasNextPage endCursor }
    nodes {
      id
      title
      variants(first: $variantsFirst) {
        pageInfo { hasNextPage endCursor }
        nodes { id title }
      }
    }
  }
}
"""

PRODUCT_VARIANTS_QUERY = """
query productVariants($id: ID!, $first: Int!, $after: String) {
  product(id: $id) {
    variants(first: $first, after: $after) {
      pageInfo { hasNextPage endCursor }
      nodes { id title }
    }
  }
}
"""

SHOP_METAFIELD_QUERY = """
query shopMetafield($namespace: String!, $key: String!) {
  shop {
    id
    metafield(namespace: $namespace, key: $key) { value }
  }
}
"""

METAFIELDS_SET_MUTATION = """
mutation metafieldsSet($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    userErrors { field message }
  }
}
"""

DISCOUNT_BY_CODE_QUERY = """
query discountByCode($code: String!) {
  codeDiscountNodeByCode(code: $code) { id }
}
"""

DISCOUNT_CREATE_MUTATION = """
mutation discountCodeBasicCreate($basicCodeDiscount: DiscountCodeBasicInput!) {
  discountCodeBasicCreate(basicCodeDiscount: $basicCodeDiscount) {
    userErrors { field message }
    codeDiscountNode {
      id
      codeDiscount {
        ... on DiscountCodeBasic {
          codes(first: 1) { nodes { code } }
        }
      }
    }
  }
}
"""


def customer_gid(customer_id: str) -> str:
    """Shopify global ID for a numeric customer ID."""
    customer_id = str(customer_id)
    if customer_id.startswith("gid://"):
        return customer_id
    return f"gid://shopify/Customer/{customer_id}"


class ShopifyClient:
    """
    Minimal Shopify Admin GraphQL client.

    - API version pinned by SHOPIFY_API_VERSION
    - Retries on 429, 5xx, THROTTLED and transport errors (queries only)
    - Every failure surfaces as PointsmanError("UPSTREAM_UNAVAILABLE")
    """

    RETRY_BACKOFF_SECONDS = 1.5

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str | None = None,
        timeout: int | None = None,
        max_retries: int | None = None,
        session: requests.Session | None = None,
    ):
        if not shop_domain or not access_token:
            raise PointsmanError(
                "UPSTREAM_UNAVAILABLE",
                message="Shopify client requires shop domain and access token",
                shop=shop_domain,
            )

        self.shop_domain = shop_domain.lower().strip()
        self.api_version = api_version or pointsman_settings.SHOPIFY_API_VERSION
        self.timeout = timeout or pointsman_settings.SHOPIFY_TIMEOUT_SECONDS
        self.max_retries = max_retries or pointsman_settings.SHOPIFY_MAX_RETRIES
        self.url = f"https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json"

        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "X-Shopify-Access-Token": access_token.strip(),
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )

    def execute(self, query: str, variables: dict | None = None, retry: bool = True) -> dict[str, Any]:
        """
        Run a GraphQL operation and return its ``data``.

        Mutations should pass retry=False: a request that timed out may
        still have been applied.
        """
        attempts = self.max_retries if retry else 1
        last_error = ""

        for attempt in range(1, attempts + 1):
            try:
                response = self.session.post(
                    self.url,
                    json={"query": query, "variables": variables or {}},
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                last_error = f"transport error: {exc}"
            else:
                if response.status_code in (401, 403):
                    raise PointsmanError(
                        "UPSTREAM_UNAVAILABLE",
                        message=f"Shopify rejected credentials ({response.status_code})",
                        shop=self.shop_domain,
                    )
                if response.status_code == 429 or response.status_code >= 500:
                    last_error = f"HTTP {response.status_code}"
                    retry_after = _retry_after_seconds(response.headers.get("Retry-After"))
                    if retry_after is not None and attempt < attempts:
                        time.sleep(retry_after)
                        continue
                elif response.status_code >= 400:
                    raise PointsmanError(
                        "UPSTREAM_UNAVAILABLE",
                        message=f"Shopify request failed (HTTP {response.status_code})",
                        shop=self.shop_domain,
                    )
                else:
                    try:
                        payload = response.json()
                    except ValueError:
                        raise PointsmanError(
                            "UPSTREAM_UNAVAILABLE",
                            message="Shopify returned a non-JSON response",
                            shop=self.shop_domain,
                        )
                    errors = payload.get("errors") or []
                    if not errors:
                        return payload.get("data") or {}
                    if not any(_is_throttled(e) for e in errors):
                        raise PointsmanError(
                            "UPSTREAM_UNAVAILABLE",
                            message=f"Shopify GraphQL error: {_error_messages(errors)}",
                            shop=self.shop_domain,
                        )
                    last_error = "throttled"

            if attempt < attempts:
                logger.warning(
                    "Shopify request to %s failed (%s), retry %d/%d",
                    self.shop_domain,
                    last_error,
                    attempt,
                    attempts - 1,
                )
                time.sleep(self.RETRY_BACKOFF_SECONDS * attempt)

        raise PointsmanError(
            "UPSTREAM_UNAVAILABLE",
            message=f"Shopify request failed after {attempts} attempt(s): {last_error}",
            shop=self.shop_domain,
        )


def _retry_after_seconds(value: str | None) -> float | None:
    # HTTP-date values fall back to the regular backoff
    try:
        delay = float(value) if value else None
    except ValueError:
        return None
    if delay is None or not math.isfinite(delay):
        return None
    return max(delay, 0.0)


def _is_throttled(error: dict) -> bool:
    return (error.get("extensions") or {}).get("code") == "THROTTLED"


def _error_messages(errors: list) -> str:
    return "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)


class ShopifyCommerceBackend:
    """
    Adapter that implements CommerceBackend on the Shopify Admin API.

    Access tokens come from POINTSMAN["SHOPIFY_ACCESS_TOKENS"][shop].

    Configuration in settings.py:
        POINTSMAN = {
            "COMMERCE_BACKEND": "pointsman.adapters.shopify.ShopifyCommerceBackend",
        }
    """

    def __init__(self, shop: str, client: ShopifyClient | None = None):
        self.shop = shop
        if client is None:
            token = pointsman_settings.SHOPIFY_ACCESS_TOKENS.get(shop, "")
            client = ShopifyClient(shop, token)
        self.client = client

    def get_customer_tags(self, customer_id: str) -> frozenset[str]:
        data = self.client.execute(CUSTOMER_TAGS_QUERY, {"id": customer_gid(customer_id)})
        customer = data.get("customer")
        if not customer:
            return frozenset()
        return frozenset(customer.get("tags") or [])

    def get_catalog(self) -> list[Product]:
        """Fetch every product and variant, following both pagination levels."""
        products = []
        after = None
        while True:
            data = self.client.execute(
                PRODUCTS_QUERY,
                {
                    "first": pointsman_settings.CATALOG_PAGE_SIZE,
                    "after": after,
                    "variantsFirst": pointsman_settings.VARIANT_PAGE_SIZE,
                },
            )
            connection = data["products"]
            for node in connection["nodes"]:
                variants = [self._variant(v) for v in node["variants"]["nodes"]]
                page_info = node["variants"]["pageInfo"]
                if page_info["hasNextPage"]:
                    variants.extend(self._remaining_variants(node["id"], page_info["endCursor"]))
                products.append(
                    Product(product_id=node["id"], title=node.get("title", ""), variants=tuple(variants))
                )

            if not connection["pageInfo"]["hasNextPage"]:
                return products
            after = connection["pageInfo"]["endCursor"]

    def get_exclusion_config(self) -> ExclusionConfig:
        data = self.client.execute(
            SHOP_METAFIELD_QUERY,
            {
                "namespace": pointsman_settings.EXCLUSION_NAMESPACE,
                "key": pointsman_settings.EXCLUSION_KEY,
            },
        )
        metafield = (data.get("shop") or {}).get("metafield")
        return ExclusionConfig.from_json(metafield["value"] if metafield else None)

    def set_exclusion_config(self, config: ExclusionConfig) -> None:
        data = self.client.execute(
            SHOP_METAFIELD_QUERY,
            {
                "namespace": pointsman_settings.EXCLUSION_NAMESPACE,
                "key": pointsman_settings.EXCLUSION_KEY,
            },
        )
        shop_id = data["shop"]["id"]
        result = self.client.execute(
            METAFIELDS_SET_MUTATION,
            {
                "metafields": [
                    {
                        "ownerId": shop_id,
                        "namespace": pointsman_settings.EXCLUSION_NAMESPACE,
                        "key": pointsman_settings.EXCLUSION_KEY,
                        "type": "json",
                        "value": config.to_json(),
                    }
                ]
            },
            retry=False,
        )
        errors = result["metafieldsSet"].get("userErrors") or []
        if errors:
            raise PointsmanError(
                "INVALID_CONFIG",
                message=f"Exclusion config rejected: {_error_messages(errors)}",
                shop=self.shop,
            )

    def create_discount_code(self, request: DiscountRequest) -> DiscountResult:
        # A code derived from the same request may already exist (retry)
        existing = self.client.execute(DISCOUNT_BY_CODE_QUERY, {"code": request.code})
        if existing.get("codeDiscountNodeByCode"):
            logger.info("Discount code %s already exists on %s, reusing it", request.code, self.shop)
            return DiscountResult(code=request.code)

        data = self.client.execute(
            DISCOUNT_CREATE_MUTATION,
            {
                "basicCodeDiscount": {
                    "title": request.code,
                    "code": request.code,
                    "startsAt": timezone.now().isoformat(),
                    "usageLimit": request.usage_limit,
                    "appliesOncePerCustomer": True,
                    "customerSelection": {
                        "customers": {"add": [customer_gid(request.customer_id)]},
                    },
                    "customerGets": {
                        "value": {
                            "discountAmount": {
                                "amount": str(request.amount),
                                "appliesOnEachItem": False,
                            },
                        },
                        "items": {
                            "products": {"productVariantsToAdd": list(request.variant_ids)},
                        },
                    },
                },
            },
            retry=False,
        )
        payload = data["discountCodeBasicCreate"]
        errors = tuple(e.get("message", "") for e in payload.get("userErrors") or [])
        if errors:
            return DiscountResult(user_errors=errors)

        node = payload.get("codeDiscountNode") or {}
        codes = ((node.get("codeDiscount") or {}).get("codes") or {}).get("nodes") or []
        return DiscountResult(code=codes[0]["code"] if codes else request.code)

    def _remaining_variants(self, product_id: str, after: str) -> list[Variant]:
        variants = []
        while True:
            data = self.client.execute(
                PRODUCT_VARIANTS_QUERY,
                {"id": product_id, "first": pointsman_settings.VARIANT_PAGE_SIZE, "after": after},
            )
            connection = data["product"]["variants"]
            variants.extend(self._variant(v) for v in connection["nodes"])
            if not connection["pageInfo"]["hasNextPage"]:
                return variants
            after = connection["pageInfo"]["endCursor"]

    @staticmethod
    def _variant(node: dict) -> Variant:
        return Variant(variant_id=node["id"], title=node.get("title", ""))
