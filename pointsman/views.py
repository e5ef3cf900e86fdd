"""
Pointsman HTTP endpoints.

- OrderCreateWebhookView: orders/create webhook -> AccrualService
- RedeemPointsView: storefront redemption request -> RedemptionService
- PointsBalanceView: storefront balance lookup -> LedgerService
"""

from __future__ import annotations

import json
import logging

from django.http import JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from pointsman.adapters import get_commerce_backend
from pointsman.conf import pointsman_settings
from pointsman.exceptions import HTTP_STATUS, PointsmanError
from pointsman.gates import GateError, Gates
from pointsman.services.accrual import AccrualService
from pointsman.services.ledger import LedgerService
from pointsman.services.redemption import RedemptionService

logger = logging.getLogger("pointsman.views")


def _parse_json(body: bytes) -> dict | None:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _verify_app_proxy(request) -> JsonResponse | None:
    try:
        Gates.app_proxy_signature(dict(request.GET.lists()), pointsman_settings.SHOPIFY_API_SECRET)
    except GateError as exc:
        logger.warning("App proxy request: G2 failed - %s", exc.message)
        return JsonResponse({"error": exc.message}, status=401)
    return None


@method_decorator(csrf_exempt, name="dispatch")
class OrderCreateWebhookView(View):
    """
    POST endpoint for Shopify orders/create webhooks.

    Flow:
        1. Validates HMAC signature (G1)
        2. Short-circuits already handled deliveries (G3)
        3. Calls AccrualService.handle_order()
        4. Records the delivery and returns 200

    Settings:
        POINTSMAN["SHOPIFY_WEBHOOK_SECRET"] - HMAC secret for signature validation.
    """

    topic = "orders/create"

    def post(self, request):
        body = request.body

        # G1: Authenticity
        signature = request.headers.get("X-Shopify-Hmac-Sha256", "")
        try:
            Gates.webhook_authenticity(body, signature, pointsman_settings.SHOPIFY_WEBHOOK_SECRET)
        except GateError as exc:
            logger.warning("Order webhook: G1 failed - %s", exc.message)
            return JsonResponse({"error": exc.message}, status=401)

        shop = request.headers.get("X-Shopify-Shop-Domain", "").strip()
        if not shop:
            return JsonResponse({"error": "Missing shop domain"}, status=400)

        # G3: Replay protection
        webhook_id = request.headers.get("X-Shopify-Webhook-Id", "").strip()
        if webhook_id and Gates.is_replay(webhook_id):
            logger.debug("Order webhook: duplicate delivery %s", webhook_id)
            return JsonResponse({"status": "duplicate"}, status=200)

        data = _parse_json(body)
        if data is None:
            return JsonResponse({"error": "Invalid JSON"}, status=400)

        try:
            backend = get_commerce_backend(shop)
            result = AccrualService.handle_order(shop, data, backend)
        except PointsmanError as exc:
            if exc.code == "INVALID_INPUT":
                return JsonResponse({"error": exc.message}, status=400)
            logger.error("Order webhook: accrual failed for %s - %s", shop, exc.as_dict())
            return JsonResponse({"error": "Internal error"}, status=500)
        except Exception:
            logger.exception("Order webhook: accrual failed for %s", shop)
            return JsonResponse({"error": "Internal error"}, status=500)

        if webhook_id:
            Gates.check_replay_protection(webhook_id, provider="shopify", topic=self.topic)

        return JsonResponse(
            {
                "status": result.outcome,
                "orderId": result.order_id,
                "points": result.points,
            }
        )


@method_decorator(csrf_exempt, name="dispatch")
class RedeemPointsView(View):
    """
    POST endpoint for storefront redemptions (behind the app proxy).

    Expects:
        - ``shop`` query parameter (added by the app proxy)
        - JSON body: {"customerId": "...", "points": 150, "requestId": "..."}
          requestId may also come as an Idempotency-Key header.

    Returns:
        200 {"discountCode": "..."}
        400/409/500 {"error": "..."}
    """

    def post(self, request):
        denied = _verify_app_proxy(request)
        if denied:
            return denied

        shop = request.GET.get("shop", "").strip()
        if not shop:
            return JsonResponse({"error": "Missing shop"}, status=400)

        data = _parse_json(request.body)
        if data is None:
            return JsonResponse({"error": "Invalid JSON"}, status=400)

        request_id = data.get("requestId") or request.headers.get("Idempotency-Key")

        try:
            backend = get_commerce_backend(shop)
            result = RedemptionService.redeem(
                shop,
                data.get("customerId"),
                data.get("points"),
                backend,
                request_id=request_id,
            )
        except PointsmanError as exc:
            status = HTTP_STATUS.get(exc.code, 500)
            body = {"error": exc.message}
            if exc.code == "SETTLEMENT_FAILED":
                body["requestId"] = exc.data.get("request_id")
            if status >= 500:
                logger.error("Redemption failed for %s - %s", shop, exc.as_dict())
            return JsonResponse(body, status=status)
        except Exception:
            logger.exception("Redemption failed for %s", shop)
            return JsonResponse({"error": "Internal error"}, status=500)

        return JsonResponse({"discountCode": result.code})


class PointsBalanceView(View):
    """
    GET endpoint for a customer's balance.

    Missing customerId or unknown customers read as 0 points.
    """

    def get(self, request):
        denied = _verify_app_proxy(request)
        if denied:
            return denied

        customer_id = request.GET.get("customerId", "").strip()
        if not customer_id:
            return JsonResponse({"points": 0})

        return JsonResponse({"points": LedgerService.get_balance(customer_id) or 0})
