"""
Accrual - turns an order-completed event into a ledger credit.

Flow:
    1. Order without a customer -> not applicable
    2. Customer tags lookup on the commerce platform
    3. Customer without the VIP tag -> not applicable
    4. points = floor(subtotal * ACCRUAL_RATE)
    5. LedgerService.credit (no-op for an already credited order)
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, InvalidOperation

from pointsman.conf import pointsman_settings
from pointsman.exceptions import PointsmanError
from pointsman.observability import OperationLog
from pointsman.protocols.commerce import CommerceBackend
from pointsman.services.ledger import LedgerService

logger = logging.getLogger(__name__)

CREDITED = "credited"
DUPLICATE = "duplicate"
NOT_APPLICABLE = "not_applicable"


@dataclass(frozen=True)
class AccrualResult:
    """Outcome of handling one order event."""

    outcome: str
    order_id: str
    customer_id: str | None = None
    points: int = 0
    reason: str = ""

    @property
    def credited(self) -> bool:
        return self.outcome == CREDITED


def parse_amount(value) -> Decimal:
    """Parse a monetary amount; missing, malformed or negative values are zero."""
    if value is None or isinstance(value, bool):
        return Decimal(0)
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return Decimal(0)
    if not amount.is_finite() or amount < 0:
        return Decimal(0)
    return amount


def compute_points(subtotal, rate: Decimal | None = None) -> int:
    """Points earned for a subtotal: floor(subtotal * rate)."""
    if rate is None:
        rate = pointsman_settings.ACCRUAL_RATE
    return int((parse_amount(subtotal) * rate).to_integral_value(rounding=ROUND_FLOOR))


class AccrualService:
    """
    Service for crediting points from orders.

    Uses @classmethod for extensibility (consistent with the other services).
    """

    events = OperationLog(logger, sender="accrual")

    @classmethod
    def handle_order(
        cls,
        shop: str,
        payload: dict,
        backend: CommerceBackend,
    ) -> AccrualResult:
        """
        Handle an order-completed event.

        Args:
            shop: Shop domain the order belongs to
            payload: Order payload with id, customer.id and subtotal_price
            backend: Commerce backend for the customer tag lookup

        Returns:
            AccrualResult (credited, duplicate or not_applicable)

        Raises:
            PointsmanError: INVALID_INPUT if the order has no ID,
                UPSTREAM_UNAVAILABLE if the tag lookup fails
        """
        order_id = payload.get("id")
        if order_id in (None, ""):
            raise PointsmanError("INVALID_INPUT", message="Order payload has no id", field="id")
        order_id = str(order_id)

        customer = payload.get("customer") or {}
        customer_id = customer.get("id")
        if customer_id in (None, ""):
            cls.events.record("accrual", None, NOT_APPLICABLE, order_id=order_id, reason="no_customer")
            return AccrualResult(NOT_APPLICABLE, order_id, reason="no_customer")
        customer_id = str(customer_id)

        tags = backend.get_customer_tags(customer_id)
        if pointsman_settings.VIP_TAG not in tags:
            cls.events.record("accrual", customer_id, NOT_APPLICABLE, order_id=order_id, reason="not_vip")
            return AccrualResult(NOT_APPLICABLE, order_id, customer_id, reason="not_vip")

        points = compute_points(payload.get("subtotal_price"))
        tx = LedgerService.credit(customer_id, shop, order_id, points)
        if tx is None:
            cls.events.record("accrual", customer_id, DUPLICATE, order_id=order_id)
            return AccrualResult(DUPLICATE, order_id, customer_id, reason="already_credited")

        cls.events.record("accrual", customer_id, CREDITED, order_id=order_id, points=points)
        return AccrualResult(CREDITED, order_id, customer_id, points=points)
