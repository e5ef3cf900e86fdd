"""
Points ledger - the single writer of balances and the transaction log.

Every mutation updates VipCustomer.reward_points and appends a
RewardTransaction inside one transaction.atomic() block, so the balance
always equals the signed sum of the log.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass

from django.db import IntegrityError, transaction
from django.db.models import F, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from pointsman.conf import pointsman_settings
from pointsman.exceptions import PointsmanError
from pointsman.models import RewardTransaction, VipCustomer
from pointsman.observability import OperationLog
from pointsman.signals import points_credited, points_debited

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reconciliation:
    """Balance versus transaction log for one customer."""

    customer_id: str
    balance: int
    earned: int
    redeemed: int

    @property
    def expected_balance(self) -> int:
        return self.earned - self.redeemed

    @property
    def is_consistent(self) -> bool:
        return self.balance == self.expected_balance


def _require_id(value, field_name: str) -> str:
    value = str(value).strip() if value is not None else ""
    if not value:
        raise PointsmanError("INVALID_INPUT", message=f"{field_name} is required", field=field_name)
    return value


def _require_points(points, allow_zero: bool) -> int:
    if isinstance(points, bool) or not isinstance(points, int):
        raise PointsmanError("INVALID_INPUT", message="Points must be an integer", points=points)
    if points < 0 or (points == 0 and not allow_zero):
        raise PointsmanError(
            "INVALID_INPUT",
            message="Points must be positive" if not allow_zero else "Points must not be negative",
            points=points,
        )
    return points


class LedgerService:
    """
    Service for balance mutations and queries.

    Uses @classmethod for extensibility (consistent with the other services).
    No other component writes VipCustomer or RewardTransaction.
    """

    events = OperationLog(logger, sender="ledger")

    # ======================================================================
    # Mutations
    # ======================================================================

    @classmethod
    def credit(
        cls,
        customer_id: str,
        shop: str,
        order_id: str,
        points: int,
    ) -> RewardTransaction | None:
        """
        Credit points for an order, creating the customer on first credit.

        At most one credit is recorded per (customer, order_id); a repeated
        call is a no-op.

        Args:
            customer_id: External customer ID
            shop: Shop domain (used when the customer is created)
            order_id: External order ID (idempotency key)
            points: Points to credit (non-negative)

        Returns:
            Created RewardTransaction, or None if the order was already credited

        Raises:
            PointsmanError: INVALID_INPUT on bad arguments
        """
        customer_id = _require_id(customer_id, "customer_id")
        order_id = _require_id(order_id, "order_id")
        _require_points(points, allow_zero=True)

        try:
            with transaction.atomic():
                customer, created = VipCustomer.objects.select_for_update().get_or_create(
                    customer_id=customer_id,
                    defaults={"shop": shop, "reward_points": points},
                )

                if not created:
                    if cls._order_credited(customer_id, order_id):
                        cls.events.record("credit", customer_id, "duplicate", order_id=order_id)
                        return None
                    VipCustomer.objects.filter(pk=customer.pk).update(
                        reward_points=F("reward_points") + points,
                        updated_at=timezone.now(),
                    )
                    customer.refresh_from_db(fields=["reward_points", "updated_at"])

                tx = RewardTransaction.objects.create(
                    customer=customer,
                    order_id=order_id,
                    points_earned=points,
                )
        except IntegrityError:
            # Concurrent delivery of the same order won the unique constraint
            if cls._order_credited(customer_id, order_id):
                cls.events.record("credit", customer_id, "duplicate", order_id=order_id)
                return None
            raise

        cls.events.record(
            "credit",
            customer_id,
            "credited",
            order_id=order_id,
            points=points,
            balance=customer.reward_points,
        )
        points_credited.send(sender=VipCustomer, customer=customer, transaction=tx)
        return tx

    @classmethod
    def debit(
        cls,
        customer_id: str,
        points: int,
        reference: str = "",
    ) -> RewardTransaction:
        """
        Debit points from a customer balance.

        The balance check and the decrement are a single conditional
        UPDATE, so two concurrent debits can never both pass the check.

        Args:
            customer_id: External customer ID
            points: Points to debit (positive; a zero-point debit would only
                add an empty row to the log, so it is rejected as INVALID_INPUT)
            reference: Redemption request ID; a second debit with the same
                reference returns the first transaction instead of debiting

        Returns:
            RewardTransaction for the debit

        Raises:
            PointsmanError: INVALID_INPUT on bad arguments,
                INSUFFICIENT_BALANCE if the customer does not exist or the
                balance is lower than points
        """
        customer_id = _require_id(customer_id, "customer_id")
        _require_points(points, allow_zero=False)

        existing = cls._reference_debit(customer_id, reference)
        if existing is not None:
            cls.events.record("debit", customer_id, "duplicate", reference=reference)
            return existing

        try:
            with transaction.atomic():
                updated = VipCustomer.objects.filter(
                    customer_id=customer_id,
                    reward_points__gte=points,
                ).update(
                    reward_points=F("reward_points") - points,
                    updated_at=timezone.now(),
                )

                if not updated:
                    available = cls.get_balance(customer_id)
                    cls.events.record(
                        "debit",
                        customer_id,
                        "insufficient_balance",
                        available=available,
                        requested=points,
                    )
                    raise PointsmanError(
                        "INSUFFICIENT_BALANCE",
                        customer_id=customer_id,
                        available=available or 0,
                        requested=points,
                    )

                tx = RewardTransaction.objects.create(
                    customer_id=customer_id,
                    order_id=pointsman_settings.REDEMPTION_ORDER_ID,
                    points_redeemed=points,
                    reference=reference,
                )
        except IntegrityError:
            existing = cls._reference_debit(customer_id, reference)
            if existing is not None:
                cls.events.record("debit", customer_id, "duplicate", reference=reference)
                return existing
            raise

        customer = VipCustomer.objects.get(customer_id=customer_id)
        cls.events.record(
            "debit",
            customer_id,
            "debited",
            points=points,
            reference=reference,
            balance=customer.reward_points,
        )
        points_debited.send(sender=VipCustomer, customer=customer, transaction=tx)
        return tx

    # ======================================================================
    # Queries
    # ======================================================================

    @classmethod
    def get_customer(cls, customer_id: str) -> VipCustomer | None:
        """Get VIP customer by external ID."""
        try:
            return VipCustomer.objects.get(customer_id=customer_id)
        except VipCustomer.DoesNotExist:
            return None

    @classmethod
    def get_balance(cls, customer_id: str) -> int | None:
        """Get current balance. Returns None if the customer does not exist."""
        return (
            VipCustomer.objects.filter(customer_id=customer_id)
            .values_list("reward_points", flat=True)
            .first()
        )

    @classmethod
    def get_transactions(cls, customer_id: str, limit: int = 50) -> list[RewardTransaction]:
        """Get transaction history for a customer, most recent first."""
        return list(RewardTransaction.objects.filter(customer_id=customer_id)[:limit])

    @classmethod
    def reconcile(cls, customer_id: str) -> Reconciliation | None:
        """Compare a customer's balance with the sum of their transactions."""
        customer = cls.get_customer(customer_id)
        if customer is None:
            return None

        totals = RewardTransaction.objects.filter(customer_id=customer_id).aggregate(
            earned=Coalesce(Sum("points_earned"), Value(0)),
            redeemed=Coalesce(Sum("points_redeemed"), Value(0)),
        )
        return Reconciliation(
            customer_id=customer_id,
            balance=customer.reward_points,
            earned=totals["earned"],
            redeemed=totals["redeemed"],
        )

    @classmethod
    def audit(cls, shop: str | None = None) -> Iterator[Reconciliation]:
        """Yield reconciliations for customers whose balance does not match the log."""
        customers = VipCustomer.objects.all()
        if shop:
            customers = customers.filter(shop=shop)

        customers = customers.annotate(
            earned=Coalesce(Sum("transactions__points_earned"), Value(0)),
            redeemed=Coalesce(Sum("transactions__points_redeemed"), Value(0)),
        ).order_by("customer_id")

        for row in customers.iterator():
            rec = Reconciliation(
                customer_id=row.customer_id,
                balance=row.reward_points,
                earned=row.earned,
                redeemed=row.redeemed,
            )
            if not rec.is_consistent:
                yield rec

    # ======================================================================
    # Internals
    # ======================================================================

    @classmethod
    def _order_credited(cls, customer_id: str, order_id: str) -> bool:
        return RewardTransaction.objects.filter(
            customer_id=customer_id,
            order_id=order_id,
            points_earned__isnull=False,
        ).exists()

    @classmethod
    def _reference_debit(cls, customer_id: str, reference: str) -> RewardTransaction | None:
        if not reference:
            return None
        return RewardTransaction.objects.filter(
            customer_id=customer_id,
            reference=reference,
            points_redeemed__isnull=False,
        ).first()
