"""
Redemption - exchanges points for a single-use discount code.

State machine per request (see models.Redemption):
    1. Validate  - points <= balance, else INSUFFICIENT_BALANCE
    2. Scope     - exclusion config + catalog -> eligible variants
    3. Issue     - discount code on the commerce platform (status: issued)
    4. Settle    - LedgerService.debit (status: settled)

The discount code is derived from (customer_id, request_id), so a retry
of the same request asks the platform for the same code and resumes from
the last completed step instead of issuing a second discount. A request
left pending longer than PENDING_LEASE_SECONDS (worker died mid-issue)
is resumed at Issue by its next retry.
"""

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta

from django.db import IntegrityError, models, transaction
from django.utils import timezone

from pointsman.conf import pointsman_settings
from pointsman.exceptions import PointsmanError
from pointsman.models import Redemption, RedemptionStatus
from pointsman.observability import OperationLog
from pointsman.protocols.commerce import CommerceBackend, DiscountRequest
from pointsman.services.eligibility import eligible_variant_ids
from pointsman.services.ledger import LedgerService
from pointsman.signals import redemption_settled, settlement_failed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedemptionResult:
    """A settled redemption."""

    code: str
    customer_id: str
    points: int
    request_id: str
    eligible_variant_count: int | None = None
    replayed: bool = False


def derive_discount_code(customer_id: str, request_id: str) -> str:
    """Deterministic discount code for a redemption request."""
    digest = hashlib.sha256(f"{customer_id}:{request_id}".encode()).hexdigest()[:12].upper()
    return f"{pointsman_settings.DISCOUNT_CODE_PREFIX}-{customer_id}-{digest}"


def parse_points(value) -> int:
    """Parse a requested point amount (int or digit string, positive)."""
    if isinstance(value, bool):
        raise PointsmanError("INVALID_INPUT", message="Points must be an integer", points=value)
    if isinstance(value, str) and value.strip().isdecimal():
        value = int(value.strip())
    if not isinstance(value, int):
        raise PointsmanError("INVALID_INPUT", message="Points must be an integer", points=value)
    if value <= 0:
        raise PointsmanError("INVALID_INPUT", message="Points must be positive", points=value)
    return value


class RedemptionService:
    """
    Service for point redemptions.

    Uses @classmethod for extensibility (consistent with the other services).
    """

    events = OperationLog(logger, sender="redemption")

    @classmethod
    def redeem(
        cls,
        shop: str,
        customer_id: str,
        points,
        backend: CommerceBackend,
        request_id: str | None = None,
    ) -> RedemptionResult:
        """
        Redeem points for a discount code.

        Args:
            shop: Shop domain
            customer_id: External customer ID
            points: Points to redeem (1 point = POINT_VALUE currency units off)
            backend: Commerce backend for the shop
            request_id: Caller-supplied idempotency key; a random one is
                generated when omitted (retries are then not deduplicated)

        Returns:
            RedemptionResult with the discount code

        Raises:
            PointsmanError:
                INVALID_INPUT - bad customer ID or points
                INSUFFICIENT_BALANCE - not enough points (nothing happened)
                REDEMPTION_IN_PROGRESS - another redemption is in flight, or
                    this one is pending and still within its lease
                ISSUANCE_FAILED - no code issued, nothing debited (retryable)
                SETTLEMENT_FAILED - code issued, points not debited
                UPSTREAM_UNAVAILABLE / INVALID_CONFIG - scoping failed
        """
        customer_id = str(customer_id or "").strip()
        if not customer_id:
            raise PointsmanError("INVALID_INPUT", message="customerId is required", field="customerId")
        points = parse_points(points)
        request_id = str(request_id).strip() if request_id else uuid.uuid4().hex

        existing = Redemption.objects.filter(customer_id=customer_id, request_id=request_id).first()
        if existing is not None:
            if existing.points != points:
                raise PointsmanError(
                    "INVALID_INPUT",
                    message="requestId was already used with a different amount",
                    request_id=request_id,
                )
            if existing.status == RedemptionStatus.SETTLED:
                cls.events.record("redeem", customer_id, "replayed", request_id=request_id, code=existing.code)
                return cls._result(existing, replayed=True)
            if existing.status == RedemptionStatus.PENDING and not cls.is_stale(existing):
                raise PointsmanError("REDEMPTION_IN_PROGRESS", customer_id=customer_id, request_id=request_id)
            if existing.status in (RedemptionStatus.ISSUED, RedemptionStatus.SETTLEMENT_FAILED):
                # Code already exists on the platform; only the debit is missing
                return cls._settle(existing)

        # 1. Validate
        try:
            cls._validate(customer_id, points)
        except PointsmanError:
            if existing is not None and existing.status == RedemptionStatus.PENDING:
                cls._release_stale(existing)
            raise

        redemption = cls._claim(existing, shop, customer_id, points, request_id)

        # 2. Scope
        try:
            eligible = cls._scope(backend)
        except Exception as exc:
            cls._mark(redemption, RedemptionStatus.ISSUANCE_FAILED, error=str(exc))
            cls.events.record("redeem", customer_id, "scope_failed", level=logging.WARNING, request_id=request_id)
            raise
        cls._mark(redemption, RedemptionStatus.PENDING, eligible_variant_count=len(eligible))

        # 3. Issue
        cls._issue(redemption, backend, eligible)

        # 4. Settle
        return cls._settle(redemption)

    @classmethod
    def is_stale(cls, redemption: Redemption) -> bool:
        """True if a pending redemption has held its slot past the lease."""
        return redemption.status == RedemptionStatus.PENDING and redemption.updated_at < cls._lease_cutoff()

    @classmethod
    def stale_pending(cls, shop: str | None = None):
        """Pending redemptions whose worker never came back."""
        qs = Redemption.objects.filter(
            status=RedemptionStatus.PENDING,
            updated_at__lt=cls._lease_cutoff(),
        ).order_by("created_at")
        if shop:
            qs = qs.filter(shop=shop)
        return qs

    # ======================================================================
    # Steps
    # ======================================================================

    @classmethod
    def _validate(cls, customer_id: str, points: int) -> None:
        balance = LedgerService.get_balance(customer_id)
        if balance is None or balance < points:
            cls.events.record(
                "redeem",
                customer_id,
                "insufficient_balance",
                available=balance,
                requested=points,
            )
            raise PointsmanError(
                "INSUFFICIENT_BALANCE",
                customer_id=customer_id,
                available=balance or 0,
                requested=points,
            )

    @classmethod
    def _claim(
        cls,
        existing: Redemption | None,
        shop: str,
        customer_id: str,
        points: int,
        request_id: str,
    ) -> Redemption:
        """Take the customer's single in-flight slot for this request."""
        try:
            with transaction.atomic():
                if existing is None:
                    return Redemption.objects.create(
                        customer_id=customer_id,
                        shop=shop,
                        request_id=request_id,
                        points=points,
                        code=derive_discount_code(customer_id, request_id),
                    )
                # Retry after a failed issuance, or of a pending claim whose lease ran out
                resumed = Redemption.objects.filter(
                    models.Q(status=RedemptionStatus.ISSUANCE_FAILED)
                    | models.Q(status=RedemptionStatus.PENDING, updated_at__lt=cls._lease_cutoff()),
                    pk=existing.pk,
                ).update(status=RedemptionStatus.PENDING, error="", updated_at=timezone.now())
        except IntegrityError:
            raise PointsmanError("REDEMPTION_IN_PROGRESS", customer_id=customer_id, request_id=request_id)

        if not resumed:
            raise PointsmanError("REDEMPTION_IN_PROGRESS", customer_id=customer_id, request_id=request_id)
        existing.refresh_from_db()
        return existing

    @classmethod
    def _scope(cls, backend: CommerceBackend) -> list[str]:
        config = backend.get_exclusion_config()
        catalog = backend.get_catalog()
        return eligible_variant_ids(catalog, config.excluded_variant_ids)

    @classmethod
    def _issue(cls, redemption: Redemption, backend: CommerceBackend, eligible: list[str]) -> None:
        request = DiscountRequest(
            code=redemption.code,
            amount=redemption.points * pointsman_settings.POINT_VALUE,
            customer_id=redemption.customer_id,
            variant_ids=tuple(eligible),
            usage_limit=1,
        )
        try:
            result = backend.create_discount_code(request)
        except Exception as exc:
            cls._mark(redemption, RedemptionStatus.ISSUANCE_FAILED, error=str(exc))
            cls.events.record(
                "issue",
                redemption.customer_id,
                "issuance_failed",
                level=logging.WARNING,
                request_id=redemption.request_id,
                error=exc,
            )
            raise PointsmanError(
                "ISSUANCE_FAILED",
                customer_id=redemption.customer_id,
                request_id=redemption.request_id,
            ) from exc

        if not result.ok:
            message = "; ".join(result.user_errors) or "Discount code was not created"
            cls._mark(redemption, RedemptionStatus.ISSUANCE_FAILED, error=message)
            cls.events.record(
                "issue",
                redemption.customer_id,
                "issuance_failed",
                level=logging.WARNING,
                request_id=redemption.request_id,
                error=message,
            )
            raise PointsmanError(
                "ISSUANCE_FAILED",
                message=message,
                customer_id=redemption.customer_id,
                request_id=redemption.request_id,
            )

        cls._mark(redemption, RedemptionStatus.ISSUED, code=result.code)
        cls.events.record(
            "issue",
            redemption.customer_id,
            "issued",
            request_id=redemption.request_id,
            code=result.code,
        )

    @classmethod
    def _settle(cls, redemption: Redemption) -> RedemptionResult:
        try:
            LedgerService.debit(redemption.customer_id, redemption.points, reference=redemption.request_id)
        except Exception as exc:
            cls._mark(redemption, RedemptionStatus.SETTLEMENT_FAILED, error=str(exc))
            cls.events.record(
                "settle",
                redemption.customer_id,
                "settlement_failed",
                level=logging.ERROR,
                shop=redemption.shop,
                points=redemption.points,
                code=redemption.code,
                request_id=redemption.request_id,
                error=exc,
            )
            settlement_failed.send(sender=Redemption, redemption=redemption, error=exc)
            raise PointsmanError(
                "SETTLEMENT_FAILED",
                customer_id=redemption.customer_id,
                points=redemption.points,
                code=redemption.code,
                request_id=redemption.request_id,
            ) from exc

        cls._mark(redemption, RedemptionStatus.SETTLED, error="")
        cls.events.record(
            "settle",
            redemption.customer_id,
            "settled",
            points=redemption.points,
            code=redemption.code,
            request_id=redemption.request_id,
        )
        redemption_settled.send(sender=Redemption, redemption=redemption)
        return cls._result(redemption)

    # ======================================================================
    # Internals
    # ======================================================================

    @classmethod
    def _mark(cls, redemption: Redemption, status: str, **fields) -> None:
        redemption.status = status
        for name, value in fields.items():
            setattr(redemption, name, value)
        redemption.save(update_fields=["status", *fields, "updated_at"])

    @classmethod
    def _release_stale(cls, redemption: Redemption) -> None:
        """Free the in-flight slot of an expired pending claim that can no longer proceed."""
        released = Redemption.objects.filter(
            pk=redemption.pk,
            status=RedemptionStatus.PENDING,
            updated_at__lt=cls._lease_cutoff(),
        ).update(
            status=RedemptionStatus.ISSUANCE_FAILED,
            error="Lease expired and balance no longer covers the redemption",
            updated_at=timezone.now(),
        )
        if released:
            cls.events.record(
                "redeem",
                redemption.customer_id,
                "lease_released",
                level=logging.WARNING,
                request_id=redemption.request_id,
                code=redemption.code,
            )

    @classmethod
    def _lease_cutoff(cls):
        return timezone.now() - timedelta(seconds=pointsman_settings.PENDING_LEASE_SECONDS)

    @classmethod
    def _result(cls, redemption: Redemption, replayed: bool = False) -> RedemptionResult:
        return RedemptionResult(
            code=redemption.code,
            customer_id=redemption.customer_id,
            points=redemption.points,
            request_id=redemption.request_id,
            eligible_variant_count=redemption.eligible_variant_count,
            replayed=replayed,
        )
