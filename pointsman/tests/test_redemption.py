"""
Tests for RedemptionService.

Covers:
- Happy path: code issued for eligible variants, points debited
- Insufficient balance: nothing issued, nothing debited
- Issuance failures leave the balance intact and are retryable
- Settlement failures are recorded and resumable
- Request idempotency and the one-in-flight-per-customer rule
"""

from datetime import timedelta
from decimal import Decimal
from unittest import mock

import pytest
from django.utils import timezone

from pointsman.exceptions import PointsmanError
from pointsman.models import Redemption, RedemptionStatus, RewardTransaction
from pointsman.protocols.commerce import ExclusionConfig
from pointsman.services.ledger import LedgerService
from pointsman.services.redemption import RedemptionService, derive_discount_code, parse_points
from pointsman.signals import redemption_settled, settlement_failed
from pointsman.tests.conftest import SHOP, VIP_ID

pytestmark = pytest.mark.django_db


def _redeemed_total(customer_id):
    return sum(
        RewardTransaction.objects.filter(customer_id=customer_id, points_redeemed__isnull=False).values_list(
            "points_redeemed", flat=True
        )
    )


# ═══════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════


class TestHelpers:
    """derive_discount_code() / parse_points()"""

    def test_code_is_deterministic(self):
        assert derive_discount_code("1001", "r-1") == derive_discount_code("1001", "r-1")
        assert derive_discount_code("1001", "r-1") != derive_discount_code("1001", "r-2")
        assert derive_discount_code("1001", "r-1") != derive_discount_code("1002", "r-1")

    def test_code_format(self):
        code = derive_discount_code("1001", "r-1")

        prefix, customer_id, digest = code.split("-")
        assert prefix == "VIP"
        assert customer_id == "1001"
        assert len(digest) == 12
        assert digest == digest.upper()

    def test_code_prefix_from_settings(self, settings):
        settings.POINTSMAN = {"DISCOUNT_CODE_PREFIX": "GOLD"}

        assert derive_discount_code("1001", "r-1").startswith("GOLD-1001-")

    @pytest.mark.parametrize("value,expected", [(150, 150), ("150", 150), (" 7 ", 7)])
    def test_parse_points_valid(self, value, expected):
        assert parse_points(value) == expected

    @pytest.mark.parametrize("value", [0, -1, "0", "-3", "1.5", 1.5, "abc", "²", None, True, [], ""])
    def test_parse_points_invalid(self, value):
        with pytest.raises(PointsmanError, match="INVALID_INPUT"):
            parse_points(value)


# ═══════════════════════════════════════════════════════════════════
# Happy path
# ═══════════════════════════════════════════════════════════════════


class TestRedeem:
    """RedemptionService.redeem()"""

    def test_successful_redemption(self, vip_customer, backend):
        """Balance 200, redeem 150 -> code issued, balance 50."""
        result = RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        assert result.code == derive_discount_code(VIP_ID, "r-1")
        assert result.points == 150
        assert result.eligible_variant_count == 2
        assert not result.replayed
        assert LedgerService.get_balance(VIP_ID) == 50

        request = backend.requests[0]
        assert request.code == result.code
        assert request.amount == Decimal("150")
        assert request.customer_id == VIP_ID
        assert request.variant_ids == ("V1", "V3")
        assert request.usage_limit == 1

        redemption = Redemption.objects.get(request_id="r-1")
        assert redemption.status == RedemptionStatus.SETTLED
        assert redemption.code == result.code

        tx = RewardTransaction.objects.get(points_redeemed__isnull=False)
        assert tx.order_id == "REDEEM"
        assert tx.points_redeemed == 150
        assert tx.reference == "r-1"

    def test_point_value_scales_amount(self, vip_customer, backend, settings):
        settings.POINTSMAN = {"POINT_VALUE": "0.01"}

        RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        assert backend.requests[0].amount == Decimal("1.50")

    def test_redeem_whole_balance(self, vip_customer, backend):
        RedemptionService.redeem(SHOP, VIP_ID, 200, backend)

        assert LedgerService.get_balance(VIP_ID) == 0

    def test_string_points_accepted(self, vip_customer, backend):
        result = RedemptionService.redeem(SHOP, VIP_ID, "150", backend)

        assert result.points == 150

    def test_request_id_generated_when_missing(self, vip_customer, backend):
        first = RedemptionService.redeem(SHOP, VIP_ID, 50, backend)
        second = RedemptionService.redeem(SHOP, VIP_ID, 50, backend)

        assert first.request_id != second.request_id
        assert first.code != second.code
        assert LedgerService.get_balance(VIP_ID) == 100

    def test_settled_signal(self, vip_customer, backend):
        received = []

        def handler(sender, redemption, **kwargs):
            received.append(redemption.request_id)

        redemption_settled.connect(handler)
        try:
            RedemptionService.redeem(SHOP, VIP_ID, 50, backend, request_id="r-1")
        finally:
            redemption_settled.disconnect(handler)

        assert received == ["r-1"]

    def test_empty_eligible_set_still_issues(self, vip_customer, backend):
        backend.config = ExclusionConfig(excluded_variant_ids=frozenset({"V1", "V2", "V3"}))

        result = RedemptionService.redeem(SHOP, VIP_ID, 50, backend)

        assert result.eligible_variant_count == 0
        assert backend.requests[0].variant_ids == ()


# ═══════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════


class TestValidation:
    def test_insufficient_balance(self, backend):
        """Balance 50, redeem 150 -> nothing issued or debited."""
        LedgerService.credit(VIP_ID, SHOP, "O1", 50)

        with pytest.raises(PointsmanError) as exc_info:
            RedemptionService.redeem(SHOP, VIP_ID, 150, backend)

        assert exc_info.value.code == "INSUFFICIENT_BALANCE"
        assert backend.requests == []
        assert LedgerService.get_balance(VIP_ID) == 50
        assert not Redemption.objects.exists()

    def test_unknown_customer(self, backend):
        with pytest.raises(PointsmanError, match="INSUFFICIENT_BALANCE"):
            RedemptionService.redeem(SHOP, "nobody", 1, backend)
        assert backend.requests == []

    @pytest.mark.parametrize("customer_id", [None, "", "   "])
    def test_missing_customer_id(self, backend, customer_id):
        with pytest.raises(PointsmanError, match="INVALID_INPUT"):
            RedemptionService.redeem(SHOP, customer_id, 10, backend)

    @pytest.mark.parametrize("points", [0, -10, "abc", None])
    def test_invalid_points(self, vip_customer, backend, points):
        with pytest.raises(PointsmanError, match="INVALID_INPUT"):
            RedemptionService.redeem(SHOP, VIP_ID, points, backend)
        assert backend.requests == []
        assert LedgerService.get_balance(VIP_ID) == 200


# ═══════════════════════════════════════════════════════════════════
# Issuance failures
# ═══════════════════════════════════════════════════════════════════


class TestIssuanceFailure:
    def test_user_errors(self, vip_customer, backend):
        backend.user_errors = ("Code must be unique",)

        with pytest.raises(PointsmanError) as exc_info:
            RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        assert exc_info.value.code == "ISSUANCE_FAILED"
        assert "Code must be unique" in exc_info.value.message
        assert LedgerService.get_balance(VIP_ID) == 200
        assert Redemption.objects.get(request_id="r-1").status == RedemptionStatus.ISSUANCE_FAILED

    def test_transport_error(self, vip_customer, backend):
        backend.issue_error = PointsmanError("UPSTREAM_UNAVAILABLE")

        with pytest.raises(PointsmanError) as exc_info:
            RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        assert exc_info.value.code == "ISSUANCE_FAILED"
        assert LedgerService.get_balance(VIP_ID) == 200
        assert _redeemed_total(VIP_ID) == 0

    def test_retry_after_failure_reuses_code(self, vip_customer, backend):
        backend.issue_error = ConnectionError("timeout")
        with pytest.raises(PointsmanError, match="ISSUANCE_FAILED"):
            RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        backend.issue_error = None
        result = RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        assert [r.code for r in backend.requests] == [result.code, result.code]
        assert backend.codes == [result.code]
        assert LedgerService.get_balance(VIP_ID) == 50
        assert Redemption.objects.filter(customer_id=VIP_ID).count() == 1

    def test_failed_issuance_frees_the_customer(self, vip_customer, backend):
        backend.user_errors = ("boom",)
        with pytest.raises(PointsmanError):
            RedemptionService.redeem(SHOP, VIP_ID, 50, backend, request_id="r-1")

        backend.user_errors = ()
        result = RedemptionService.redeem(SHOP, VIP_ID, 50, backend, request_id="r-2")

        assert result.request_id == "r-2"
        assert LedgerService.get_balance(VIP_ID) == 150

    def test_scope_failure(self, vip_customer, backend):
        backend.config_error = PointsmanError("INVALID_CONFIG")

        with pytest.raises(PointsmanError, match="INVALID_CONFIG"):
            RedemptionService.redeem(SHOP, VIP_ID, 50, backend, request_id="r-1")

        assert backend.requests == []
        assert LedgerService.get_balance(VIP_ID) == 200
        assert Redemption.objects.get(request_id="r-1").status == RedemptionStatus.ISSUANCE_FAILED

    def test_insufficient_on_retry(self, vip_customer, backend):
        """A failed request re-validates the balance when retried."""
        backend.user_errors = ("boom",)
        with pytest.raises(PointsmanError):
            RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")
        backend.user_errors = ()
        RedemptionService.redeem(SHOP, VIP_ID, 100, backend, request_id="r-2")

        with pytest.raises(PointsmanError, match="INSUFFICIENT_BALANCE"):
            RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")
        assert LedgerService.get_balance(VIP_ID) == 100


# ═══════════════════════════════════════════════════════════════════
# Settlement failures
# ═══════════════════════════════════════════════════════════════════


class TestSettlementFailure:
    def test_debit_failure_is_reported(self, vip_customer, backend):
        with mock.patch.object(LedgerService, "debit", side_effect=RuntimeError("db down")):
            with pytest.raises(PointsmanError) as exc_info:
                RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        error = exc_info.value
        assert error.code == "SETTLEMENT_FAILED"
        assert error.data["code"] == derive_discount_code(VIP_ID, "r-1")
        assert error.data["request_id"] == "r-1"
        assert error.data["points"] == 150

        redemption = Redemption.objects.get(request_id="r-1")
        assert redemption.status == RedemptionStatus.SETTLEMENT_FAILED
        assert "db down" in redemption.error
        assert LedgerService.get_balance(VIP_ID) == 200

    def test_settlement_failed_signal_and_log(self, vip_customer, backend, caplog):
        caplog.set_level("ERROR", logger="pointsman.services.redemption")
        received = []

        def handler(sender, redemption, error, **kwargs):
            received.append((redemption.request_id, str(error)))

        settlement_failed.connect(handler)
        try:
            with mock.patch.object(LedgerService, "debit", side_effect=RuntimeError("db down")):
                with pytest.raises(PointsmanError):
                    RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")
        finally:
            settlement_failed.disconnect(handler)

        assert received == [("r-1", "db down")]
        record = next(r for r in caplog.records if getattr(r, "outcome", None) == "settlement_failed")
        assert record.customer_id == VIP_ID
        assert record.event_data["code"] == derive_discount_code(VIP_ID, "r-1")

    def test_retry_settles_without_reissuing(self, vip_customer, backend):
        with mock.patch.object(LedgerService, "debit", side_effect=RuntimeError("db down")):
            with pytest.raises(PointsmanError):
                RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        result = RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        assert len(backend.requests) == 1
        assert result.code == derive_discount_code(VIP_ID, "r-1")
        assert LedgerService.get_balance(VIP_ID) == 50
        assert Redemption.objects.get(request_id="r-1").status == RedemptionStatus.SETTLED

    def test_resume_from_issued(self, vip_customer, backend):
        """A request interrupted after issuance only needs the debit."""
        Redemption.objects.create(
            customer_id=VIP_ID,
            shop=SHOP,
            request_id="r-1",
            points=150,
            code=derive_discount_code(VIP_ID, "r-1"),
            status=RedemptionStatus.ISSUED,
        )

        result = RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        assert backend.requests == []
        assert result.code == derive_discount_code(VIP_ID, "r-1")
        assert LedgerService.get_balance(VIP_ID) == 50

    def test_concurrent_spend_during_issuance(self, vip_customer, backend):
        """Balance spent elsewhere while the code was being issued."""

        def spend_elsewhere(request):
            LedgerService.debit(VIP_ID, 150, reference="other")

        backend.on_issue = spend_elsewhere

        with pytest.raises(PointsmanError) as exc_info:
            RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        assert exc_info.value.code == "SETTLEMENT_FAILED"
        assert LedgerService.get_balance(VIP_ID) == 50
        assert _redeemed_total(VIP_ID) == 150
        assert LedgerService.reconcile(VIP_ID).is_consistent


# ═══════════════════════════════════════════════════════════════════
# Idempotency and concurrency
# ═══════════════════════════════════════════════════════════════════


class TestIdempotency:
    def test_replay_of_settled_request(self, vip_customer, backend):
        first = RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")
        second = RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        assert second.code == first.code
        assert second.replayed
        assert len(backend.requests) == 1
        assert LedgerService.get_balance(VIP_ID) == 50

    def test_request_id_reused_with_different_points(self, vip_customer, backend):
        RedemptionService.redeem(SHOP, VIP_ID, 50, backend, request_id="r-1")

        with pytest.raises(PointsmanError, match="INVALID_INPUT"):
            RedemptionService.redeem(SHOP, VIP_ID, 60, backend, request_id="r-1")
        assert LedgerService.get_balance(VIP_ID) == 150

    def test_pending_request_reports_in_progress(self, vip_customer, backend):
        Redemption.objects.create(
            customer_id=VIP_ID,
            shop=SHOP,
            request_id="r-1",
            points=150,
            code=derive_discount_code(VIP_ID, "r-1"),
        )

        with pytest.raises(PointsmanError, match="REDEMPTION_IN_PROGRESS"):
            RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

    def test_second_request_while_in_flight(self, vip_customer, backend):
        """Only one redemption per customer may be between claim and settle."""
        Redemption.objects.create(
            customer_id=VIP_ID,
            shop=SHOP,
            request_id="r-1",
            points=150,
            code=derive_discount_code(VIP_ID, "r-1"),
        )

        with pytest.raises(PointsmanError) as exc_info:
            RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-2")

        assert exc_info.value.code == "REDEMPTION_IN_PROGRESS"
        assert backend.requests == []
        assert LedgerService.get_balance(VIP_ID) == 200

    def test_nested_redemption_during_issuance_is_rejected(self, vip_customer, backend):
        """A second redemption started while the first is issuing gets 409."""
        nested_errors = []

        def redeem_again(request):
            try:
                RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-2")
            except PointsmanError as exc:
                nested_errors.append(exc.code)

        backend.on_issue = redeem_again

        result = RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        assert nested_errors == ["REDEMPTION_IN_PROGRESS"]
        assert result.request_id == "r-1"
        assert len(backend.codes) == 1
        assert LedgerService.get_balance(VIP_ID) == 50

    def test_sequential_requests_exceeding_balance(self, vip_customer, backend):
        RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        with pytest.raises(PointsmanError, match="INSUFFICIENT_BALANCE"):
            RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-2")

        assert len(backend.codes) == 1
        assert LedgerService.get_balance(VIP_ID) == 50


# ═══════════════════════════════════════════════════════════════════
# Expired pending claims
# ═══════════════════════════════════════════════════════════════════


class TestPendingLease:
    """A pending redemption whose worker died is resumable after the lease."""

    @pytest.fixture
    def abandoned(self, vip_customer):
        """Pending claim for r-1 last touched ten minutes ago."""
        redemption = Redemption.objects.create(
            customer_id=VIP_ID,
            shop=SHOP,
            request_id="r-1",
            points=150,
            code=derive_discount_code(VIP_ID, "r-1"),
        )
        Redemption.objects.filter(pk=redemption.pk).update(updated_at=timezone.now() - timedelta(minutes=10))
        return redemption

    def test_retry_resumes_at_issue(self, abandoned, backend):
        result = RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        assert result.code == derive_discount_code(VIP_ID, "r-1")
        assert len(backend.requests) == 1
        assert backend.codes == [result.code]
        assert LedgerService.get_balance(VIP_ID) == 50
        assert Redemption.objects.get(request_id="r-1").status == RedemptionStatus.SETTLED

    def test_within_lease_is_in_progress(self, abandoned, backend, settings):
        settings.POINTSMAN = {"PENDING_LEASE_SECONDS": 3600}

        with pytest.raises(PointsmanError, match="REDEMPTION_IN_PROGRESS"):
            RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")
        assert backend.requests == []

    def test_is_stale(self, abandoned):
        assert RedemptionService.is_stale(abandoned) is False  # in-memory copy is fresh
        abandoned.refresh_from_db()
        assert RedemptionService.is_stale(abandoned)
        assert list(RedemptionService.stale_pending()) == [abandoned]
        assert list(RedemptionService.stale_pending(shop="other.myshopify.com")) == []

    def test_insufficient_balance_releases_slot(self, abandoned, backend):
        """Points spent while the claim was abandoned: the slot is freed for new requests."""
        LedgerService.debit(VIP_ID, 100, reference="other")

        with pytest.raises(PointsmanError, match="INSUFFICIENT_BALANCE"):
            RedemptionService.redeem(SHOP, VIP_ID, 150, backend, request_id="r-1")

        assert Redemption.objects.get(request_id="r-1").status == RedemptionStatus.ISSUANCE_FAILED

        result = RedemptionService.redeem(SHOP, VIP_ID, 50, backend, request_id="r-2")

        assert result.request_id == "r-2"
        assert LedgerService.get_balance(VIP_ID) == 50
