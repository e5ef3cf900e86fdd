"""Redemption model - one discount-code redemption intent."""

from django.db import models
from django.utils.translation import gettext_lazy as _


class RedemptionStatus(models.TextChoices):
    PENDING = "pending", _("Pending")
    ISSUED = "issued", _("Issued, not settled")
    SETTLED = "settled", _("Settled")
    ISSUANCE_FAILED = "issuance_failed", _("Issuance failed")
    SETTLEMENT_FAILED = "settlement_failed", _("Settlement failed")


IN_FLIGHT_STATUSES = (RedemptionStatus.PENDING, RedemptionStatus.ISSUED)


class Redemption(models.Model):
    """
    Tracks a redemption request through validate -> issue -> settle.

    Keyed by (customer_id, request_id) so a retried request resumes
    instead of issuing a second code. At most one redemption per customer
    can be in flight (pending or issued) at a time.

    Rows in SETTLEMENT_FAILED hold a live discount code whose points were
    never debited; they need manual reconciliation.
    """

    customer_id = models.CharField(_("customer ID"), max_length=64, db_index=True)
    shop = models.CharField(_("shop"), max_length=255)
    request_id = models.CharField(_("request ID"), max_length=100)
    points = models.PositiveIntegerField(_("points"))
    code = models.CharField(_("discount code"), max_length=255)
    status = models.CharField(
        _("status"),
        max_length=20,
        choices=RedemptionStatus.choices,
        default=RedemptionStatus.PENDING,
    )
    eligible_variant_count = models.PositiveIntegerField(_("eligible variants"), null=True, blank=True)
    error = models.TextField(_("error"), blank=True)

    created_at = models.DateTimeField(_("created at"), auto_now_add=True)
    updated_at = models.DateTimeField(_("updated at"), auto_now=True)

    class Meta:
        db_table = "pointsman_redemption"
        verbose_name = _("redemption")
        verbose_name_plural = _("redemptions")
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["customer_id", "request_id"],
                name="pointsman_redemption_unique_request",
            ),
            models.UniqueConstraint(
                fields=["customer_id"],
                condition=models.Q(status__in=list(IN_FLIGHT_STATUSES)),
                name="pointsman_redemption_one_in_flight",
            ),
        ]

    def __str__(self):
        return f"{self.code} ({self.points}pts, {self.status})"

    @property
    def is_in_flight(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES
