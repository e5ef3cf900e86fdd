"""RewardTransaction model - append-only points log."""

from django.db import models
from django.utils.translation import gettext_lazy as _


class RewardTransaction(models.Model):
    """
    Immutable record of a points credit or debit.

    Exactly one of points_earned / points_redeemed is set per row.
    Rows are append-only: never modified or deleted.
    """

    customer = models.ForeignKey(
        "pointsman.VipCustomer",
        on_delete=models.PROTECT,
        to_field="customer_id",
        db_column="customer_id",
        related_name="transactions",
        verbose_name=_("customer"),
    )
    order_id = models.CharField(
        _("order ID"),
        max_length=64,
        help_text=_("External order ID, or the redemption sentinel"),
    )
    points_earned = models.PositiveIntegerField(_("points earned"), null=True, blank=True)
    points_redeemed = models.PositiveIntegerField(_("points redeemed"), null=True, blank=True)
    reference = models.CharField(
        _("reference"),
        max_length=100,
        blank=True,
        help_text=_("Redemption request ID for debits"),
    )

    created_at = models.DateTimeField(_("created at"), auto_now_add=True, db_index=True)

    class Meta:
        db_table = "pointsman_reward_transaction"
        verbose_name = _("reward transaction")
        verbose_name_plural = _("reward transactions")
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["customer", "-created_at"], name="pointsman_r_custome_8a2d4b_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(points_earned__isnull=False, points_redeemed__isnull=True)
                    | models.Q(points_earned__isnull=True, points_redeemed__isnull=False)
                ),
                name="pointsman_reward_transaction_earned_xor_redeemed",
            ),
            # At-most-once crediting per order
            models.UniqueConstraint(
                fields=["customer", "order_id"],
                condition=models.Q(points_earned__isnull=False),
                name="pointsman_reward_transaction_unique_order_credit",
            ),
            # At-most-once debit per redemption request
            models.UniqueConstraint(
                fields=["customer", "reference"],
                condition=models.Q(points_redeemed__isnull=False) & ~models.Q(reference=""),
                name="pointsman_reward_transaction_unique_redemption_debit",
            ),
        ]

    def __str__(self):
        if self.points_earned is not None:
            return f"+{self.points_earned}pts ({self.order_id})"
        return f"-{self.points_redeemed}pts ({self.order_id})"

    @property
    def signed_points(self) -> int:
        return (self.points_earned or 0) - (self.points_redeemed or 0)
