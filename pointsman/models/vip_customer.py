"""VipCustomer model - the per-customer points balance."""

from django.db import models
from django.utils.translation import gettext_lazy as _


class VipCustomer(models.Model):
    """
    Points balance of a VIP customer.

    One row per external customer. Written only by LedgerService.
    reward_points always equals the signed sum of the customer's
    RewardTransaction rows (see LedgerService.reconcile).
    """

    customer_id = models.CharField(
        _("customer ID"),
        max_length=64,
        unique=True,
        help_text=_("External customer identifier (e.g. Shopify numeric ID)"),
    )
    shop = models.CharField(
        _("shop"),
        max_length=255,
        db_index=True,
        help_text=_("Storefront domain (e.g. example.myshopify.com)"),
    )
    reward_points = models.IntegerField(_("reward points"), default=0)

    created_at = models.DateTimeField(_("created at"), auto_now_add=True)
    updated_at = models.DateTimeField(_("updated at"), auto_now=True)

    class Meta:
        db_table = "pointsman_vip_customer"
        verbose_name = _("VIP customer")
        verbose_name_plural = _("VIP customers")
        constraints = [
            models.CheckConstraint(
                condition=models.Q(reward_points__gte=0),
                name="pointsman_vip_customer_points_non_negative",
            ),
        ]

    def __str__(self):
        return f"{self.customer_id}@{self.shop}: {self.reward_points}pts"
