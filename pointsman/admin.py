"""Pointsman admin.

The ledger is append-only: transactions and redemptions are read-only here,
balances change only through LedgerService.
"""

from django.contrib import admin
from django.utils.html import format_html

from pointsman.models import ProcessedEvent, Redemption, RedemptionStatus, RewardTransaction, VipCustomer


class RewardTransactionInline(admin.TabularInline):
    model = RewardTransaction
    extra = 0
    fields = ["created_at", "order_id", "points_earned", "points_redeemed", "reference"]
    readonly_fields = fields
    ordering = ["-created_at"]

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(VipCustomer)
class VipCustomerAdmin(admin.ModelAdmin):
    list_display = ["customer_id", "shop", "reward_points", "created_at", "updated_at"]
    list_filter = ["shop"]
    search_fields = ["customer_id"]
    readonly_fields = ["customer_id", "shop", "reward_points", "created_at", "updated_at"]
    inlines = [RewardTransactionInline]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(RewardTransaction)
class RewardTransactionAdmin(admin.ModelAdmin):
    list_display = ["created_at", "customer_id", "order_id", "points_display", "reference"]
    search_fields = ["customer__customer_id", "order_id", "reference"]
    readonly_fields = [
        "customer",
        "order_id",
        "points_earned",
        "points_redeemed",
        "reference",
        "created_at",
    ]
    date_hierarchy = "created_at"

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def points_display(self, obj):
        if obj.points_earned is not None:
            return format_html('<span style="color:green">+{}</span>', obj.points_earned)
        return format_html('<span style="color:red">-{}</span>', obj.points_redeemed)

    points_display.short_description = "Points"


@admin.register(Redemption)
class RedemptionAdmin(admin.ModelAdmin):
    list_display = ["created_at", "customer_id", "shop", "points", "code", "status_badge"]
    list_filter = ["status", "shop"]
    search_fields = ["customer_id", "code", "request_id"]
    readonly_fields = [
        "customer_id",
        "shop",
        "request_id",
        "points",
        "code",
        "status",
        "eligible_variant_count",
        "error",
        "created_at",
        "updated_at",
    ]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    def status_badge(self, obj):
        colors = {
            RedemptionStatus.SETTLED: "#28a745",
            RedemptionStatus.PENDING: "#6c757d",
            RedemptionStatus.ISSUED: "#fd7e14",
            RedemptionStatus.ISSUANCE_FAILED: "#6c757d",
            RedemptionStatus.SETTLEMENT_FAILED: "#dc3545",
        }
        return format_html(
            '<span style="background:{}; color:#fff; padding:2px 8px; '
            'border-radius:3px; font-size:11px;">{}</span>',
            colors.get(obj.status, "#6c757d"),
            obj.get_status_display(),
        )

    status_badge.short_description = "Status"


@admin.register(ProcessedEvent)
class ProcessedEventAdmin(admin.ModelAdmin):
    list_display = ["nonce", "provider", "topic", "processed_at"]
    list_filter = ["provider", "topic"]
    search_fields = ["nonce"]
    readonly_fields = ["nonce", "provider", "topic", "processed_at"]
