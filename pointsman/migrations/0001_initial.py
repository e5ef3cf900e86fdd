# Initial schema: ledger, redemptions and webhook replay protection

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="VipCustomer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "customer_id",
                    models.CharField(
                        help_text="External customer identifier (e.g. Shopify numeric ID)",
                        max_length=64,
                        unique=True,
                        verbose_name="customer ID",
                    ),
                ),
                (
                    "shop",
                    models.CharField(
                        db_index=True,
                        help_text="Storefront domain (e.g. example.myshopify.com)",
                        max_length=255,
                        verbose_name="shop",
                    ),
                ),
                ("reward_points", models.IntegerField(default=0, verbose_name="reward points")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="updated at")),
            ],
            options={
                "verbose_name": "VIP customer",
                "verbose_name_plural": "VIP customers",
                "db_table": "pointsman_vip_customer",
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(reward_points__gte=0),
                        name="pointsman_vip_customer_points_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ProcessedEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("nonce", models.CharField(db_index=True, max_length=255, unique=True, verbose_name="nonce")),
                ("provider", models.CharField(db_index=True, max_length=50, verbose_name="provider")),
                ("topic", models.CharField(blank=True, max_length=100, verbose_name="topic")),
                ("processed_at", models.DateTimeField(auto_now_add=True, verbose_name="processed at")),
            ],
            options={
                "verbose_name": "processed event",
                "verbose_name_plural": "processed events",
                "db_table": "pointsman_processed_event",
                "indexes": [
                    models.Index(fields=["provider", "processed_at"], name="pointsman_p_provide_3c1f0e_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Redemption",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("customer_id", models.CharField(db_index=True, max_length=64, verbose_name="customer ID")),
                ("shop", models.CharField(max_length=255, verbose_name="shop")),
                ("request_id", models.CharField(max_length=100, verbose_name="request ID")),
                ("points", models.PositiveIntegerField(verbose_name="points")),
                ("code", models.CharField(max_length=255, verbose_name="discount code")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("issued", "Issued, not settled"),
                            ("settled", "Settled"),
                            ("issuance_failed", "Issuance failed"),
                            ("settlement_failed", "Settlement failed"),
                        ],
                        default="pending",
                        max_length=20,
                        verbose_name="status",
                    ),
                ),
                (
                    "eligible_variant_count",
                    models.PositiveIntegerField(blank=True, null=True, verbose_name="eligible variants"),
                ),
                ("error", models.TextField(blank=True, verbose_name="error")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="updated at")),
            ],
            options={
                "verbose_name": "redemption",
                "verbose_name_plural": "redemptions",
                "db_table": "pointsman_redemption",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("customer_id", "request_id"),
                        name="pointsman_redemption_unique_request",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(status__in=["pending", "issued"]),
                        fields=("customer_id",),
                        name="pointsman_redemption_one_in_flight",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="RewardTransaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "order_id",
                    models.CharField(
                        help_text="External order ID, or the redemption sentinel",
                        max_length=64,
                        verbose_name="order ID",
                    ),
                ),
                ("points_earned", models.PositiveIntegerField(blank=True, null=True, verbose_name="points earned")),
                (
                    "points_redeemed",
                    models.PositiveIntegerField(blank=True, null=True, verbose_name="points redeemed"),
                ),
                (
                    "reference",
                    models.CharField(
                        blank=True,
                        help_text="Redemption request ID for debits",
                        max_length=100,
                        verbose_name="reference",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, verbose_name="created at")),
                (
                    "customer",
                    models.ForeignKey(
                        db_column="customer_id",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="pointsman.vipcustomer",
                        to_field="customer_id",
                        verbose_name="customer",
                    ),
                ),
            ],
            options={
                "verbose_name": "reward transaction",
                "verbose_name_plural": "reward transactions",
                "db_table": "pointsman_reward_transaction",
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["customer", "-created_at"], name="pointsman_r_custome_8a2d4b_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=(
                            models.Q(points_earned__isnull=False, points_redeemed__isnull=True)
                            | models.Q(points_earned__isnull=True, points_redeemed__isnull=False)
                        ),
                        name="pointsman_reward_transaction_earned_xor_redeemed",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(points_earned__isnull=False),
                        fields=("customer", "order_id"),
                        name="pointsman_reward_transaction_unique_order_credit",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(points_redeemed__isnull=False) & ~models.Q(reference=""),
                        fields=("customer", "reference"),
                        name="pointsman_reward_transaction_unique_redemption_debit",
                    ),
                ],
            },
        ),
    ]
