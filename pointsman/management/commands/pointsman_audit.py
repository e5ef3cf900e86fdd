"""Management command to audit ledger consistency and unsettled redemptions."""

from django.core.management.base import BaseCommand, CommandError

from pointsman.models import Redemption, RedemptionStatus
from pointsman.services.ledger import LedgerService
from pointsman.services.redemption import RedemptionService


class Command(BaseCommand):
    help = (
        "Report customers whose balance differs from their transaction log, "
        "redemptions whose discount code was issued but never debited, "
        "and pending redemptions held past their lease."
    )

    def add_arguments(self, parser):
        parser.add_argument("--shop", default=None, help="Only audit this shop")

    def handle(self, *args, **options):
        shop = options["shop"]
        problems = 0

        for rec in LedgerService.audit(shop=shop):
            problems += 1
            self.stdout.write(
                self.style.ERROR(
                    f"Ledger mismatch: customer={rec.customer_id} balance={rec.balance} "
                    f"earned={rec.earned} redeemed={rec.redeemed} expected={rec.expected_balance}"
                )
            )

        unsettled = Redemption.objects.filter(
            status__in=[RedemptionStatus.ISSUED, RedemptionStatus.SETTLEMENT_FAILED],
        ).order_by("created_at")
        if shop:
            unsettled = unsettled.filter(shop=shop)

        for redemption in unsettled:
            problems += 1
            self.stdout.write(
                self.style.WARNING(
                    f"Unsettled redemption: customer={redemption.customer_id} "
                    f"points={redemption.points} code={redemption.code} "
                    f"request={redemption.request_id} status={redemption.status} "
                    f"error={redemption.error or '-'}"
                )
            )

        for redemption in RedemptionService.stale_pending(shop=shop):
            problems += 1
            self.stdout.write(
                self.style.WARNING(
                    f"Stale pending redemption: customer={redemption.customer_id} "
                    f"points={redemption.points} code={redemption.code} "
                    f"request={redemption.request_id} since={redemption.updated_at.isoformat()}"
                )
            )

        if problems:
            raise CommandError(f"{problems} problem(s) found.")
        self.stdout.write(self.style.SUCCESS("Ledger is consistent."))
