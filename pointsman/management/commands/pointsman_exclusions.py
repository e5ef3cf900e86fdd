"""Management command to show or edit a shop's discount exclusion list."""

from django.core.management.base import BaseCommand, CommandError

from pointsman.adapters import get_commerce_backend
from pointsman.exceptions import PointsmanError
from pointsman.protocols.commerce import ExclusionConfig


class Command(BaseCommand):
    help = "Show or edit the variants excluded from points redemptions"

    def add_arguments(self, parser):
        parser.add_argument("shop", help="Shop domain (example.myshopify.com)")
        parser.add_argument("--add", nargs="+", default=[], metavar="VARIANT_ID", help="Exclude variants")
        parser.add_argument("--remove", nargs="+", default=[], metavar="VARIANT_ID", help="Re-include variants")

    def handle(self, *args, **options):
        try:
            backend = get_commerce_backend(options["shop"])
            config = backend.get_exclusion_config()

            if options["add"] or options["remove"]:
                excluded = (config.excluded_variant_ids | set(options["add"])) - set(options["remove"])
                config = ExclusionConfig(excluded_variant_ids=frozenset(excluded))
                backend.set_exclusion_config(config)
                self.stdout.write(self.style.SUCCESS("Exclusion config updated."))
        except PointsmanError as exc:
            raise CommandError(exc.message)

        for variant_id in sorted(config.excluded_variant_ids):
            self.stdout.write(variant_id)
        self.stdout.write(f"{len(config.excluded_variant_ids)} excluded variant(s).")
