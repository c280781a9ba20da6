# payments/management/commands/register_pesapal_ipn.py

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from commerce.exceptions import GatewayError, GatewayRejected
from payments.services.pesapal import get_client


class Command(BaseCommand):
    help = (
        "Register the IPN (webhook) URL with Pesapal and print the notification id "
        "to put in PESAPAL_NOTIFICATION_ID."
    )

    def add_arguments(self, parser):
        parser.add_argument("url", help="Public URL of /api/payments/pesapal/callback/")
        parser.add_argument(
            "--method",
            choices=["GET", "POST"],
            default="GET",
            help="How Pesapal should deliver notifications (default GET)",
        )

    def handle(self, *args, **options):
        url = options["url"].strip()
        if not url.startswith(("http://", "https://")):
            raise CommandError("url must be absolute (http:// or https://)")

        try:
            result = get_client().register_ipn(url, notification_type=options["method"])
        except (GatewayError, GatewayRejected) as exc:
            raise CommandError(f"Pesapal IPN registration failed: {exc}")

        self.stdout.write(self.style.SUCCESS(f"Registered {result['url']}"))
        self.stdout.write(f"PESAPAL_NOTIFICATION_ID={result['notification_id']}")
