# subscriptions/management/commands/process_subscription_renewals.py

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from subscriptions.services.renewal_sweep import run_renewals_exclusive


class Command(BaseCommand):
    help = "Renew free subscriptions and submit renewal payments for paid ones that are due."

    def handle(self, *args, **options):
        self.stdout.write("Processing subscription renewals...")

        report = run_renewals_exclusive()
        if report is None:
            self.stdout.write(self.style.WARNING("Another node holds the renewal lease; skipped."))
            return

        for failure in report.failures:
            self.stderr.write(
                self.style.ERROR(f"{failure.subscription_reference}: {failure.error}")
            )

        if not report.ok:
            raise CommandError(f"Renewal sweep finished with failures ({report.summary()})")

        self.stdout.write(self.style.SUCCESS(f"Renewal sweep done ({report.summary()})"))
