# subscriptions/management/commands/send_subscription_reminders.py

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from subscriptions.services.renewal_sweep import send_reminders_exclusive


class Command(BaseCommand):
    help = "Queue renewal reminder notifications for subscriptions renewing soon."

    def add_arguments(self, parser):
        parser.add_argument(
            "--days",
            type=int,
            action="append",
            help="Reminder window in days (repeatable). Defaults to SUBSCRIPTION_REMINDER_DAYS.",
        )

    def handle(self, *args, **options):
        windows = options.get("days") or None

        report = send_reminders_exclusive(windows=windows)
        if report is None:
            self.stdout.write(self.style.WARNING("Another node holds the reminder lease; skipped."))
            return

        for reference, days in report.sent:
            self.stdout.write(f"Reminder queued: {reference} ({days} days)")

        if report.failures:
            raise CommandError(f"{len(report.failures)} reminder(s) failed")

        self.stdout.write(self.style.SUCCESS(f"Reminders queued: {len(report.sent)}"))
