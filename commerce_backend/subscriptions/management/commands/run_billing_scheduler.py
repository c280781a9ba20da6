# subscriptions/management/commands/run_billing_scheduler.py
"""
Long-running daily scheduler for the billing jobs.

Fires once a day at SUBSCRIPTIONS["SWEEP_TIME"] in
SUBSCRIPTIONS["SWEEP_TIMEZONE"] (08:00 Africa/Nairobi by default). Running
it on several nodes is safe: each job takes its JobLease first.
A run that raises is logged and the loop carries on to the next day.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import close_old_connections

from subscriptions.services.renewal_sweep import (
    run_renewals_exclusive,
    send_reminders_exclusive,
)

logger = logging.getLogger(__name__)


def parse_clock(value: str) -> tuple[int, int]:
    try:
        hour, minute = (int(part) for part in str(value).strip().split(":", 1))
    except ValueError:
        raise CommandError(f"Invalid sweep time '{value}', expected HH:MM")
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise CommandError(f"Invalid sweep time '{value}', expected HH:MM")
    return hour, minute


def next_run_after(now: datetime, *, hour: int, minute: int, tz: ZoneInfo) -> datetime:
    local = now.astimezone(tz)
    candidate = local.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= local:
        candidate = candidate + timedelta(days=1)
    return candidate


class Command(BaseCommand):
    help = "Run the renewal sweep and reminder dispatch daily at the configured time."

    def add_arguments(self, parser):
        parser.add_argument("--once", action="store_true", help="Run both jobs now and exit")

    def handle(self, *args, **options):
        cfg = getattr(settings, "SUBSCRIPTIONS", {}) or {}
        hour, minute = parse_clock(cfg.get("SWEEP_TIME", "08:00"))
        tz = ZoneInfo(cfg.get("SWEEP_TIMEZONE", "Africa/Nairobi"))

        if options.get("once"):
            self._run_jobs()
            return

        while True:
            target = next_run_after(datetime.now(tz), hour=hour, minute=minute, tz=tz)
            self.stdout.write(f"Next billing run at {target.isoformat()}")
            time.sleep(max(0.0, (target - datetime.now(tz)).total_seconds()))
            self._run_jobs_logged()

    def _run_jobs_logged(self):
        """A failed run is logged and the scheduler waits for the next day."""
        close_old_connections()
        try:
            self._run_jobs()
        except Exception:
            logger.exception("Billing run failed")
            self.stderr.write(self.style.ERROR("Billing run failed; see logs"))

    def _run_jobs(self):
        renewals = run_renewals_exclusive()
        if renewals is None:
            self.stdout.write(self.style.WARNING("Renewals: lease held elsewhere"))
        else:
            style = self.style.SUCCESS if renewals.ok else self.style.ERROR
            self.stdout.write(style(f"Renewals: {renewals.summary()}"))

        reminders = send_reminders_exclusive()
        if reminders is None:
            self.stdout.write(self.style.WARNING("Reminders: lease held elsewhere"))
        else:
            self.stdout.write(
                self.style.SUCCESS(
                    f"Reminders: sent={len(reminders.sent)} failed={len(reminders.failures)}"
                )
            )
