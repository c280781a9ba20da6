"""
RENEWAL SWEEP + REMINDER DISPATCH

run_renewal_sweep():
- free subscriptions (price 0) are renewed in place, no gateway call
- paid subscriptions get a RENEWAL-<subscription_reference> payment request;
  the tracking id is recorded and the Callback Reconciler settles it later
- a subscription whose renewal payment for the current billing date is still
  in flight is never billed twice for the same period: its status is polled
  through the reconciler, and a payment pending longer than
  RENEWAL_PENDING_HOURS is abandoned (alerted) so the next sweep bills again
- the hosted payment link of a submitted renewal is kept on the subscription
  and sent to the customer as a SubscriptionRenewalPaymentDue intent
- a failed submission leaves the subscription active and unadvanced, and is
  logged on the billing.alerts channel; the next sweep retries it
- one failing subscription never stops the others; failures are collected
  into the SweepReport
- a run that loses its job lease part way (heartbeat() returns False) stops
  before touching the next subscription

send_renewal_reminders():
- window N fires when now <= next_billing_date <= now + N days and no
  reminder was sent since next_billing_date - N days
- the smallest matching window wins; at most one reminder per subscription
  per run
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from commerce.exceptions import GatewayError, GatewayRejected
from commerce.references import renewal_reference
from payments.services.payment_start import build_intent
from payments.services.pesapal import get_client
from payments.services.reconciler import confirm_payment
from subscriptions.models import Subscription
from subscriptions.services import notifications
from subscriptions.services.lease import hold_lease
from subscriptions.services.subscription_ledger import (
    PAYMENT_STATUS_PENDING,
    abandon_renewal,
    mark_renewal_pending,
    needs_renewal,
    renew,
)

logger = logging.getLogger(__name__)
alerts = logging.getLogger("billing.alerts")

RENEWAL_LEASE = "subscriptions.renewal_sweep"
REMINDER_LEASE = "subscriptions.reminders"


@dataclass(frozen=True)
class SweepFailure:
    subscription_reference: str
    error: str


@dataclass
class SweepReport:
    renewed: list[str] = field(default_factory=list)
    submitted: list[str] = field(default_factory=list)
    reconciled: list[str] = field(default_factory=list)
    expired: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: list[SweepFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        return (
            f"renewed={len(self.renewed)} submitted={len(self.submitted)} "
            f"reconciled={len(self.reconciled)} expired={len(self.expired)} "
            f"skipped={len(self.skipped)} failed={len(self.failures)}"
        )


@dataclass
class ReminderReport:
    sent: list[tuple[str, int]] = field(default_factory=list)
    failures: list[SweepFailure] = field(default_factory=list)


def _lease_seconds() -> int:
    return int((getattr(settings, "SUBSCRIPTIONS", {}) or {}).get("LEASE_SECONDS", 3600))


def _pending_max_age() -> timedelta:
    hours = (getattr(settings, "SUBSCRIPTIONS", {}) or {}).get("RENEWAL_PENDING_HOURS", 72)
    return timedelta(hours=int(hours))


def _reminder_windows() -> list[int]:
    days = (getattr(settings, "SUBSCRIPTIONS", {}) or {}).get("REMINDER_DAYS") or [7, 3]
    return sorted({int(d) for d in days if int(d) > 0})


# ============================================================
# RENEWALS
# ============================================================


def _submit_renewal(subscription: Subscription, client, *, now) -> str:
    intent = build_intent(
        merchant_reference=renewal_reference(subscription.subscription_reference),
        amount=subscription.price,
        currency=subscription.currency,
        description=(
            f"Subscription Renewal: {subscription.product.title} ({subscription.tier})"
        ),
        full_name=subscription.user.get_full_name(),
        email=subscription.user.email,
        phone=getattr(subscription.user, "phone", "") or "",
    )
    result = client.submit_order_request(intent)
    mark_renewal_pending(subscription, result.tracking_id, payment_url=result.redirect_url, now=now)
    notifications.dispatch(notifications.renewal_payment_due(subscription, result.redirect_url))
    return result.tracking_id


def _check_in_flight(subscription: Subscription, client, *, now, report: SweepReport) -> None:
    """
    Ask the gateway about a renewal payment that is still in flight. A settled
    payment is applied; one pending past the configured age is abandoned so the
    next sweep bills again.
    """
    ref = subscription.subscription_reference

    try:
        outcome = confirm_payment(subscription.renewal_payment_reference, client=client)
    except (GatewayError, GatewayRejected) as exc:
        logger.warning(
            "Could not poll in-flight renewal payment",
            extra={
                "subscription_reference": ref,
                "tracking_id": subscription.renewal_payment_reference,
                "error": str(exc),
            },
        )
    else:
        if outcome.reported_status != PAYMENT_STATUS_PENDING:
            report.reconciled.append(ref)
            return

    submitted = subscription.renewal_submitted_at
    if submitted is None or submitted <= now - _pending_max_age():
        abandon_renewal(subscription, reason="Renewal payment pending too long")
        report.expired.append(ref)
        return

    report.skipped.append(ref)


def run_renewal_sweep(*, now=None, client=None, heartbeat=None) -> SweepReport:
    now = now or timezone.now()
    client = client or get_client()
    report = SweepReport()

    for subscription in needs_renewal(now):
        ref = subscription.subscription_reference

        if heartbeat is not None and not heartbeat():
            report.failures.append(SweepFailure(ref, "job lease lost before this subscription was processed"))
            alerts.error("Renewal sweep stopped: job lease lost", extra={"next_subscription": ref})
            break

        try:
            if subscription.renewal_in_flight:
                _check_in_flight(subscription, client, now=now, report=report)
                continue

            if subscription.is_free:
                renew(subscription)
                report.renewed.append(ref)
                continue

            tracking_id = _submit_renewal(subscription, client, now=now)
            report.submitted.append(ref)
            logger.info(
                "Renewal payment submitted",
                extra={"subscription_reference": ref, "tracking_id": tracking_id},
            )
        except (GatewayError, GatewayRejected) as exc:
            report.failures.append(SweepFailure(ref, str(exc)))
            alerts.error(
                "Renewal payment could not be submitted",
                extra={
                    "subscription_id": str(subscription.id),
                    "subscription_reference": ref,
                    "next_billing_date": subscription.next_billing_date.isoformat(),
                    "amount": str(subscription.price),
                    "error": str(exc),
                    "raw_payload": getattr(exc, "payload", None),
                },
            )
        except Exception as exc:
            report.failures.append(SweepFailure(ref, str(exc)))
            alerts.exception(
                "Renewal failed",
                extra={"subscription_id": str(subscription.id), "subscription_reference": ref},
            )

    logger.info("Renewal sweep finished", extra={"summary": report.summary()})
    return report


# ============================================================
# REMINDERS
# ============================================================


def reminder_window_for(subscription: Subscription, *, now, windows: list[int]) -> int | None:
    nbd = subscription.next_billing_date
    if nbd < now:
        return None

    for days in windows:
        if nbd <= now + timedelta(days=days):
            window_start = nbd - timedelta(days=days)
            reminded = subscription.renewal_reminded_at
            if reminded is not None and reminded >= window_start:
                return None
            return days

    return None


def send_renewal_reminders(
    *, now=None, windows: list[int] | None = None, heartbeat=None
) -> ReminderReport:
    now = now or timezone.now()
    windows = sorted(windows) if windows else _reminder_windows()
    report = ReminderReport()

    if not windows:
        return report

    candidates = (
        Subscription.objects.filter(
            status=Subscription.STATUS_ACTIVE,
            next_billing_date__gte=now,
            next_billing_date__lte=now + timedelta(days=max(windows)),
        )
        .select_related("user", "product")
        .order_by("next_billing_date")
    )

    for subscription in candidates:
        if heartbeat is not None and not heartbeat():
            logger.warning("Reminder dispatch stopped: job lease lost")
            break

        days = reminder_window_for(subscription, now=now, windows=windows)
        if days is None:
            continue

        try:
            with transaction.atomic():
                Subscription.objects.filter(pk=subscription.pk).update(renewal_reminded_at=now)
                subscription.renewal_reminded_at = now
                notifications.dispatch(notifications.renewal_reminder(subscription, days))
            report.sent.append((subscription.subscription_reference, days))
        except Exception as exc:
            report.failures.append(SweepFailure(subscription.subscription_reference, str(exc)))
            logger.exception(
                "Renewal reminder failed",
                extra={"subscription_reference": subscription.subscription_reference},
            )

    logger.info(
        "Renewal reminders finished",
        extra={"sent": len(report.sent), "failed": len(report.failures)},
    )
    return report


# ============================================================
# LEASED ENTRYPOINTS (used by management commands)
# ============================================================


def run_renewals_exclusive(**kwargs) -> SweepReport | None:
    with hold_lease(RENEWAL_LEASE, ttl_seconds=_lease_seconds()) as lease:
        if not lease:
            logger.info("Renewal sweep already running elsewhere")
            return None
        return run_renewal_sweep(heartbeat=lease.heartbeat, **kwargs)


def send_reminders_exclusive(**kwargs) -> ReminderReport | None:
    with hold_lease(REMINDER_LEASE, ttl_seconds=_lease_seconds()) as lease:
        if not lease:
            logger.info("Reminder dispatch already running elsewhere")
            return None
        return send_renewal_reminders(heartbeat=lease.heartbeat, **kwargs)
