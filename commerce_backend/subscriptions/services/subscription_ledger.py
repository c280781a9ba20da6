"""
SUBSCRIPTION LEDGER

Owns every Subscription write.

Rules:
- One ACTIVE subscription per (user, product). Checked while holding a row
  lock on the user, so two concurrent subscribes cannot both pass.
- The price is snapshotted from the product's tier table at creation.
- next_billing_date = started_at + one calendar month, then advanced one
  period per successful renewal (anchored on the started_at day).
- Cancelling twice is an error (AlreadyCancelled), never a silent no-op.
- change_tier() cancels and recreates inside ONE transaction.
- subscribe() / change_tier_and_pay() never hold a lock across the gateway
  call; a failed payment start deletes the unpaid row (and restores the
  previous tier).
- Renewal payments: mark_renewal_pending() records the billing date being
  paid for; settle_renewal() advances on paid and clears the marker on
  failed/cancelled so the next sweep retries. abandon_renewal() clears a
  marker that waited too long; a late "paid" report still advances once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from commerce.exceptions import (
    AlreadyCancelled,
    DuplicateActiveSubscription,
    InvalidTier,
    InvalidTransition,
    PaymentStartFailed,
    SubscriptionNotFound,
    ValidationError,
)
from commerce.references import generate_subscription_reference
from products.models import TIER_BASIC, Product
from subscriptions.models import Subscription
from subscriptions.services import notifications
from subscriptions.services.billing_period import add_billing_period, next_billing_after

logger = logging.getLogger(__name__)
alerts = logging.getLogger("billing.alerts")

PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_CANCELLED = "cancelled"
PAYMENT_STATUS_PENDING = "pending"

PAYMENT_KIND_INITIAL = "initial"
PAYMENT_KIND_RENEWAL = "renewal"


@dataclass(frozen=True)
class SubscriptionStart:
    subscription: Subscription
    tracking_id: str | None = None
    payment_url: str | None = None


def _normalize_tier(tier) -> str:
    return str(tier or "").strip().lower()


def _lock(subscription: Subscription) -> Subscription:
    return Subscription.objects.select_for_update().get(pk=subscription.pk)


def _sync(subscription: Subscription, locked: Subscription) -> None:
    for name in (
        "status",
        "next_billing_date",
        "renewal_reminded_at",
        "cancelled_at",
        "cancellation_reason",
        "payment_reference",
        "renewal_payment_reference",
        "renewal_billing_date",
        "renewal_submitted_at",
        "renewal_payment_url",
        "updated_at",
    ):
        setattr(subscription, name, getattr(locked, name))


def has_active_subscription(user, product) -> bool:
    return Subscription.objects.filter(
        user=user,
        product=product,
        status=Subscription.STATUS_ACTIVE,
    ).exists()


def find_subscription_payment(tracking_id: str) -> tuple[str, Subscription]:
    """
    Resolve a gateway tracking id to ("renewal", sub) or ("initial", sub).
    Raises SubscriptionNotFound.
    """
    tracking_id = str(tracking_id or "").strip()
    if tracking_id:
        sub = Subscription.objects.filter(renewal_payment_reference=tracking_id).first()
        if sub is not None:
            return PAYMENT_KIND_RENEWAL, sub

        sub = (
            Subscription.objects.filter(payment_reference=tracking_id)
            .order_by("-created_at")
            .first()
        )
        if sub is not None:
            return PAYMENT_KIND_INITIAL, sub

    raise SubscriptionNotFound(f"No subscription for tracking id {tracking_id}")


# ============================================================
# CREATE / CANCEL / CHANGE TIER
# ============================================================


def create_subscription(
    user,
    product: Product,
    tier: str,
    *,
    payment_reference: str | None = None,
    notify: bool = True,
) -> Subscription:
    tier = _normalize_tier(tier)

    if not product.is_subscription:
        raise ValidationError(f"'{product.title}' is not a subscription product")

    price = product.get_tier_price(tier)
    if price is None:
        raise InvalidTier(f"Tier '{tier}' does not exist for this product")

    with transaction.atomic():
        get_user_model().objects.select_for_update().get(pk=user.pk)

        if has_active_subscription(user, product):
            raise DuplicateActiveSubscription(
                "You already have an active subscription to this product"
            )

        now = timezone.now()
        subscription = Subscription.objects.create(
            subscription_reference=generate_subscription_reference(),
            user=user,
            product=product,
            tier=tier,
            status=Subscription.STATUS_ACTIVE,
            price=price,
            currency=product.currency,
            started_at=now,
            next_billing_date=next_billing_after(now),
            payment_reference=payment_reference or None,
        )

        if notify:
            notifications.dispatch(notifications.subscription_created(subscription))

    logger.info(
        "Subscription created",
        extra={
            "subscription_reference": subscription.subscription_reference,
            "user_id": str(user.pk),
            "product_id": str(product.pk),
            "tier": tier,
        },
    )
    return subscription


def cancel_subscription(subscription: Subscription, reason: str = "", *, notify: bool = True) -> Subscription:
    with transaction.atomic():
        locked = _lock(subscription)

        if locked.status != Subscription.STATUS_ACTIVE:
            raise AlreadyCancelled(
                f"Subscription {locked.subscription_reference} is already cancelled"
            )

        locked.status = Subscription.STATUS_CANCELLED
        locked.cancelled_at = timezone.now()
        locked.cancellation_reason = reason or ""
        locked.save(
            update_fields=["status", "cancelled_at", "cancellation_reason", "updated_at"]
        )

        if notify:
            notifications.dispatch(notifications.subscription_cancelled(locked, reason))

    _sync(subscription, locked)
    logger.info(
        "Subscription cancelled",
        extra={"subscription_reference": locked.subscription_reference, "reason": reason},
    )
    return subscription


def change_tier(subscription: Subscription, new_tier: str, *, notify: bool = True) -> Subscription:
    """
    Replace an active subscription with a new one on another tier.
    Both steps commit together or not at all.
    """
    new_tier = _normalize_tier(new_tier)

    with transaction.atomic():
        locked = _lock(subscription)

        if locked.status != Subscription.STATUS_ACTIVE:
            raise InvalidTransition("Only active subscriptions can be changed")
        if locked.tier == new_tier:
            raise ValidationError("You are already subscribed to this tier")
        if locked.product.get_tier_price(new_tier) is None:
            raise InvalidTier(f"Tier '{new_tier}' does not exist for this product")

        cancel_subscription(locked, f"Upgraded/Downgraded to {new_tier} tier", notify=False)
        replacement = create_subscription(locked.user, locked.product, new_tier, notify=notify)

    _sync(subscription, locked)
    return replacement


# ============================================================
# USER-FACING FLOWS (create + start payment)
#
# The ledger write commits before the gateway call; no transaction is open
# while waiting on Pesapal. A payment that cannot be started is compensated
# in its own short transaction.
# ============================================================


def start_subscription_payment(subscription: Subscription) -> SubscriptionStart:
    """Free tiers need no payment; paid tiers raise PaymentStartFailed on failure."""
    if subscription.is_free:
        return SubscriptionStart(subscription=subscription)

    from payments.services.payment_start import start_payment, subscription_intent

    started = start_payment(subscription_intent(subscription))

    subscription.payment_reference = started.tracking_id
    subscription.save(update_fields=["payment_reference", "updated_at"])

    return SubscriptionStart(
        subscription=subscription,
        tracking_id=started.tracking_id,
        payment_url=started.redirect_url or None,
    )


def _discard_unpaid(subscription: Subscription) -> None:
    with transaction.atomic():
        Subscription.objects.filter(pk=subscription.pk, payment_reference__isnull=True).delete()


def _restore_after_failed_change(previous: Subscription, replacement: Subscription) -> None:
    with transaction.atomic():
        locked = _lock(previous)
        _discard_unpaid(replacement)

        locked.status = Subscription.STATUS_ACTIVE
        locked.cancelled_at = None
        locked.cancellation_reason = None
        locked.save(update_fields=["status", "cancelled_at", "cancellation_reason", "updated_at"])

    _sync(previous, locked)


def subscribe(user, product: Product, tier: str) -> SubscriptionStart:
    subscription = create_subscription(user, product, tier, notify=False)

    try:
        started = start_subscription_payment(subscription)
    except PaymentStartFailed:
        _discard_unpaid(subscription)
        logger.warning(
            "Subscription discarded, payment could not be started",
            extra={"subscription_reference": subscription.subscription_reference},
        )
        raise

    notifications.dispatch(notifications.subscription_created(subscription))
    return started


def change_tier_and_pay(subscription: Subscription, new_tier: str) -> SubscriptionStart:
    replacement = change_tier(subscription, new_tier, notify=False)

    try:
        started = start_subscription_payment(replacement)
    except PaymentStartFailed:
        _restore_after_failed_change(subscription, replacement)
        logger.warning(
            "Tier change reverted, payment could not be started",
            extra={
                "subscription_reference": subscription.subscription_reference,
                "tier": replacement.tier,
            },
        )
        raise

    notifications.dispatch(notifications.subscription_created(replacement))
    return started


def create_subscriptions_from_order(order) -> list[Subscription]:
    """
    Start a subscription for every subscription product on a paid order.
    Products the user already holds actively, and tiers the product does not
    offer, are skipped and logged.
    """
    if order.user_id is None:
        logger.warning(
            "Paid order has no user; subscriptions not started",
            extra={"order_reference": order.order_reference},
        )
        return []

    created = []
    for item in order.items.select_related("product"):
        product = item.product
        if not product.is_subscription:
            continue

        tier = _normalize_tier(item.subscription_tier) or TIER_BASIC
        try:
            created.append(
                create_subscription(
                    order.user,
                    product,
                    tier,
                    payment_reference=order.payment_reference,
                )
            )
        except (DuplicateActiveSubscription, InvalidTier) as exc:
            logger.warning(
                "Skipped subscription for paid order item",
                extra={
                    "order_reference": order.order_reference,
                    "product_id": str(product.pk),
                    "tier": tier,
                    "reason": str(exc),
                },
            )

    return created


# ============================================================
# RENEWAL
# ============================================================


def needs_renewal(now=None):
    now = now or timezone.now()
    return (
        Subscription.objects.filter(
            status=Subscription.STATUS_ACTIVE,
            next_billing_date__lte=now,
        )
        .select_related("user", "product")
        .order_by("next_billing_date")
    )


def renew(subscription: Subscription) -> Subscription:
    """Advance next_billing_date by exactly one period. Nothing else changes."""
    with transaction.atomic():
        locked = _lock(subscription)

        if locked.status != Subscription.STATUS_ACTIVE:
            raise InvalidTransition(
                f"Cannot renew {locked.status} subscription {locked.subscription_reference}"
            )

        locked.next_billing_date = add_billing_period(
            locked.next_billing_date,
            anchor_day=locked.started_at.day,
        )
        locked.renewal_billing_date = None
        locked.save(update_fields=["next_billing_date", "renewal_billing_date", "updated_at"])

    _sync(subscription, locked)
    logger.info(
        "Subscription renewed",
        extra={
            "subscription_reference": locked.subscription_reference,
            "next_billing_date": locked.next_billing_date.isoformat(),
        },
    )
    return subscription


def mark_renewal_pending(
    subscription: Subscription,
    tracking_id: str,
    *,
    payment_url: str = "",
    now=None,
) -> Subscription:
    tracking_id = str(tracking_id or "").strip()
    if not tracking_id:
        raise ValidationError("tracking_id is required")

    with transaction.atomic():
        locked = _lock(subscription)

        if locked.status != Subscription.STATUS_ACTIVE:
            raise InvalidTransition(
                f"Cannot bill {locked.status} subscription {locked.subscription_reference}"
            )

        locked.renewal_payment_reference = tracking_id
        locked.renewal_billing_date = locked.next_billing_date
        locked.renewal_submitted_at = now or timezone.now()
        locked.renewal_payment_url = str(payment_url or "")[:500]
        locked.save(
            update_fields=[
                "renewal_payment_reference",
                "renewal_billing_date",
                "renewal_submitted_at",
                "renewal_payment_url",
                "updated_at",
            ]
        )

    _sync(subscription, locked)
    return subscription


def _advance_one_period(locked: Subscription) -> None:
    locked.next_billing_date = add_billing_period(
        locked.next_billing_date,
        anchor_day=locked.started_at.day,
    )


def settle_renewal(subscription: Subscription, mapped_status: str, *, raw_payload=None) -> bool:
    """
    Apply the outcome of a renewal payment. Returns True when state changed.
    Repeated callbacks for an already-settled renewal are no-ops.
    """
    with transaction.atomic():
        locked = _lock(subscription)

        if mapped_status == PAYMENT_STATUS_PENDING:
            _sync(subscription, locked)
            return False

        if locked.renewal_billing_date is None:
            # Abandoned by the sweep but paid afterwards: the due period is covered.
            late_paid = (
                mapped_status == PAYMENT_STATUS_PAID
                and locked.renewal_submitted_at is not None
                and locked.status == Subscription.STATUS_ACTIVE
            )
            if not late_paid:
                _sync(subscription, locked)
                return False

            _advance_one_period(locked)
            locked.renewal_submitted_at = None
            locked.renewal_payment_url = ""
            locked.save(
                update_fields=[
                    "next_billing_date",
                    "renewal_submitted_at",
                    "renewal_payment_url",
                    "updated_at",
                ]
            )
            alerts.warning(
                "Late renewal payment applied after the renewal was abandoned",
                extra={
                    "subscription_id": str(locked.id),
                    "subscription_reference": locked.subscription_reference,
                    "tracking_id": locked.renewal_payment_reference,
                    "next_billing_date": locked.next_billing_date.isoformat(),
                },
            )
            _sync(subscription, locked)
            return True

        fields = ["renewal_billing_date", "renewal_submitted_at", "renewal_payment_url", "updated_at"]

        if mapped_status == PAYMENT_STATUS_PAID:
            if (
                locked.status == Subscription.STATUS_ACTIVE
                and locked.renewal_billing_date == locked.next_billing_date
            ):
                _advance_one_period(locked)
                fields.append("next_billing_date")
            logger.info(
                "Renewal payment settled",
                extra={
                    "subscription_reference": locked.subscription_reference,
                    "next_billing_date": locked.next_billing_date.isoformat(),
                },
            )
        else:
            alerts.error(
                "Renewal payment did not complete",
                extra={
                    "subscription_id": str(locked.id),
                    "subscription_reference": locked.subscription_reference,
                    "payment_status": mapped_status,
                    "tracking_id": locked.renewal_payment_reference,
                    "raw_payload": raw_payload,
                },
            )

        locked.renewal_billing_date = None
        locked.renewal_submitted_at = None
        locked.renewal_payment_url = ""
        locked.save(update_fields=fields)

    _sync(subscription, locked)
    return True


def abandon_renewal(subscription: Subscription, *, reason: str = "") -> bool:
    """
    Give up waiting on an in-flight renewal payment so the next sweep bills
    again. The tracking id is kept; a late "paid" report is still applied.
    """
    with transaction.atomic():
        locked = _lock(subscription)

        if locked.renewal_billing_date is None:
            _sync(subscription, locked)
            return False

        alerts.error(
            "Renewal payment abandoned",
            extra={
                "subscription_id": str(locked.id),
                "subscription_reference": locked.subscription_reference,
                "tracking_id": locked.renewal_payment_reference,
                "submitted_at": (
                    locked.renewal_submitted_at.isoformat() if locked.renewal_submitted_at else None
                ),
                "reason": reason,
            },
        )

        locked.renewal_billing_date = None
        locked.renewal_payment_url = ""
        locked.save(update_fields=["renewal_billing_date", "renewal_payment_url", "updated_at"])

    _sync(subscription, locked)
    return True


def settle_initial_payment(subscription: Subscription, mapped_status: str) -> bool:
    """
    Outcome of the first payment for a directly purchased paid tier.
    A failed or cancelled payment ends the subscription; paid/pending change nothing.
    """
    if mapped_status not in (PAYMENT_STATUS_FAILED, PAYMENT_STATUS_CANCELLED):
        return False

    with transaction.atomic():
        locked = _lock(subscription)
        if not locked.is_active:
            _sync(subscription, locked)
            return False
        cancel_subscription(locked, f"Payment {mapped_status}")

    _sync(subscription, locked)
    return True
