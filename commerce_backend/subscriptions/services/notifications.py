"""
NOTIFICATION INTENTS

The engine decides THAT a customer must be told something and with which
data; rendering and delivery belong to whoever listens on
`notification_requested`.

Intents are published only after the surrounding transaction commits, so a
rolled-back subscription never produces an email.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

from django.db import transaction
from django.dispatch import Signal

from commerce.money import format_price

logger = logging.getLogger(__name__)

# Receivers get: sender=<intent class>, intent=<intent instance>
notification_requested = Signal()

DATE_FORMAT = "%b %d, %Y"


@dataclass(frozen=True)
class SubscriptionNotice:
    recipient: str
    customer_name: str
    subscription_id: str
    subscription_reference: str
    product_title: str
    tier: str
    price: str
    currency: str
    start_date: str
    next_billing_date: str

    @property
    def kind(self) -> str:
        return type(self).__name__

    def template_data(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SubscriptionCreated(SubscriptionNotice):
    pass


@dataclass(frozen=True)
class SubscriptionCancelled(SubscriptionNotice):
    reason: str = ""


@dataclass(frozen=True)
class SubscriptionRenewalReminder(SubscriptionNotice):
    days_until_renewal: int = 0


@dataclass(frozen=True)
class SubscriptionRenewalPaymentDue(SubscriptionNotice):
    amount_due: str = ""
    payment_url: str = ""


def _base_fields(subscription) -> dict:
    user = subscription.user
    return {
        "recipient": user.email,
        "customer_name": user.get_full_name(),
        "subscription_id": str(subscription.id),
        "subscription_reference": subscription.subscription_reference,
        "product_title": subscription.product.title,
        "tier": subscription.tier.capitalize(),
        "price": format_price(subscription.price, subscription.currency),
        "currency": subscription.currency,
        "start_date": subscription.started_at.strftime(DATE_FORMAT),
        "next_billing_date": subscription.next_billing_date.strftime(DATE_FORMAT),
    }


def subscription_created(subscription) -> SubscriptionCreated:
    return SubscriptionCreated(**_base_fields(subscription))


def subscription_cancelled(subscription, reason: str = "") -> SubscriptionCancelled:
    return SubscriptionCancelled(**_base_fields(subscription), reason=reason or "")


def renewal_reminder(subscription, days_until_renewal: int) -> SubscriptionRenewalReminder:
    return SubscriptionRenewalReminder(
        **_base_fields(subscription),
        days_until_renewal=int(days_until_renewal),
    )


def renewal_payment_due(subscription, payment_url: str = "") -> SubscriptionRenewalPaymentDue:
    return SubscriptionRenewalPaymentDue(
        **_base_fields(subscription),
        amount_due=format_price(subscription.price, subscription.currency),
        payment_url=payment_url or "",
    )


def _publish(intent: SubscriptionNotice) -> None:
    results = notification_requested.send_robust(sender=type(intent), intent=intent)
    for receiver, result in results:
        if isinstance(result, Exception):
            logger.error(
                "Notification receiver failed",
                extra={
                    "intent": intent.kind,
                    "subscription_reference": intent.subscription_reference,
                    "receiver": getattr(receiver, "__qualname__", repr(receiver)),
                    "error": str(result),
                },
            )


def dispatch(intent: SubscriptionNotice) -> None:
    logger.info(
        "Notification intent queued",
        extra={
            "intent": intent.kind,
            "recipient": intent.recipient,
            "subscription_reference": intent.subscription_reference,
        },
    )
    transaction.on_commit(lambda: _publish(intent))
