# payments/services/payment_start.py
"""
Starting a hosted payment for an order or a subscription.

Caller-level policy on gateway failure:
- PESAPAL_SANDBOX_FALLBACK on (never allowed in production settings):
  return a simulated start with tracking id SIM-<merchant reference>
- otherwise: PaymentStartFailed, and the owning record is left as it was
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from django.conf import settings

from commerce.exceptions import GatewayError, GatewayRejected, PaymentStartFailed
from payments.services.pesapal import BillingContact, PaymentIntent, get_client

logger = logging.getLogger(__name__)

SIMULATED_PREFIX = "SIM"


@dataclass(frozen=True)
class PaymentStart:
    tracking_id: str
    redirect_url: str
    simulated: bool = False


def sandbox_fallback_enabled() -> bool:
    cfg = (getattr(settings, "PAYMENTS", {}) or {}).get("PESAPAL") or {}
    return bool(cfg.get("SANDBOX_FALLBACK"))


def _cfg(key: str) -> str:
    cfg = (getattr(settings, "PAYMENTS", {}) or {}).get("PESAPAL") or {}
    return str(cfg.get(key) or "").strip()


def build_intent(
    *,
    merchant_reference: str,
    amount,
    currency: str,
    description: str,
    full_name: str,
    email: str,
    phone: str = "",
) -> PaymentIntent:
    return PaymentIntent(
        merchant_reference=merchant_reference,
        amount=amount,
        currency=currency,
        description=description,
        callback_url=_cfg("CALLBACK_URL"),
        billing=BillingContact.from_full_name(full_name=full_name, email=email, phone=phone),
        notification_id=_cfg("NOTIFICATION_ID"),
    )


def order_intent(order) -> PaymentIntent:
    return build_intent(
        merchant_reference=order.order_reference,
        amount=order.total_amount,
        currency=order.currency,
        description=f"Payment for Order #{order.order_reference}",
        full_name=order.full_name,
        email=order.email,
        phone=order.phone,
    )


def subscription_intent(subscription, *, merchant_reference: str | None = None) -> PaymentIntent:
    user = subscription.user
    return build_intent(
        merchant_reference=merchant_reference or subscription.subscription_reference,
        amount=subscription.price,
        currency=subscription.currency,
        description=f"Subscription: {subscription.product.title} ({subscription.tier})",
        full_name=user.get_full_name(),
        email=user.email,
        phone=getattr(user, "phone", "") or "",
    )


def start_payment(intent: PaymentIntent, *, simulated_redirect_url: str = "") -> PaymentStart:
    try:
        result = get_client().submit_order_request(intent)
    except GatewayError as exc:
        if sandbox_fallback_enabled():
            logger.warning(
                "Gateway unavailable, using simulated payment",
                extra={"merchant_reference": intent.merchant_reference, "error": str(exc)},
            )
            return PaymentStart(
                tracking_id=f"{SIMULATED_PREFIX}-{intent.merchant_reference}",
                redirect_url=simulated_redirect_url,
                simulated=True,
            )
        logger.error(
            "Payment could not be started",
            extra={"merchant_reference": intent.merchant_reference, "error": str(exc)},
        )
        raise PaymentStartFailed("Payment could not be started") from exc
    except GatewayRejected as exc:
        logger.error(
            "Gateway rejected payment request",
            extra={
                "merchant_reference": intent.merchant_reference,
                "status_code": exc.status_code,
                "raw_payload": exc.payload,
            },
        )
        raise PaymentStartFailed("Payment could not be started") from exc

    return PaymentStart(tracking_id=result.tracking_id, redirect_url=result.redirect_url)
