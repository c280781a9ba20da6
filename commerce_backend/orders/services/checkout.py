"""
CHECKOUT PAYMENT START

start_order_payment(order):
- submits the order to the gateway and attaches the tracking id
- gateway unavailable + sandbox fallback enabled (non-production only):
  simulated tracking id SIM-<order_reference>, order marked paid through the
  ledger exactly as a real callback would
- otherwise PaymentStartFailed; the order stays PENDING with no tracking id
  so it can be retried or reconciled later (it is never deleted)
"""

from __future__ import annotations

import logging

from django.conf import settings

from commerce.exceptions import InvalidTransition
from orders.models import Order
from orders.services.order_ledger import attach_payment_reference
from payments.services.payment_start import PaymentStart, order_intent, start_payment

logger = logging.getLogger(__name__)


def _frontend_order_url(order: Order, flag: str) -> str:
    base = (getattr(settings, "FRONTEND_BASE_URL", "") or "").rstrip("/")
    return f"{base}/orders/{order.id}?payment={flag}"


def start_order_payment(order: Order) -> PaymentStart:
    if order.status != Order.STATUS_PENDING:
        raise InvalidTransition(f"Order cannot be paid. Invalid status: {order.status}")

    started = start_payment(
        order_intent(order),
        simulated_redirect_url=_frontend_order_url(order, "success"),
    )

    attach_payment_reference(order, started.tracking_id)

    if started.simulated:
        from payments.services.reconciler import STATUS_PAID, apply_order_status

        apply_order_status(order, STATUS_PAID, raw_payload={"simulated": True})

    logger.info(
        "Order payment started",
        extra={
            "order_reference": order.order_reference,
            "tracking_id": started.tracking_id,
            "simulated": started.simulated,
        },
    )
    return started
