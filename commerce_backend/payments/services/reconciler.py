# payments/services/reconciler.py
"""
CALLBACK RECONCILER

Turns gateway reports into ledger updates. Two entrypoints share ONE status
mapping (map_gateway_status):

- reconcile_callback(payload): inbound webhook / IPN
- confirm_payment(tracking_id): customer returns from the hosted payment page

A tracking id resolves to one of:
- an Order (checkout payment)
- a Subscription renewal payment
- a Subscription bought directly (first payment of a paid tier)

Unknown tracking ids raise NotFoundError BEFORE any gateway call or write.
The ledgers enforce idempotency and the terminal-status-wins rule.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from django.db import transaction

from commerce.exceptions import NotFoundError, OrderNotFound, SubscriptionNotFound, ValidationError
from orders.models import Order
from orders.services.order_ledger import apply_gateway_status, get_order_by_tracking_id
from payments.services.pesapal import get_client
from subscriptions.services.subscription_ledger import (
    PAYMENT_KIND_RENEWAL,
    create_subscriptions_from_order,
    find_subscription_payment,
    settle_initial_payment,
    settle_renewal,
)

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_PAID = "paid"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

# Pesapal payment_status_code -> domain status
STATUS_CODE_MAP = {
    0: STATUS_PENDING,
    1: STATUS_PAID,
    2: STATUS_FAILED,
    3: STATUS_CANCELLED,
}

TARGET_ORDER = "order"
TARGET_RENEWAL = "renewal"
TARGET_SUBSCRIPTION = "subscription"

TRACKING_ID_KEYS = ("OrderTrackingId", "orderTrackingId", "order_tracking_id", "tracking_id")


def map_gateway_status(code) -> str:
    """Unrecognized or missing codes are pending, never success."""
    try:
        return STATUS_CODE_MAP.get(int(code), STATUS_PENDING)
    except (TypeError, ValueError):
        return STATUS_PENDING


def extract_tracking_id(payload: Mapping[str, Any] | None) -> str:
    payload = payload or {}
    for key in TRACKING_ID_KEYS:
        value = str(payload.get(key) or "").strip()
        if value:
            return value
    return ""


@dataclass(frozen=True)
class ReconcileOutcome:
    tracking_id: str
    target: str
    record_id: str
    reference: str
    reported_status: str
    current_status: str
    changed: bool
    merchant_reference: str = ""

    @property
    def payment_flag(self) -> str:
        if self.target == TARGET_ORDER:
            status = self.current_status
        else:
            status = self.reported_status
        return {
            STATUS_PAID: "success",
            STATUS_FAILED: "failed",
            STATUS_CANCELLED: "cancelled",
        }.get(status, "pending")


def resolve_payment_target(tracking_id: str):
    try:
        return TARGET_ORDER, get_order_by_tracking_id(tracking_id)
    except OrderNotFound:
        pass

    try:
        kind, sub = find_subscription_payment(tracking_id)
    except SubscriptionNotFound:
        raise NotFoundError(f"No order or subscription for tracking id {tracking_id}")

    if kind == PAYMENT_KIND_RENEWAL:
        return TARGET_RENEWAL, sub
    return TARGET_SUBSCRIPTION, sub


def apply_order_status(order: Order, mapped_status: str, *, raw_payload=None) -> bool:
    """Apply a status to an order; an order that just became paid starts its subscriptions."""
    with transaction.atomic():
        changed = apply_gateway_status(order, mapped_status, raw_payload=raw_payload)
        if changed and order.status == Order.STATUS_PAID:
            create_subscriptions_from_order(order)
    return changed


def _apply(target: str, record, mapped_status: str, *, raw_payload=None) -> bool:
    if target == TARGET_ORDER:
        return apply_order_status(record, mapped_status, raw_payload=raw_payload)
    if target == TARGET_RENEWAL:
        return settle_renewal(record, mapped_status, raw_payload=raw_payload)
    return settle_initial_payment(record, mapped_status)


def _outcome(tracking_id: str, target: str, record, mapped: str, changed: bool, merchant_reference="") -> ReconcileOutcome:
    if target == TARGET_ORDER:
        reference = record.order_reference
    else:
        reference = record.subscription_reference
    return ReconcileOutcome(
        tracking_id=tracking_id,
        target=target,
        record_id=str(record.id),
        reference=reference,
        reported_status=mapped,
        current_status=record.status,
        changed=changed,
        merchant_reference=merchant_reference or "",
    )


def reconcile_callback(payload: Mapping[str, Any] | None, *, client=None) -> ReconcileOutcome:
    tracking_id = extract_tracking_id(payload)
    if not tracking_id:
        raise ValidationError("OrderTrackingId is required")

    target, record = resolve_payment_target(tracking_id)

    # The inbound body is never trusted for the status; always ask the gateway.
    status = (client or get_client()).get_transaction_status(tracking_id)
    code = status.status_code
    raw = {"callback": dict(payload or {}), "status": status.raw}

    mapped = map_gateway_status(code)

    logger.info(
        "Reconciling gateway callback",
        extra={
            "tracking_id": tracking_id,
            "target": target,
            "record_id": str(record.id),
            "status_code": code,
            "mapped_status": mapped,
        },
    )

    changed = _apply(target, record, mapped, raw_payload=raw)
    merchant_reference = str((payload or {}).get("OrderMerchantReference") or "")
    return _outcome(tracking_id, target, record, mapped, changed, merchant_reference)


def confirm_payment(tracking_id: str, *, client=None) -> ReconcileOutcome:
    tracking_id = str(tracking_id or "").strip()
    if not tracking_id:
        raise ValidationError("OrderTrackingId is required")

    target, record = resolve_payment_target(tracking_id)

    status = (client or get_client()).get_transaction_status(tracking_id)
    mapped = map_gateway_status(status.status_code)

    if target == TARGET_ORDER and record.status == mapped:
        return _outcome(tracking_id, target, record, mapped, False, status.merchant_reference)

    changed = _apply(target, record, mapped, raw_payload=status.raw)
    return _outcome(tracking_id, target, record, mapped, changed, status.merchant_reference)
