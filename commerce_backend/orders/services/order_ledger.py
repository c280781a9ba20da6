"""
ORDER LEDGER

Owns Order + OrderItem writes.

Rules:
- Orders are created PENDING with all items in one transaction.
- Totals are computed here from unit_price * quantity; caller-supplied
  totals are ignored.
- Status writes happen on a row locked with select_for_update() so a webhook
  and a confirmation poll for the same order cannot interleave.
- A terminal status (paid / failed / cancelled) is never replaced:
  a later "pending" report is stale and ignored, a different terminal status
  is rejected with InvalidTransition and logged for manual review.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from commerce.exceptions import InvalidTier, InvalidTransition, OrderNotFound, ValidationError
from commerce.money import CURRENCY_CHOICES, money
from orders.models import Order, OrderItem
from orders.services.order_lifecycle import is_stale, is_terminal, validate_transition
from products.models import Product

logger = logging.getLogger(__name__)
alerts = logging.getLogger("billing.alerts")

_CURRENCIES = {code for code, _ in CURRENCY_CHOICES}


@dataclass(frozen=True)
class OrderContact:
    full_name: str
    email: str
    phone: str = ""
    company: str = ""
    notes: str = ""


@dataclass(frozen=True)
class OrderLine:
    product: Product
    quantity: int
    unit_price: Decimal
    subscription_tier: str = ""


def _coerce_line(raw) -> OrderLine:
    if isinstance(raw, OrderLine):
        return raw
    if isinstance(raw, Mapping):
        # Any caller-supplied line_total is deliberately not read.
        return OrderLine(
            product=raw.get("product"),
            quantity=raw.get("quantity"),
            unit_price=raw.get("unit_price"),
            subscription_tier=raw.get("subscription_tier") or "",
        )
    raise ValidationError(f"Unsupported order line: {raw!r}")


def _validate_lines(lines: list[OrderLine]) -> None:
    if not lines:
        raise ValidationError("Order must contain at least one item")

    for idx, line in enumerate(lines):
        if not isinstance(line.product, Product):
            raise ValidationError(f"Item {idx}: product is required")
        try:
            qty = int(line.quantity)
        except (TypeError, ValueError):
            raise ValidationError(f"Item {idx}: quantity must be an integer")
        if qty < 1 or qty != line.quantity:
            raise ValidationError(f"Item {idx}: quantity must be >= 1")
        try:
            price = money(line.unit_price)
        except ValueError as exc:
            raise ValidationError(f"Item {idx}: {exc}")
        if line.unit_price is None or price < Decimal("0.00"):
            raise ValidationError(f"Item {idx}: unit_price cannot be negative")


def _validate_contact(contact: OrderContact) -> None:
    if not str(contact.full_name or "").strip():
        raise ValidationError("full_name is required")
    if not str(contact.email or "").strip():
        raise ValidationError("email is required")


def _normalize_currency(currency: str | None) -> str:
    code = str(currency or settings.DEFAULT_CURRENCY).strip().upper()
    if code not in _CURRENCIES:
        raise ValidationError(f"Unsupported currency '{code}'")
    return code


def line_for_product(product: Product, quantity: int, subscription_tier: str = "") -> OrderLine:
    """Price a line from the catalog: tier price for subscription tiers, else product price."""
    if not product.is_active:
        raise ValidationError(f"'{product.title}' is not available")

    tier = str(subscription_tier or "").strip().lower()
    if tier:
        if not product.is_subscription:
            raise ValidationError(f"'{product.title}' is not a subscription product")
        price = product.get_tier_price(tier)
        if price is None:
            raise InvalidTier(f"Tier '{tier}' does not exist for '{product.title}'")
    else:
        price = product.price

    return OrderLine(product=product, quantity=quantity, unit_price=price, subscription_tier=tier)


def compute_total(lines: Iterable[OrderLine]) -> Decimal:
    total = Decimal("0.00")
    for line in lines:
        total += money(line.unit_price) * Decimal(int(line.quantity))
    return money(total)


# ============================================================
# CREATE
# ============================================================


def create_order(*, contact: OrderContact, items, currency: str | None = None, user=None) -> Order:
    """
    Create a PENDING order with its items (all-or-nothing).

    items: OrderLine values or mappings with product / quantity / unit_price
    and an optional subscription_tier.
    """
    lines = [_coerce_line(raw) for raw in (items or [])]
    _validate_contact(contact)
    _validate_lines(lines)
    currency = _normalize_currency(currency)

    try:
        with transaction.atomic():
            order = Order.objects.create(
                user=user if getattr(user, "is_authenticated", False) else None,
                full_name=contact.full_name.strip(),
                email=contact.email.strip(),
                phone=(contact.phone or "").strip(),
                company=(contact.company or "").strip(),
                notes=(contact.notes or "").strip(),
                total_amount=compute_total(lines),
                currency=currency,
                status=Order.STATUS_PENDING,
            )

            for line in lines:
                OrderItem.objects.create(
                    order=order,
                    product=line.product,
                    quantity=int(line.quantity),
                    unit_price=money(line.unit_price),
                    subscription_tier=line.subscription_tier,
                )
    except DjangoValidationError as exc:
        raise ValidationError("; ".join(exc.messages)) from exc

    logger.info(
        "Order created",
        extra={
            "order_id": str(order.id),
            "order_reference": order.order_reference,
            "total_amount": str(order.total_amount),
            "currency": order.currency,
        },
    )
    return order


def create_order_from_cart(*, user, cart, contact: OrderContact, currency: str | None = None) -> Order:
    """
    Build an order from the user's cart and empty the cart in the same
    transaction. Subscription items are priced from the selected tier.
    """
    currency = _normalize_currency(currency)

    with transaction.atomic():
        cart = cart.__class__.objects.select_for_update().get(pk=cart.pk)

        if cart.user_id != getattr(user, "pk", None):
            raise ValidationError("Cart does not belong to this user")
        if not cart.is_active:
            raise ValidationError("Cart is not active")

        cart_items = list(cart.items.select_related("product"))
        if not cart_items:
            raise ValidationError("Cart is empty")

        lines = []
        for item in cart_items:
            if item.product.currency != currency:
                raise ValidationError(
                    f"'{item.product.title}' is priced in {item.product.currency}, "
                    f"order currency is {currency}"
                )
            lines.append(
                OrderLine(
                    product=item.product,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    subscription_tier=item.subscription_tier,
                )
            )

        order = create_order(contact=contact, items=lines, currency=currency, user=user)

        cart.items.all().delete()

    return order


# ============================================================
# LOOKUPS
# ============================================================


def get_order(order_id) -> Order:
    try:
        return Order.objects.get(pk=order_id)
    except (Order.DoesNotExist, DjangoValidationError, ValueError):
        raise OrderNotFound(f"Order {order_id} not found")


def get_order_by_tracking_id(tracking_id: str) -> Order:
    tracking_id = str(tracking_id or "").strip()
    if not tracking_id:
        raise OrderNotFound("Tracking id is required")
    try:
        return Order.objects.get(payment_reference=tracking_id)
    except Order.DoesNotExist:
        raise OrderNotFound(f"No order for tracking id {tracking_id}")


# ============================================================
# MUTATIONS (locked)
# ============================================================


def _sync(order: Order, locked: Order) -> None:
    order.status = locked.status
    order.paid_at = locked.paid_at
    order.payment_reference = locked.payment_reference
    order.updated_at = locked.updated_at


def attach_payment_reference(order: Order, tracking_id: str) -> Order:
    tracking_id = str(tracking_id or "").strip()
    if not tracking_id:
        raise ValidationError("tracking_id is required")

    with transaction.atomic():
        locked = Order.all_objects.select_for_update().get(pk=order.pk)

        if locked.status != Order.STATUS_PENDING:
            raise InvalidTransition(
                f"Cannot attach a payment reference to {locked.status} order "
                f"{locked.order_reference}"
            )

        locked.payment_reference = tracking_id
        locked.save(update_fields=["payment_reference", "updated_at"])

    _sync(order, locked)
    logger.info(
        "Payment reference attached",
        extra={"order_reference": order.order_reference, "tracking_id": tracking_id},
    )
    return order


def apply_gateway_status(order: Order, mapped_status: str, *, raw_payload=None) -> bool:
    """
    Apply a domain status reported by the gateway. Returns True only when the
    stored status actually changed.

    - same status: no-op
    - pending reported after a terminal status: stale, no-op
    - terminal -> different terminal: InvalidTransition (status preserved)
    - entering paid stamps paid_at once
    """
    if mapped_status not in dict(Order.STATUS_CHOICES):
        raise ValidationError(f"Unknown order status '{mapped_status}'")

    with transaction.atomic():
        locked = Order.all_objects.select_for_update().get(pk=order.pk)

        if locked.status == mapped_status:
            _sync(order, locked)
            return False

        if is_stale(current_status=locked.status, reported_status=mapped_status):
            logger.info(
                "Ignoring stale pending status for terminal order",
                extra={
                    "order_reference": locked.order_reference,
                    "current_status": locked.status,
                },
            )
            _sync(order, locked)
            return False

        if is_terminal(locked.status):
            alerts.error(
                "Rejected order status transition",
                extra={
                    "order_id": str(locked.id),
                    "order_reference": locked.order_reference,
                    "from_status": locked.status,
                    "to_status": mapped_status,
                    "raw_payload": raw_payload,
                },
            )
        validate_transition(order=locked, target_status=mapped_status)

        locked.status = mapped_status
        fields = ["status", "updated_at"]
        if mapped_status == Order.STATUS_PAID and locked.paid_at is None:
            locked.paid_at = timezone.now()
            fields.append("paid_at")
        locked.save(update_fields=fields)

    _sync(order, locked)
    logger.info(
        "Order status applied",
        extra={
            "order_reference": order.order_reference,
            "status": mapped_status,
            "tracking_id": order.payment_reference,
        },
    )
    return True
