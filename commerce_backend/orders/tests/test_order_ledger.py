# orders/tests/test_order_ledger.py

from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase

from cart.models import Cart, CartItem
from commerce.exceptions import InvalidTier, InvalidTransition, OrderNotFound, ValidationError
from orders.models import Order, OrderItem
from orders.services.order_ledger import (
    OrderContact,
    OrderLine,
    apply_gateway_status,
    attach_payment_reference,
    create_order,
    create_order_from_cart,
    get_order,
    get_order_by_tracking_id,
    line_for_product,
)
from orders.services.order_lifecycle import can_transition, is_stale
from products.models import Product

User = get_user_model()

CONTACT = OrderContact(full_name="Jane Wanjiru", email="jane@example.com", phone="0700000000")


def failing_on_call(real, n):
    """Wrap a manager's create() so the n-th call raises a database error."""
    calls = []

    def create(**kwargs):
        calls.append(kwargs)
        if len(calls) == n:
            raise DatabaseError("disk full")
        return real(**kwargs)

    return create


def make_products():
    plain = Product.objects.create(title="Onboarding", price=Decimal("1500.00"))
    payroll = Product.objects.create(
        title="Payroll Suite",
        price=Decimal("2500.00"),
        is_subscription=True,
        subscription_tiers={
            "free": {"price": 0, "features": ["Up to 10 employees"]},
            "basic": {"price": "2500", "features": ["Up to 50 employees"]},
            "premium": {"price": "5999", "features": ["Unlimited employees"]},
        },
    )
    return plain, payroll


class OrderCreationTests(TestCase):
    """
    GUARANTEES:
    - Orders start PENDING with a generated reference
    - Totals and line totals are computed server-side
    - Invalid input creates nothing
    """

    def setUp(self):
        self.plain, self.payroll = make_products()

    def test_total_is_sum_of_lines(self):
        order = create_order(
            contact=CONTACT,
            items=[
                OrderLine(product=self.plain, quantity=2, unit_price=Decimal("1500.00")),
                line_for_product(self.payroll, 1, "premium"),
            ],
        )

        self.assertEqual(order.status, Order.STATUS_PENDING)
        self.assertEqual(order.total_amount, Decimal("8999.00"))
        self.assertEqual(order.currency, "KES")
        self.assertRegex(order.order_reference, r"^ORD-[A-Z0-9]{8}-\d+$")
        self.assertEqual(order.items.count(), 2)

    def test_caller_line_total_is_ignored(self):
        order = create_order(
            contact=CONTACT,
            items=[
                {
                    "product": self.plain,
                    "quantity": 3,
                    "unit_price": "100.00",
                    "line_total": "1.00",
                }
            ],
        )

        item = order.items.get()
        self.assertEqual(item.line_total, Decimal("300.00"))
        self.assertEqual(order.total_amount, Decimal("300.00"))

    def test_empty_items_rejected(self):
        with self.assertRaises(ValidationError):
            create_order(contact=CONTACT, items=[])
        self.assertEqual(Order.objects.count(), 0)

    def test_zero_quantity_rejected(self):
        with self.assertRaises(ValidationError):
            create_order(
                contact=CONTACT,
                items=[OrderLine(product=self.plain, quantity=0, unit_price=Decimal("1.00"))],
            )
        self.assertEqual(OrderItem.objects.count(), 0)

    def test_missing_email_rejected(self):
        with self.assertRaises(ValidationError):
            create_order(
                contact=OrderContact(full_name="Jane", email=""),
                items=[line_for_product(self.plain, 1)],
            )

    def test_unknown_currency_rejected(self):
        with self.assertRaises(ValidationError):
            create_order(contact=CONTACT, items=[line_for_product(self.plain, 1)], currency="EUR")

    def test_line_for_product_rejects_unknown_tier(self):
        self.payroll.subscription_tiers = {"basic": {"price": "2500", "features": []}}
        self.payroll.save()

        with self.assertRaises(InvalidTier):
            line_for_product(self.payroll, 1, "premium")

    def test_line_for_product_rejects_tier_on_plain_product(self):
        with self.assertRaises(ValidationError):
            line_for_product(self.plain, 1, "basic")

    def test_lookups_raise_order_not_found(self):
        with self.assertRaises(OrderNotFound):
            get_order("not-a-uuid")
        with self.assertRaises(OrderNotFound):
            get_order_by_tracking_id("missing")

    def test_item_write_failure_leaves_no_order(self):
        create = failing_on_call(OrderItem.objects.create, 2)

        with mock.patch.object(OrderItem.objects, "create", side_effect=create):
            with self.assertRaises(DatabaseError):
                create_order(
                    contact=CONTACT,
                    items=[
                        line_for_product(self.plain, 1),
                        line_for_product(self.payroll, 1, "basic"),
                    ],
                )

        self.assertEqual(Order.all_objects.count(), 0)
        self.assertEqual(OrderItem.objects.count(), 0)


class OrderFromCartTests(TestCase):
    def setUp(self):
        self.plain, self.payroll = make_products()
        self.user = User.objects.create_user(email="buyer@example.com", password="pass")
        self.cart = Cart.active_for(self.user)

    def test_cart_is_cleared_and_tier_priced(self):
        CartItem.objects.create(cart=self.cart, product=self.plain, quantity=1)
        CartItem.objects.create(
            cart=self.cart, product=self.payroll, quantity=1, subscription_tier="basic"
        )

        order = create_order_from_cart(user=self.user, cart=self.cart, contact=CONTACT)

        self.assertEqual(order.user, self.user)
        self.assertEqual(order.total_amount, Decimal("4000.00"))
        self.assertEqual(order.items.get(product=self.payroll).subscription_tier, "basic")
        self.assertTrue(self.cart.is_empty)

    def test_empty_cart_rejected(self):
        with self.assertRaises(ValidationError):
            create_order_from_cart(user=self.user, cart=self.cart, contact=CONTACT)
        self.assertEqual(Order.objects.count(), 0)

    def test_foreign_cart_rejected(self):
        other = User.objects.create_user(email="other@example.com", password="pass")
        CartItem.objects.create(cart=self.cart, product=self.plain, quantity=1)

        with self.assertRaises(ValidationError):
            create_order_from_cart(user=other, cart=self.cart, contact=CONTACT)
        self.assertEqual(self.cart.items.count(), 1)

    def test_currency_mismatch_keeps_cart(self):
        CartItem.objects.create(cart=self.cart, product=self.plain, quantity=1)

        with self.assertRaises(ValidationError):
            create_order_from_cart(
                user=self.user, cart=self.cart, contact=CONTACT, currency="USD"
            )
        self.assertEqual(self.cart.items.count(), 1)

    def test_item_write_failure_keeps_cart(self):
        CartItem.objects.create(cart=self.cart, product=self.plain, quantity=2)
        create = failing_on_call(OrderItem.objects.create, 1)

        with mock.patch.object(OrderItem.objects, "create", side_effect=create):
            with self.assertRaises(DatabaseError):
                create_order_from_cart(user=self.user, cart=self.cart, contact=CONTACT)

        self.assertEqual(Order.all_objects.count(), 0)
        self.assertEqual(self.cart.items.count(), 1)


class OrderStatusTests(TestCase):
    """
    GUARANTEES:
    - Applying the same status twice changes nothing (paid_at set once)
    - A terminal status is never replaced
    - Pending reported after a terminal status is ignored
    """

    def setUp(self):
        plain, _ = make_products()
        self.order = create_order(contact=CONTACT, items=[line_for_product(plain, 1)])
        attach_payment_reference(self.order, "TRK-1")

    def test_paid_is_idempotent(self):
        self.assertTrue(apply_gateway_status(self.order, Order.STATUS_PAID))
        first_paid_at = self.order.paid_at

        self.assertFalse(apply_gateway_status(self.order, Order.STATUS_PAID))
        self.order.refresh_from_db()

        self.assertEqual(self.order.status, Order.STATUS_PAID)
        self.assertEqual(self.order.paid_at, first_paid_at)

    def test_terminal_status_wins(self):
        apply_gateway_status(self.order, Order.STATUS_PAID)

        with self.assertLogs("billing.alerts", level="ERROR"):
            with self.assertRaises(InvalidTransition):
                apply_gateway_status(self.order, Order.STATUS_FAILED)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PAID)

    def test_stale_pending_is_ignored(self):
        apply_gateway_status(self.order, Order.STATUS_CANCELLED)

        self.assertFalse(apply_gateway_status(self.order, Order.STATUS_PENDING))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_CANCELLED)

    def test_attach_reference_requires_pending(self):
        apply_gateway_status(self.order, Order.STATUS_FAILED)

        with self.assertRaises(InvalidTransition):
            attach_payment_reference(self.order, "TRK-2")

    def test_lifecycle_rules(self):
        self.assertTrue(can_transition(from_status="pending", to_status="paid"))
        self.assertFalse(can_transition(from_status="paid", to_status="failed"))
        self.assertTrue(is_stale(current_status="paid", reported_status="pending"))
        self.assertFalse(is_stale(current_status="pending", reported_status="pending"))
