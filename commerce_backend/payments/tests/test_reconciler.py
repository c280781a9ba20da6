# payments/tests/test_reconciler.py

from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from commerce.exceptions import InvalidTransition, NotFoundError, ValidationError
from orders.models import Order
from orders.services.order_ledger import (
    OrderContact,
    attach_payment_reference,
    create_order,
    line_for_product,
)
from payments.services.pesapal import TransactionStatus
from payments.services.reconciler import (
    TARGET_ORDER,
    TARGET_RENEWAL,
    TARGET_SUBSCRIPTION,
    confirm_payment,
    map_gateway_status,
    reconcile_callback,
)
from products.models import Product
from subscriptions.models import Subscription
from subscriptions.services.subscription_ledger import create_subscription, mark_renewal_pending

User = get_user_model()


def status_client(code, merchant_reference=""):
    client = mock.Mock()
    client.get_transaction_status.return_value = TransactionStatus(
        status_code=code,
        merchant_reference=merchant_reference,
        raw={"payment_status_code": code},
    )
    return client


class StatusMappingTests(SimpleTestCase):
    def test_known_codes(self):
        self.assertEqual(map_gateway_status(0), "pending")
        self.assertEqual(map_gateway_status(1), "paid")
        self.assertEqual(map_gateway_status("2"), "failed")
        self.assertEqual(map_gateway_status(3), "cancelled")

    def test_unknown_codes_are_pending(self):
        self.assertEqual(map_gateway_status(7), "pending")
        self.assertEqual(map_gateway_status(None), "pending")
        self.assertEqual(map_gateway_status("abc"), "pending")


class OrderCallbackTests(TestCase):
    """
    GUARANTEES:
    - A paid callback settles the order once; repeats change nothing
    - Unknown tracking ids write nothing and never reach the gateway
    - A terminal status is never overwritten by a later callback
    """

    def setUp(self):
        product = Product.objects.create(title="Onboarding", price=Decimal("1500.00"))
        self.order = create_order(
            contact=OrderContact(full_name="Jane Doe", email="jane@example.com"),
            items=[line_for_product(product, 1)],
            currency="KES",
        )
        Order.objects.filter(pk=self.order.pk).update(order_reference="ORD-ABCDEF12-1700000000")
        self.order.refresh_from_db()
        attach_payment_reference(self.order, "TRK-ORDER-1")

    def _callback(self, code=1):
        payload = {
            "OrderTrackingId": "TRK-ORDER-1",
            "OrderMerchantReference": "ORD-ABCDEF12-1700000000",
            "OrderNotificationType": "IPNCHANGE",
        }
        return reconcile_callback(payload, client=status_client(code))

    def test_paid_callback_is_applied_once(self):
        first = self._callback(1)
        self.order.refresh_from_db()
        paid_at = self.order.paid_at

        second = self._callback(1)
        self.order.refresh_from_db()

        self.assertEqual(first.target, TARGET_ORDER)
        self.assertTrue(first.changed)
        self.assertFalse(second.changed)
        self.assertEqual(self.order.status, Order.STATUS_PAID)
        self.assertEqual(self.order.total_amount, Decimal("1500.00"))
        self.assertEqual(self.order.paid_at, paid_at)
        self.assertEqual(first.merchant_reference, "ORD-ABCDEF12-1700000000")
        self.assertEqual(first.payment_flag, "success")

    def test_callback_polls_gateway_for_status(self):
        client = status_client(2)
        payload = {"OrderTrackingId": "TRK-ORDER-1"}

        outcome = reconcile_callback(payload, client=client)

        client.get_transaction_status.assert_called_once_with("TRK-ORDER-1")
        self.assertEqual(outcome.current_status, Order.STATUS_FAILED)

    def test_unknown_tracking_id_writes_nothing(self):
        client = status_client(1)

        with self.assertRaises(NotFoundError):
            reconcile_callback({"OrderTrackingId": "TRK-UNKNOWN"}, client=client)

        client.get_transaction_status.assert_not_called()
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PENDING)

    def test_missing_tracking_id(self):
        with self.assertRaises(ValidationError):
            reconcile_callback({"OrderMerchantReference": "ORD-ABCDEF12-1700000000"})

    def test_status_in_callback_body_is_ignored(self):
        client = status_client(0)
        payload = {"OrderTrackingId": "TRK-ORDER-1", "status_code": 1, "payment_status_code": 1}

        outcome = reconcile_callback(payload, client=client)

        client.get_transaction_status.assert_called_once_with("TRK-ORDER-1")
        self.assertFalse(outcome.changed)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PENDING)
        self.assertIsNone(self.order.paid_at)

    def test_unrecognized_code_keeps_pending(self):
        outcome = self._callback(9)

        self.assertFalse(outcome.changed)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PENDING)

    def test_failed_after_paid_is_rejected(self):
        self._callback(1)

        with self.assertRaises(InvalidTransition):
            self._callback(2)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_PAID)

    def test_confirm_payment_polls_and_applies(self):
        outcome = confirm_payment("TRK-ORDER-1", client=status_client(3))

        self.assertTrue(outcome.changed)
        self.assertEqual(outcome.payment_flag, "cancelled")

    def test_confirm_payment_skips_write_when_status_matches(self):
        self._callback(1)

        outcome = confirm_payment("TRK-ORDER-1", client=status_client(1))

        self.assertFalse(outcome.changed)
        self.assertEqual(outcome.current_status, Order.STATUS_PAID)


class SubscriptionOrderCallbackTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="buyer@example.com", password="pass")
        self.payroll = Product.objects.create(
            title="Payroll Suite",
            price=Decimal("2500.00"),
            is_subscription=True,
            subscription_tiers={"premium": {"price": "5999", "features": []}},
        )
        self.order = create_order(
            contact=OrderContact(full_name="Buyer", email="buyer@example.com"),
            items=[line_for_product(self.payroll, 1, "premium")],
            user=self.user,
        )
        attach_payment_reference(self.order, "TRK-SUB-ORDER")

    def test_paid_order_starts_subscription_once(self):
        reconcile_callback({"OrderTrackingId": "TRK-SUB-ORDER"}, client=status_client(1))
        reconcile_callback({"OrderTrackingId": "TRK-SUB-ORDER"}, client=status_client(1))

        subs = Subscription.objects.filter(user=self.user, product=self.payroll)
        self.assertEqual(subs.count(), 1)
        self.assertEqual(subs.get().tier, "premium")
        self.assertEqual(subs.get().payment_reference, "TRK-SUB-ORDER")


class SubscriptionCallbackTests(TestCase):
    """
    GUARANTEES:
    - A paid renewal advances next_billing_date exactly once
    - A failed renewal leaves the subscription active and due
    - A failed first payment of a direct purchase cancels the subscription
    """

    def setUp(self):
        self.user = User.objects.create_user(email="sub@example.com", password="pass")
        self.product = Product.objects.create(
            title="SACCO Manager",
            price=Decimal("3000.00"),
            is_subscription=True,
            subscription_tiers={"basic": {"price": "3000", "features": []}},
        )
        self.sub = create_subscription(self.user, self.product, "basic", notify=False)

    def _make_due(self):
        due = timezone.now() - timedelta(hours=1)
        Subscription.objects.filter(pk=self.sub.pk).update(next_billing_date=due)
        self.sub.refresh_from_db()
        return due

    def test_paid_renewal_advances_once(self):
        due = self._make_due()
        mark_renewal_pending(self.sub, "TRK-RENEW-1")

        first = reconcile_callback({"OrderTrackingId": "TRK-RENEW-1"}, client=status_client(1))
        second = reconcile_callback({"OrderTrackingId": "TRK-RENEW-1"}, client=status_client(1))
        self.sub.refresh_from_db()

        self.assertEqual(first.target, TARGET_RENEWAL)
        self.assertTrue(first.changed)
        self.assertFalse(second.changed)
        self.assertGreater(self.sub.next_billing_date, due)
        self.assertIsNone(self.sub.renewal_billing_date)
        self.assertEqual(self.sub.status, Subscription.STATUS_ACTIVE)

    def test_failed_renewal_keeps_subscription_due(self):
        due = self._make_due()
        mark_renewal_pending(self.sub, "TRK-RENEW-2")

        with self.assertLogs("billing.alerts", level="ERROR"):
            reconcile_callback({"OrderTrackingId": "TRK-RENEW-2"}, client=status_client(2))
        self.sub.refresh_from_db()

        self.assertEqual(self.sub.status, Subscription.STATUS_ACTIVE)
        self.assertEqual(self.sub.next_billing_date, due)
        self.assertFalse(self.sub.renewal_in_flight)

    def test_failed_initial_payment_cancels(self):
        Subscription.objects.filter(pk=self.sub.pk).update(payment_reference="TRK-FIRST")

        outcome = reconcile_callback({"OrderTrackingId": "TRK-FIRST"}, client=status_client(3))
        self.sub.refresh_from_db()

        self.assertEqual(outcome.target, TARGET_SUBSCRIPTION)
        self.assertEqual(self.sub.status, Subscription.STATUS_CANCELLED)
        self.assertEqual(self.sub.cancellation_reason, "Payment cancelled")

    def test_paid_initial_payment_changes_nothing(self):
        Subscription.objects.filter(pk=self.sub.pk).update(payment_reference="TRK-FIRST")

        outcome = reconcile_callback({"OrderTrackingId": "TRK-FIRST"}, client=status_client(1))

        self.assertFalse(outcome.changed)
        self.assertEqual(outcome.payment_flag, "success")
