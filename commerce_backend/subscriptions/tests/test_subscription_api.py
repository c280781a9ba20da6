# subscriptions/tests/test_subscription_api.py

from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from commerce.exceptions import GatewayError
from products.models import Product
from subscriptions.models import Subscription
from subscriptions.services.subscription_ledger import create_subscription

User = get_user_model()

TIERS = {
    "free": {"price": 0, "features": []},
    "basic": {"price": "2500", "features": []},
    "premium": {"price": "5999", "features": []},
}


@override_settings(PAYMENTS={"PESAPAL": {"SANDBOX_FALLBACK": False}})
class SubscriptionApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(email="api@example.com", password="pass")
        self.client.force_authenticate(self.user)
        self.product = Product.objects.create(
            title="Payroll Suite",
            price=Decimal("2500.00"),
            is_subscription=True,
            subscription_tiers=TIERS,
        )

    def test_requires_authentication(self):
        anon = APIClient()
        self.assertEqual(anon.get("/api/subscriptions/").status_code, 401)

    def test_subscribe_free_tier(self):
        resp = self.client.post(
            "/api/subscriptions/",
            {"product_id": str(self.product.id), "tier": "free"},
            format="json",
        )

        self.assertEqual(resp.status_code, 201, resp.data)
        self.assertIsNone(resp.data["tracking_id"])
        self.assertEqual(resp.data["subscription"]["tier"], "free")
        self.assertEqual(resp.data["subscription"]["status"], "active")

    def test_duplicate_subscription_is_409(self):
        create_subscription(self.user, self.product, "free")

        resp = self.client.post(
            "/api/subscriptions/",
            {"product_id": str(self.product.id), "tier": "free"},
            format="json",
        )

        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.data["code"], "DuplicateActiveSubscription")

    def test_payment_failure_is_502_and_nothing_is_kept(self):
        client = mock.Mock()
        client.submit_order_request.side_effect = GatewayError("down")

        with mock.patch("payments.services.payment_start.get_client", return_value=client):
            resp = self.client.post(
                "/api/subscriptions/",
                {"product_id": str(self.product.id), "tier": "basic"},
                format="json",
            )

        self.assertEqual(resp.status_code, 502)
        self.assertFalse(Subscription.objects.exists())

    def test_cancel(self):
        sub = create_subscription(self.user, self.product, "free")

        resp = self.client.post(
            f"/api/subscriptions/{sub.id}/cancel/", {"reason": "Switching vendor"}, format="json"
        )
        again = self.client.post(f"/api/subscriptions/{sub.id}/cancel/", {}, format="json")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["status"], "cancelled")
        self.assertEqual(resp.data["cancellation_reason"], "Switching vendor")
        self.assertEqual(again.status_code, 409)

    def test_cannot_cancel_someone_elses_subscription(self):
        other = User.objects.create_user(email="other@example.com", password="pass")
        sub = create_subscription(other, self.product, "free")

        resp = self.client.post(f"/api/subscriptions/{sub.id}/cancel/", {}, format="json")

        self.assertEqual(resp.status_code, 404)

    def test_change_tier_to_free(self):
        sub = create_subscription(self.user, self.product, "premium")

        resp = self.client.post(
            f"/api/subscriptions/{sub.id}/change-tier/", {"tier": "free"}, format="json"
        )

        self.assertEqual(resp.status_code, 201, resp.data)
        self.assertEqual(resp.data["subscription"]["tier"], "free")
        sub.refresh_from_db()
        self.assertEqual(sub.status, Subscription.STATUS_CANCELLED)

    def test_change_to_same_tier_is_400(self):
        sub = create_subscription(self.user, self.product, "basic")

        resp = self.client.post(
            f"/api/subscriptions/{sub.id}/change-tier/", {"tier": "basic"}, format="json"
        )

        self.assertEqual(resp.status_code, 400)

    def test_list_filters_by_status(self):
        sub = create_subscription(self.user, self.product, "free")
        self.client.post(f"/api/subscriptions/{sub.id}/cancel/", {}, format="json")
        create_subscription(self.user, self.product, "basic")

        resp = self.client.get("/api/subscriptions/", {"status": "active"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual([row["tier"] for row in resp.data["results"]], ["basic"])

    def test_retrieve_own_subscription(self):
        sub = create_subscription(self.user, self.product, "basic")

        resp = self.client.get(f"/api/subscriptions/{sub.id}/")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["subscription_reference"], sub.subscription_reference)
        self.assertEqual(resp.data["tier"], "basic")
        self.assertEqual(resp.data["price"], "2500.00")

    def test_retrieve_someone_elses_subscription_is_404(self):
        other = User.objects.create_user(email="other@example.com", password="pass")
        sub = create_subscription(other, self.product, "free")

        resp = self.client.get(f"/api/subscriptions/{sub.id}/")

        self.assertEqual(resp.status_code, 404)

    def test_retrieve_requires_authentication(self):
        sub = create_subscription(self.user, self.product, "free")

        self.assertEqual(APIClient().get(f"/api/subscriptions/{sub.id}/").status_code, 401)
