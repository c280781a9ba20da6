# products/tests/test_products.py

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.test import TestCase
from rest_framework.test import APIClient

from products.models import TIER_BASIC, TIER_FREE, TIER_PREMIUM, Product, TierSpec


class ProductTierTableTests(TestCase):
    """
    Product tier table tests.

    GUARANTEES:
    - Tier tables are validated when the product is written
    - Readers get typed TierSpec values (Decimal prices, feature lists)
    - Subscription products must carry at least one tier
    """

    def _product(self, **overrides):
        data = {
            "title": "Payroll Suite",
            "price": Decimal("2500.00"),
            "is_subscription": True,
            "subscription_tiers": {
                "free": {"price": 0, "features": ["Up to 10 employees"]},
                "basic": {"price": "2500", "features": "Up to 50 employees"},
                "premium": {"price": 5999, "features": ["Unlimited employees", "KRA"]},
            },
        }
        data.update(overrides)
        return Product.objects.create(**data)

    def test_tier_table_is_normalized_on_save(self):
        product = self._product()
        product.refresh_from_db()

        self.assertEqual(product.subscription_tiers["basic"]["price"], "2500.00")
        self.assertEqual(
            product.subscription_tiers["basic"]["features"],
            ["Up to 50 employees"],
        )

    def test_tier_table_returns_typed_specs(self):
        product = self._product()
        table = product.tier_table()

        self.assertEqual(set(table), {TIER_FREE, TIER_BASIC, TIER_PREMIUM})
        self.assertIsInstance(table[TIER_PREMIUM], TierSpec)
        self.assertEqual(table[TIER_PREMIUM].price, Decimal("5999.00"))
        self.assertEqual(table[TIER_PREMIUM].features, ("Unlimited employees", "KRA"))

    def test_get_tier_price(self):
        product = self._product()

        self.assertEqual(product.get_tier_price("free"), Decimal("0.00"))
        self.assertEqual(product.get_tier_price("BASIC"), Decimal("2500.00"))
        self.assertIsNone(product.get_tier_price("enterprise"))

    def test_unknown_tier_name_is_rejected(self):
        with self.assertRaises(ValidationError):
            self._product(subscription_tiers={"gold": {"price": 10, "features": []}})

    def test_negative_tier_price_is_rejected(self):
        with self.assertRaises(ValidationError):
            self._product(subscription_tiers={"basic": {"price": -1, "features": []}})

    def test_non_numeric_tier_price_is_rejected(self):
        with self.assertRaises(ValidationError):
            self._product(subscription_tiers={"basic": {"price": "abc", "features": []}})

    def test_non_finite_tier_price_is_rejected(self):
        for bad in ("NaN", "Infinity", "-Infinity", "sNaN"):
            with self.subTest(price=bad):
                with self.assertRaises(ValidationError):
                    self._product(subscription_tiers={"basic": {"price": bad, "features": []}})

        self.assertFalse(Product.objects.exists())

    def test_subscription_product_requires_a_tier(self):
        with self.assertRaises(ValidationError):
            self._product(subscription_tiers={})

    def test_one_time_product_needs_no_tiers(self):
        product = self._product(
            title="Setup Service",
            is_subscription=False,
            subscription_tiers={},
        )

        self.assertEqual(product.tier_table(), {})
        self.assertIsNone(product.get_tier_price("basic"))

    def test_product_price_is_non_negative(self):
        with self.assertRaises(ValidationError):
            self._product(price=Decimal("-5.00"))

    def test_product_string_representation(self):
        product = self._product()
        self.assertIn("Payroll Suite", str(product))


class ProductTiersApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.product = Product.objects.create(
            title="Payroll Suite",
            price=Decimal("2500.00"),
            is_subscription=True,
            subscription_tiers={
                "premium": {"price": 5999, "features": ["Unlimited employees"]},
                "free": {"price": 0, "features": ["Up to 10 employees"]},
                "basic": {"price": "2500", "features": []},
            },
        )

    def test_tiers_are_public_and_ordered(self):
        resp = self.client.get(f"/api/products/{self.product.id}/tiers/")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["currency"], "KES")
        self.assertEqual([t["name"] for t in resp.data["tiers"]], ["free", "basic", "premium"])
        self.assertEqual(resp.data["tiers"][2]["price"], "5999.00")
        self.assertEqual(resp.data["tiers"][2]["features"], ["Unlimited employees"])

    def test_inactive_product_is_404(self):
        Product.objects.filter(pk=self.product.pk).update(is_active=False)

        resp = self.client.get(f"/api/products/{self.product.id}/tiers/")

        self.assertEqual(resp.status_code, 404)

    def test_one_time_product_has_no_tiers(self):
        product = Product.objects.create(title="Setup Service", price=Decimal("100.00"))

        resp = self.client.get(f"/api/products/{product.id}/tiers/")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["tiers"], [])
