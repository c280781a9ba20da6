# products/models/product.py

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from django.core.exceptions import ValidationError
from django.db import models

from commerce.money import CURRENCY_CHOICES, CURRENCY_KES, money

TIER_FREE = "free"
TIER_BASIC = "basic"
TIER_PREMIUM = "premium"

TIER_CHOICES = [
    (TIER_FREE, "Free"),
    (TIER_BASIC, "Basic"),
    (TIER_PREMIUM, "Premium"),
]

TIER_NAMES = {value for value, _ in TIER_CHOICES}


@dataclass(frozen=True)
class TierSpec:
    name: str
    price: Decimal
    features: tuple[str, ...]


def normalize_tier_table(raw) -> dict:
    """
    Validate a subscription tier table and return its canonical JSON form:

        {"basic": {"price": "2500.00", "features": ["Up to 50 employees"]}}

    Features may be given as a list of strings or a single string.
    Raises django ValidationError on any malformed entry.
    """
    if raw in (None, ""):
        return {}
    if not isinstance(raw, dict):
        raise ValidationError({"subscription_tiers": "must be an object keyed by tier name"})

    out = {}
    for name, spec in raw.items():
        tier = str(name or "").strip().lower()
        if tier not in TIER_NAMES:
            raise ValidationError({"subscription_tiers": f"Unknown tier '{name}'"})
        if not isinstance(spec, dict):
            raise ValidationError({"subscription_tiers": f"Tier '{tier}' must be an object"})

        try:
            price = Decimal(str(spec.get("price")))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError({"subscription_tiers": f"Tier '{tier}' has an invalid price"})
        if not price.is_finite():
            raise ValidationError({"subscription_tiers": f"Tier '{tier}' has an invalid price"})
        if price < Decimal("0.00"):
            raise ValidationError({"subscription_tiers": f"Tier '{tier}' price cannot be negative"})

        features = spec.get("features") or []
        if isinstance(features, str):
            features = [features]
        if not isinstance(features, (list, tuple)) or not all(
            isinstance(f, str) for f in features
        ):
            raise ValidationError(
                {"subscription_tiers": f"Tier '{tier}' features must be a list of strings"}
            )

        out[tier] = {
            "price": str(money(price)),
            "features": [f.strip() for f in features if f.strip()],
        }

    return out


class Product(models.Model):
    """
    Sellable product.

    SUBSCRIPTION PRODUCTS:
    - is_subscription=True products carry a tier table (free/basic/premium).
    - The table is validated and normalized on every save; readers get typed
      TierSpec values through tier_table() and never parse raw JSON.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    title = models.CharField(max_length=255, db_index=True)
    description = models.TextField(blank=True, default="")

    price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, choices=CURRENCY_CHOICES, default=CURRENCY_KES)

    is_active = models.BooleanField(default=True)

    is_subscription = models.BooleanField(default=False)
    subscription_tiers = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["title"], name="products_title_idx"),
            models.Index(fields=["is_subscription"], name="products_is_subscription_idx"),
        ]

    def __str__(self):
        return self.title

    def clean(self):
        if self.price is None or Decimal(self.price) < Decimal("0.00"):
            raise ValidationError({"price": "price cannot be negative"})

        self.subscription_tiers = normalize_tier_table(self.subscription_tiers)

        if self.is_subscription and not self.subscription_tiers:
            raise ValidationError(
                {"subscription_tiers": "Subscription products must define at least one tier"}
            )

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def tier_table(self) -> dict[str, TierSpec]:
        table = normalize_tier_table(self.subscription_tiers)
        return {
            name: TierSpec(
                name=name,
                price=money(spec["price"]),
                features=tuple(spec["features"]),
            )
            for name, spec in table.items()
        }

    def get_tier(self, tier: str) -> TierSpec | None:
        return self.tier_table().get(str(tier or "").strip().lower())

    def get_tier_price(self, tier: str) -> Decimal | None:
        spec = self.get_tier(tier)
        return spec.price if spec else None
