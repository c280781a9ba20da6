# cart/models/cart_item.py

"""
CART ITEM MODEL

Rules:
- One product per cart (DB constraint).
- Quantity must be > 0.
- subscription_tier is only allowed on subscription products and must exist
  in the product's tier table.
- No price is stored here; the Order snapshots the price at checkout.
"""

import uuid
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models

from products.models import TIER_CHOICES, Product

from .cart import Cart


class CartItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    cart = models.ForeignKey(
        Cart,
        on_delete=models.CASCADE,
        related_name="items",
    )

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="cart_items",
    )

    quantity = models.PositiveIntegerField(default=1)

    subscription_tier = models.CharField(
        max_length=16,
        choices=TIER_CHOICES,
        blank=True,
        default="",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["cart", "product"],
                name="unique_product_per_cart",
            )
        ]

    def clean(self):
        if self.quantity is None or int(self.quantity) <= 0:
            raise ValidationError({"quantity": "Quantity must be greater than zero"})

        if self.subscription_tier:
            if not self.product.is_subscription:
                raise ValidationError(
                    {"subscription_tier": "Only subscription products take a tier"}
                )
            if self.product.get_tier(self.subscription_tier) is None:
                raise ValidationError(
                    {"subscription_tier": f"Tier '{self.subscription_tier}' is not offered"}
                )

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    @property
    def unit_price(self) -> Decimal:
        if self.subscription_tier:
            tier_price = self.product.get_tier_price(self.subscription_tier)
            if tier_price is not None:
                return tier_price
        return self.product.price

    def __str__(self):
        tier = f" [{self.subscription_tier}]" if self.subscription_tier else ""
        return f"{getattr(self.product, 'title', 'Product')}{tier} x {self.quantity}"
