# orders/serializers.py

"""
ORDER SERIALIZERS

Transport layer only: request/response shapes for /api/orders/.
Pricing, totals and status rules live in orders.services.
"""

from __future__ import annotations

from rest_framework import serializers

from commerce.money import CURRENCY_CHOICES
from orders.models import Order, OrderItem
from products.models import TIER_CHOICES


class OrderContactSerializer(serializers.Serializer):
    full_name = serializers.CharField(max_length=255)
    email = serializers.EmailField()
    phone = serializers.CharField(required=False, allow_blank=True, default="")
    company = serializers.CharField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    currency = serializers.ChoiceField(choices=CURRENCY_CHOICES, required=False)


class OrderItemInputSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1, default=1)
    subscription_tier = serializers.ChoiceField(
        choices=TIER_CHOICES, required=False, allow_blank=True, default=""
    )


class OrderCreateSerializer(OrderContactSerializer):
    """Create an order from an explicit item list (prices come from the catalog)."""

    items = OrderItemInputSerializer(many=True)

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("Order must contain at least one item")
        return value


class CheckoutSerializer(OrderContactSerializer):
    """Create an order from the caller's active cart."""


class OrderItemSerializer(serializers.ModelSerializer):
    product_id = serializers.UUIDField(source="product.id", read_only=True)
    product_title = serializers.CharField(source="product.title", read_only=True)

    class Meta:
        model = OrderItem
        fields = [
            "id",
            "product_id",
            "product_title",
            "quantity",
            "unit_price",
            "line_total",
            "subscription_tier",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_reference",
            "full_name",
            "email",
            "phone",
            "company",
            "notes",
            "total_amount",
            "currency",
            "status",
            "payment_reference",
            "paid_at",
            "created_at",
            "updated_at",
            "items",
        ]
        read_only_fields = fields


class PaymentStartResponseSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    order_reference = serializers.CharField()
    tracking_id = serializers.CharField()
    payment_url = serializers.CharField(allow_blank=True)
    simulated = serializers.BooleanField()
    status = serializers.CharField()
