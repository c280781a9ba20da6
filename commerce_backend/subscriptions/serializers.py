# subscriptions/serializers.py

"""
SUBSCRIPTION SERIALIZERS

Transport contracts for /api/subscriptions/. Business rules (one active
subscription per product, tier validation, payment start) live in
subscriptions.services.subscription_ledger.
"""

from __future__ import annotations

from rest_framework import serializers

from products.models import TIER_CHOICES
from subscriptions.models import Subscription


class SubscribeSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    tier = serializers.ChoiceField(choices=TIER_CHOICES)


class CancelSubscriptionSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class ChangeTierSerializer(serializers.Serializer):
    tier = serializers.ChoiceField(choices=TIER_CHOICES)


class SubscriptionSerializer(serializers.ModelSerializer):
    product_id = serializers.UUIDField(source="product.id", read_only=True)
    product_title = serializers.CharField(source="product.title", read_only=True)

    class Meta:
        model = Subscription
        fields = [
            "id",
            "subscription_reference",
            "product_id",
            "product_title",
            "tier",
            "status",
            "price",
            "currency",
            "started_at",
            "next_billing_date",
            "renewal_payment_url",
            "cancelled_at",
            "cancellation_reason",
            "created_at",
        ]
        read_only_fields = fields


class SubscriptionStartSerializer(serializers.Serializer):
    """subscription + payment handoff (tracking_id/payment_url are null for free tiers)"""

    subscription = SubscriptionSerializer()
    tracking_id = serializers.CharField(allow_null=True)
    payment_url = serializers.CharField(allow_null=True)
