# products/serializers.py

from __future__ import annotations

from rest_framework import serializers


class TierSerializer(serializers.Serializer):
    """Read-only view of a TierSpec."""

    name = serializers.CharField()
    price = serializers.DecimalField(max_digits=12, decimal_places=2)
    features = serializers.ListField(child=serializers.CharField())


class ProductTiersSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    title = serializers.CharField()
    currency = serializers.CharField()
    tiers = TierSerializer(many=True)
