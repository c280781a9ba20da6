# products/views.py

"""
PRODUCT CATALOGUE (public, read-only)

- GET /api/products/<id>/tiers/   tier table of an active product (free < basic < premium)
"""

from __future__ import annotations

from django.shortcuts import get_object_or_404
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import permissions
from rest_framework.response import Response
from rest_framework.views import APIView

from products.models import TIER_CHOICES, Product
from products.serializers import ProductTiersSerializer

TIER_ORDER = {value: i for i, (value, _) in enumerate(TIER_CHOICES)}


class ProductTiersView(APIView):
    permission_classes = [permissions.AllowAny]

    @extend_schema(
        tags=["Products"],
        responses={
            200: ProductTiersSerializer,
            404: OpenApiResponse(description="Product not found"),
        },
    )
    def get(self, request, pk, *args, **kwargs):
        product = get_object_or_404(Product, pk=pk, is_active=True)
        specs = sorted(product.tier_table().values(), key=lambda spec: TIER_ORDER[spec.name])

        body = ProductTiersSerializer(
            {
                "product_id": product.id,
                "title": product.title,
                "currency": product.currency,
                "tiers": [
                    {"name": spec.name, "price": spec.price, "features": list(spec.features)}
                    for spec in specs
                ],
            }
        )
        return Response(body.data)
