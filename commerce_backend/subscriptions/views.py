# subscriptions/views.py

"""
SUBSCRIPTION API (authenticated users, own subscriptions only)

- GET  /api/subscriptions/                      list (filter: status, tier)
- POST /api/subscriptions/                      subscribe (+ start payment for paid tiers)
- GET  /api/subscriptions/<id>/                 one of the caller's subscriptions
- POST /api/subscriptions/<id>/cancel/          cancel an active subscription
- POST /api/subscriptions/<id>/change-tier/     cancel + replace at the new tier
"""

from __future__ import annotations

from django.shortcuts import get_object_or_404
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import generics, permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from commerce.exceptions import BillingError
from commerce.http import billing_error_response
from products.models import Product
from subscriptions.models import Subscription
from subscriptions.serializers import (
    CancelSubscriptionSerializer,
    ChangeTierSerializer,
    SubscribeSerializer,
    SubscriptionSerializer,
    SubscriptionStartSerializer,
)
from subscriptions.services.subscription_ledger import (
    cancel_subscription,
    change_tier_and_pay,
    subscribe,
)


def _start_body(started) -> dict:
    return {
        "subscription": SubscriptionSerializer(started.subscription).data,
        "tracking_id": started.tracking_id,
        "payment_url": started.payment_url,
    }


def _own_subscription(request, pk) -> Subscription:
    return get_object_or_404(
        Subscription.objects.select_related("product", "user"),
        pk=pk,
        user=request.user,
    )


class SubscriptionListCreateView(generics.ListAPIView):
    serializer_class = SubscriptionSerializer
    permission_classes = [permissions.IsAuthenticated]
    filterset_fields = ["status", "tier"]

    def get_queryset(self):
        return (
            Subscription.objects.filter(user=self.request.user)
            .select_related("product")
            .order_by("-created_at")
        )

    @extend_schema(
        tags=["Subscriptions"],
        request=SubscribeSerializer,
        responses={
            201: SubscriptionStartSerializer,
            400: OpenApiResponse(description="Validation error / unknown tier"),
            404: OpenApiResponse(description="Product not found"),
            409: OpenApiResponse(description="Already subscribed"),
            502: OpenApiResponse(description="Payment could not be started"),
        },
    )
    def post(self, request, *args, **kwargs):
        s = SubscribeSerializer(data=request.data)
        s.is_valid(raise_exception=True)

        product = get_object_or_404(Product, id=s.validated_data["product_id"], is_active=True)

        try:
            started = subscribe(request.user, product, s.validated_data["tier"])
        except BillingError as exc:
            return billing_error_response(exc)

        return Response(_start_body(started), status=status.HTTP_201_CREATED)


class SubscriptionDetailView(generics.RetrieveAPIView):
    serializer_class = SubscriptionSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return Subscription.objects.filter(user=self.request.user).select_related("product")

    @extend_schema(
        tags=["Subscriptions"],
        responses={
            200: SubscriptionSerializer,
            404: OpenApiResponse(description="Subscription not found"),
        },
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class SubscriptionCancelView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(
        tags=["Subscriptions"],
        request=CancelSubscriptionSerializer,
        responses={
            200: SubscriptionSerializer,
            404: OpenApiResponse(description="Subscription not found"),
            409: OpenApiResponse(description="Already cancelled"),
        },
    )
    def post(self, request, pk, *args, **kwargs):
        s = CancelSubscriptionSerializer(data=request.data)
        s.is_valid(raise_exception=True)

        subscription = _own_subscription(request, pk)

        try:
            subscription = cancel_subscription(subscription, s.validated_data.get("reason", ""))
        except BillingError as exc:
            return billing_error_response(exc)

        return Response(SubscriptionSerializer(subscription).data, status=status.HTTP_200_OK)


class SubscriptionChangeTierView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(
        tags=["Subscriptions"],
        request=ChangeTierSerializer,
        responses={
            201: SubscriptionStartSerializer,
            400: OpenApiResponse(description="Same tier / unknown tier"),
            404: OpenApiResponse(description="Subscription not found"),
            409: OpenApiResponse(description="Subscription is not active"),
            502: OpenApiResponse(description="Payment could not be started"),
        },
        description="Cancels the current subscription and creates a new one at the requested tier.",
    )
    def post(self, request, pk, *args, **kwargs):
        s = ChangeTierSerializer(data=request.data)
        s.is_valid(raise_exception=True)

        subscription = _own_subscription(request, pk)

        try:
            started = change_tier_and_pay(subscription, s.validated_data["tier"])
        except BillingError as exc:
            return billing_error_response(exc)

        return Response(_start_body(started), status=status.HTTP_201_CREATED)
