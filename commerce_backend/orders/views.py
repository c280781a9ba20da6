# orders/views.py

"""
ORDER API

- GET  /api/orders/            caller's orders (staff: all), filterable by status/currency
- POST /api/orders/            create a PENDING order from an explicit item list
- POST /api/orders/checkout/   create an order from the caller's cart and start payment
- GET  /api/orders/<id>/       order detail
- POST /api/orders/<id>/pay/   (re)start payment for a PENDING order

A payment that cannot be started answers 502 and leaves the order PENDING.
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import generics, permissions, status
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle
from rest_framework.views import APIView

from cart.models import Cart
from commerce.exceptions import BillingError, PaymentStartFailed, ValidationError
from commerce.http import billing_error_response
from orders.models import Order
from orders.serializers import (
    CheckoutSerializer,
    OrderCreateSerializer,
    OrderSerializer,
    PaymentStartResponseSerializer,
)
from orders.services.checkout import start_order_payment
from orders.services.order_ledger import (
    OrderContact,
    create_order,
    create_order_from_cart,
    get_order,
    line_for_product,
)
from products.models import Product

logger = logging.getLogger(__name__)


class PublicWriteThrottle(AnonRateThrottle):
    """
    Guest order creation.
    Uses REST_FRAMEWORK['DEFAULT_THROTTLE_RATES']['public_write'].
    """

    scope = "public_write"


class IsAdminOrOwner(permissions.BasePermission):
    """
    Allow only:
    - Admins (staff)
    - The owner of the order
    - Anyone holding the id of a guest order (no owner)
    """

    def has_object_permission(self, request, view, obj):
        if request.user and request.user.is_staff:
            return True
        if obj.user_id is None:
            return True
        return obj.user_id == getattr(request.user, "pk", None)


def _contact(data) -> OrderContact:
    return OrderContact(
        full_name=data["full_name"],
        email=data["email"],
        phone=data.get("phone", ""),
        company=data.get("company", ""),
        notes=data.get("notes", ""),
    )


def _payment_body(order: Order, started) -> dict:
    return {
        "order_id": str(order.id),
        "order_reference": order.order_reference,
        "tracking_id": started.tracking_id,
        "payment_url": started.redirect_url or "",
        "simulated": bool(started.simulated),
        "status": order.status,
    }


def _payment_failed(order: Order, exc: PaymentStartFailed) -> Response:
    logger.warning(
        "Payment could not be started",
        extra={"order_reference": order.order_reference, "error": str(exc)},
    )
    return billing_error_response(
        exc,
        detail="Payment could not be started. The order is saved and can be paid later.",
        order_id=str(order.id),
        order_reference=order.order_reference,
        status=order.status,
    )


class OrderListCreateView(generics.ListAPIView):
    serializer_class = OrderSerializer
    filterset_fields = ["status", "currency"]

    def get_permissions(self):
        if self.request.method == "POST":
            return [permissions.AllowAny()]
        return [permissions.IsAuthenticated()]

    def get_throttles(self):
        if self.request.method == "POST" and not self.request.user.is_authenticated:
            return [PublicWriteThrottle()]
        return super().get_throttles()

    def get_queryset(self):
        user = self.request.user
        qs = Order.objects.prefetch_related("items__product").order_by("-created_at")
        if user.is_staff:
            return qs
        return qs.filter(user=user)

    @extend_schema(
        tags=["Orders"],
        request=OrderCreateSerializer,
        responses={
            201: OrderSerializer,
            400: OpenApiResponse(description="Validation error"),
            429: OpenApiResponse(description="Rate limited"),
        },
        description="Create a PENDING order. Unit prices come from the catalog (tier price for subscription items).",
    )
    def post(self, request, *args, **kwargs):
        s = OrderCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        data = s.validated_data

        product_ids = {item["product_id"] for item in data["items"]}
        products = {p.id: p for p in Product.objects.filter(id__in=product_ids)}

        try:
            lines = []
            for item in data["items"]:
                product = products.get(item["product_id"])
                if product is None:
                    raise ValidationError(f"Product {item['product_id']} not found")
                lines.append(
                    line_for_product(product, item["quantity"], item.get("subscription_tier", ""))
                )

            order = create_order(
                contact=_contact(data),
                items=lines,
                currency=data.get("currency"),
                user=request.user,
            )
        except BillingError as exc:
            return billing_error_response(exc)

        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


class OrderCheckoutView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(
        tags=["Orders"],
        request=CheckoutSerializer,
        responses={
            201: PaymentStartResponseSerializer,
            400: OpenApiResponse(description="Validation error / empty cart"),
            502: OpenApiResponse(description="Payment could not be started (order stays pending)"),
        },
        description="Turn the caller's cart into a PENDING order and start payment.",
    )
    def post(self, request, *args, **kwargs):
        s = CheckoutSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        data = s.validated_data

        cart = Cart.active_for(request.user)

        try:
            order = create_order_from_cart(
                user=request.user,
                cart=cart,
                contact=_contact(data),
                currency=data.get("currency"),
            )
        except BillingError as exc:
            return billing_error_response(exc)

        try:
            started = start_order_payment(order)
        except PaymentStartFailed as exc:
            return _payment_failed(order, exc)
        except BillingError as exc:
            return billing_error_response(exc, order_id=str(order.id))

        return Response(_payment_body(order, started), status=status.HTTP_201_CREATED)


class OrderDetailView(generics.RetrieveAPIView):
    serializer_class = OrderSerializer
    queryset = Order.objects.prefetch_related("items__product")
    permission_classes = [IsAdminOrOwner]

    @extend_schema(tags=["Orders"])
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class OrderPayView(APIView):
    permission_classes = [IsAdminOrOwner]
    throttle_classes = [PublicWriteThrottle]

    @extend_schema(
        tags=["Orders"],
        request=None,
        responses={
            200: PaymentStartResponseSerializer,
            404: OpenApiResponse(description="Order not found"),
            409: OpenApiResponse(description="Order is not pending"),
            502: OpenApiResponse(description="Payment could not be started (order stays pending)"),
        },
        description="Start (or retry) the gateway payment for a PENDING order.",
    )
    def post(self, request, pk, *args, **kwargs):
        try:
            order = get_order(pk)
        except BillingError as exc:
            return billing_error_response(exc)

        self.check_object_permissions(request, order)

        try:
            started = start_order_payment(order)
        except PaymentStartFailed as exc:
            return _payment_failed(order, exc)
        except BillingError as exc:
            return billing_error_response(exc)

        return Response(_payment_body(order, started), status=status.HTTP_200_OK)
