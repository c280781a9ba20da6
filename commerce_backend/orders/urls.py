# orders/urls.py

from django.urls import path

from orders.views import (
    OrderCheckoutView,
    OrderDetailView,
    OrderListCreateView,
    OrderPayView,
)

urlpatterns = [
    path("", OrderListCreateView.as_view(), name="order-list-create"),
    path("checkout/", OrderCheckoutView.as_view(), name="order-checkout"),
    path("<uuid:pk>/", OrderDetailView.as_view(), name="order-detail"),
    path("<uuid:pk>/pay/", OrderPayView.as_view(), name="order-pay"),
]
