# subscriptions/urls.py

from django.urls import path

from subscriptions.views import (
    SubscriptionCancelView,
    SubscriptionChangeTierView,
    SubscriptionDetailView,
    SubscriptionListCreateView,
)

urlpatterns = [
    path("", SubscriptionListCreateView.as_view(), name="subscription-list-create"),
    path("<uuid:pk>/", SubscriptionDetailView.as_view(), name="subscription-detail"),
    path("<uuid:pk>/cancel/", SubscriptionCancelView.as_view(), name="subscription-cancel"),
    path(
        "<uuid:pk>/change-tier/",
        SubscriptionChangeTierView.as_view(),
        name="subscription-change-tier",
    ),
]
