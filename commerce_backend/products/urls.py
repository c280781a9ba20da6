# products/urls.py

from django.urls import path

from products.views import ProductTiersView

urlpatterns = [
    path("<uuid:pk>/tiers/", ProductTiersView.as_view(), name="product-tiers"),
]
