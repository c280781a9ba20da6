# products/admin.py
"""
=====================================================
PATH: products/admin.py
=====================================================

Admin rules:

- The tier table is edited as JSON but always goes through Product.save(),
  which validates and normalizes it (unknown tier names, negative prices and
  non-list features are rejected with a form error, not a crash).
"""

from __future__ import annotations

from django import forms
from django.contrib import admin
from django.core.exceptions import ValidationError

from products.models import Product, normalize_tier_table


class ProductAdminForm(forms.ModelForm):
    class Meta:
        model = Product
        fields = "__all__"

    def clean_subscription_tiers(self):
        raw = self.cleaned_data.get("subscription_tiers")
        try:
            return normalize_tier_table(raw)
        except ValidationError as exc:
            messages = getattr(exc, "message_dict", {}).get("subscription_tiers")
            raise forms.ValidationError(messages or exc.messages)


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    form = ProductAdminForm

    list_display = (
        "title",
        "price",
        "currency",
        "is_subscription",
        "is_active",
        "created_at",
    )
    list_filter = ("is_subscription", "is_active", "currency")
    search_fields = ("title", "description")
    readonly_fields = ("created_at", "updated_at")
