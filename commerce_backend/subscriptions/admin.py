from django.contrib import admin

from .models import JobLease, Subscription


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = (
        "subscription_reference",
        "user",
        "product",
        "tier",
        "status",
        "price",
        "currency",
        "next_billing_date",
    )
    list_filter = ("status", "tier", "currency")
    search_fields = (
        "subscription_reference",
        "payment_reference",
        "renewal_payment_reference",
        "user__email",
        "product__title",
    )
    readonly_fields = (
        "id",
        "subscription_reference",
        "user",
        "product",
        "tier",
        "price",
        "currency",
        "status",
        "started_at",
        "next_billing_date",
        "renewal_reminded_at",
        "cancelled_at",
        "cancellation_reason",
        "payment_reference",
        "renewal_payment_reference",
        "renewal_billing_date",
        "created_at",
        "updated_at",
    )


@admin.register(JobLease)
class JobLeaseAdmin(admin.ModelAdmin):
    list_display = ("name", "owner", "acquired_at", "expires_at")
    readonly_fields = ("name", "owner", "acquired_at", "expires_at")
