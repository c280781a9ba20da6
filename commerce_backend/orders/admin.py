from django.contrib import admin

from .models import Order, OrderItem

# =====================================================
# ORDER ITEM INLINE (READ-ONLY)
# =====================================================


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    can_delete = False
    readonly_fields = (
        "product",
        "quantity",
        "unit_price",
        "line_total",
        "subscription_tier",
        "created_at",
    )

    def has_add_permission(self, request, obj=None):
        return False


# =====================================================
# ORDER ADMIN
# =====================================================
# Status is read-only here: it only changes through the gateway reconciler.


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "order_reference",
        "full_name",
        "email",
        "total_amount",
        "currency",
        "status",
        "paid_at",
        "created_at",
    )
    list_filter = ("status", "currency")
    search_fields = ("order_reference", "payment_reference", "email", "full_name", "company")
    readonly_fields = (
        "id",
        "order_reference",
        "user",
        "total_amount",
        "currency",
        "status",
        "payment_reference",
        "paid_at",
        "created_at",
        "updated_at",
        "deleted_at",
    )
    inlines = [OrderItemInline]

    def get_queryset(self, request):
        return Order.all_objects.select_related("user")
