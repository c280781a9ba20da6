from django.contrib import admin

from .models import Cart, CartItem

# =====================================================
# CART ITEM INLINE (READ-ONLY)
# =====================================================


class CartItemInline(admin.TabularInline):
    model = CartItem
    extra = 0
    can_delete = False
    readonly_fields = (
        "product",
        "quantity",
        "subscription_tier",
        "unit_price",
        "created_at",
    )

    def has_add_permission(self, request, obj=None):
        return False


# =====================================================
# CART ADMIN
# =====================================================


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "is_active", "item_count", "created_at")
    list_filter = ("is_active",)
    search_fields = ("user__email",)
    readonly_fields = ("id", "user", "is_active", "created_at", "updated_at", "item_count")
    inlines = [CartItemInline]
