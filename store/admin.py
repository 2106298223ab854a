from django.contrib import admin

from .models import (
    Category,
    Order,
    OrderItem,
    Partner,
    PriceHistory,
    Product,
    Refund,
    RefundItem,
    StockHistory,
)


class ReadOnlyAdmin(admin.ModelAdmin):
    """Journals are written by the engine only."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ("name", "created_at")
    search_fields = ("name", "description")


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "barcode",
        "category",
        "currency",
        "price",
        "discount_price",
        "stock",
        "is_active",
        "is_deleted",
    )
    search_fields = ("name", "barcode")
    list_filter = ("category", "currency", "is_active", "is_deleted")
    readonly_fields = ("stock",)


@admin.register(PriceHistory)
class PriceHistoryAdmin(ReadOnlyAdmin):
    list_display = ("product", "old_price", "new_price", "currency", "changed_by", "created_at")
    list_filter = ("currency",)


@admin.register(Partner)
class PartnerAdmin(admin.ModelAdmin):
    list_display = ("name", "phone", "created_at")
    search_fields = ("name", "phone")


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    can_delete = False
    readonly_fields = (
        "product",
        "quantity",
        "price",
        "original_price",
        "total_price",
        "manual_discount_value",
        "manual_discount_type",
    )

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "seller",
        "cashier",
        "customer_name",
        "currency",
        "final_amount",
        "status",
        "payment_method",
        "is_printed",
        "created_at",
    )
    list_filter = ("status", "currency", "payment_method", "order_type", "is_printed")
    search_fields = ("id", "customer_name", "seller__username")
    readonly_fields = (
        "total_amount",
        "discount_amount",
        "final_amount",
        "status",
        "completed_at",
    )
    inlines = [OrderItemInline]


class RefundItemInline(admin.TabularInline):
    model = RefundItem
    extra = 0
    readonly_fields = ("product", "quantity", "price")

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Refund)
class RefundAdmin(ReadOnlyAdmin):
    list_display = ("id", "order", "total_amount", "refunded_by", "created_at")
    search_fields = ("order__id", "reason")
    inlines = [RefundItemInline]


@admin.register(StockHistory)
class StockHistoryAdmin(ReadOnlyAdmin):
    list_display = (
        "product",
        "movement_type",
        "reason",
        "quantity",
        "old_stock",
        "new_stock",
        "order",
        "added_by",
        "created_at",
    )
    list_filter = ("movement_type", "reason")
    search_fields = ("product__name", "note")
