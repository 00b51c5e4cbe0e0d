from django.contrib import admin

from .models import CartItem, Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ('book', 'title_snapshot', 'unit_price', 'quantity')

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Status changes go through OrderService.update_order_status (API),
    so the admin form is read-only for everything that carries money or state.
    """
    list_display = ('order_number', 'user', 'status', 'total_amount', 'created_at')
    list_filter = ('status', 'created_at')
    search_fields = ('order_number', 'id', 'user__username', 'user__email')
    inlines = [OrderItemInline]

    readonly_fields = (
        'id',
        'order_number',
        'user',
        'total_amount',
        'status',
        'created_at',
        'updated_at',
        'shipped_at',
        'delivered_at',
        'cancelled_at',
    )

    def has_add_permission(self, request):
        return False


@admin.register(CartItem)
class CartItemAdmin(admin.ModelAdmin):
    list_display = ('user', 'book', 'quantity', 'created_at')
    search_fields = ('user__username', 'book__title')
