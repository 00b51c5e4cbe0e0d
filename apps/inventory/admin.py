from django.contrib import admin
from .models import StockMovement


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = ('book', 'movement_type', 'quantity_change', 'balance_after', 'order', 'created_at')
    list_filter = ('movement_type', 'created_at')
    search_fields = ('book__title', 'order__order_number', 'reference')

    # Ledger rows are append-only
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
