from django.contrib import admin
from .models import Payment, WebhookEvent


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('id', 'order', 'method', 'amount', 'status', 'external_ref', 'payment_date', 'created_at')
    list_filter = ('status', 'method', 'created_at')
    search_fields = ('external_ref', 'gateway_payment_id', 'order__order_number', 'order__id')
    # Status changes go through PaymentService (refund / status endpoints)
    readonly_fields = (
        'order', 'user', 'method', 'amount', 'currency', 'status', 'external_ref',
        'gateway_payment_id', 'payment_date', 'gateway_response', 'amount_refunded', 'refunded_at',
        'gateway_refund_id',
    )


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ('event_id', 'event_type', 'provider', 'is_processed', 'created_at')
    list_filter = ('event_type', 'is_processed', 'created_at')
    search_fields = ('event_id',)
    readonly_fields = ('payload',)
