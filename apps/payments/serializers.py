from rest_framework import serializers
from .models import Payment, PaymentStatus


class InitiatePaymentSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()


class WalletPaymentSerializer(InitiatePaymentSerializer):
    external_ref = serializers.CharField(max_length=100, trim_whitespace=True)


class PaymentSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source="order.order_number", read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id", "order", "order_number", "method", "amount", "currency",
            "external_ref", "status", "payment_date", "card_last_four",
            "error_message", "amount_refunded", "refund_reason", "refunded_at", "created_at",
        ]
        read_only_fields = fields


class RefundSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, trim_whitespace=True)


class PaymentStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=PaymentStatus.choices)
    reason = serializers.CharField(required=False, allow_blank=True, default="")
