from rest_framework import serializers

from apps.catalog.serializers import BookSerializer
from apps.payments.models import Payment
from .models import CartItem, Order, OrderItem


class CartItemSerializer(serializers.ModelSerializer):
    book = BookSerializer(read_only=True)
    line_total = serializers.DecimalField(read_only=True, max_digits=10, decimal_places=2)

    class Meta:
        model = CartItem
        fields = ["id", "book", "quantity", "line_total"]


class AddCartItemSerializer(serializers.Serializer):
    book_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1, default=1)


class OrderItemSerializer(serializers.ModelSerializer):
    subtotal = serializers.DecimalField(read_only=True, max_digits=10, decimal_places=2)

    class Meta:
        model = OrderItem
        fields = ["id", "book", "title_snapshot", "quantity", "unit_price", "subtotal"]


class OrderPaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = ["id", "method", "amount", "currency", "status", "payment_date"]


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    status_display = serializers.CharField(source="get_status_display", read_only=True)

    class Meta:
        model = Order
        fields = [
            "id", "order_number", "status", "status_display", "total_amount",
            "shipping_address", "notes", "items",
            "created_at", "shipped_at", "delivered_at", "cancelled_at",
        ]
        read_only_fields = fields


class OrderDetailSerializer(OrderSerializer):
    payments = OrderPaymentSerializer(many=True, read_only=True)

    class Meta(OrderSerializer.Meta):
        fields = OrderSerializer.Meta.fields + ["payments"]
        read_only_fields = fields


class AdminOrderSerializer(OrderSerializer):
    user = serializers.PrimaryKeyRelatedField(read_only=True)

    class Meta(OrderSerializer.Meta):
        fields = OrderSerializer.Meta.fields + ["user", "updated_at"]
        read_only_fields = fields


class CreateOrderSerializer(serializers.Serializer):
    shipping_address = serializers.CharField(trim_whitespace=True)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class ShippingAddressSerializer(serializers.Serializer):
    shipping_address = serializers.CharField(trim_whitespace=True)


class OrderStatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.Status.choices)
    reason = serializers.CharField(required=False, allow_blank=True, default="")
