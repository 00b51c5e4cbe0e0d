from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response

from apps.utils.pagination import StandardResultsSetPagination
from .filters import OrderFilter
from .models import Order
from .serializers import (
    AddCartItemSerializer,
    AdminOrderSerializer,
    CartItemSerializer,
    CreateOrderSerializer,
    OrderDetailSerializer,
    OrderSerializer,
    OrderStatusUpdateSerializer,
    ShippingAddressSerializer,
)
from .services import CartService, OrderService

UUID_REGEX = r"[0-9a-fA-F-]{36}"


class CartViewSet(viewsets.ViewSet):
    permission_classes = [IsAuthenticated]

    def _render(self, request):
        cart = CartService.summary(request.user)
        return Response({
            "items": CartItemSerializer(cart["items"], many=True).data,
            "count": cart["count"],
            "total_amount": str(cart["total_amount"]),
        })

    def list(self, request):
        return self._render(request)

    @action(detail=False, methods=["post"], url_path="items")
    def add_item(self, request):
        serializer = AddCartItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        CartService.add_item(
            request.user,
            serializer.validated_data["book_id"],
            serializer.validated_data["quantity"],
        )
        return self._render(request)

    @action(detail=False, methods=["delete"], url_path=rf"items/(?P<book_id>{UUID_REGEX})")
    def remove_item(self, request, book_id=None):
        CartService.remove_item(request.user, book_id)
        return self._render(request)

    @action(detail=False, methods=["post"])
    def clear(self, request):
        CartService.clear(request.user)
        return Response({"status": "cleared"})


class OrderViewSet(viewsets.GenericViewSet):
    """
    Customer order endpoints. Business rules live in OrderService;
    domain errors are rendered by the global exception handler.
    """
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = StandardResultsSetPagination
    lookup_value_regex = UUID_REGEX

    def get_queryset(self):
        return OrderService.list_user_orders(self.request.user)

    def list(self, request):
        page = self.paginate_queryset(self.get_queryset())
        return self.get_paginated_response(OrderSerializer(page, many=True).data)

    def create(self, request):
        serializer = CreateOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = OrderService.create_order(
            user=request.user,
            shipping_address=serializer.validated_data["shipping_address"],
            notes=serializer.validated_data.get("notes"),
        )
        return Response(OrderDetailSerializer(order).data, status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        order = OrderService.get_order(pk, request.user)
        return Response(OrderDetailSerializer(order).data)

    @action(detail=False, methods=["get"], url_path=r"by-number/(?P<order_number>[^/]+)")
    def by_number(self, request, order_number=None):
        order = OrderService.get_order_by_number(order_number, request.user)
        return Response(OrderDetailSerializer(order).data)

    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        order = OrderService.cancel_order(pk, request.user)
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=["patch"], url_path="shipping-address")
    def shipping_address(self, request, pk=None):
        serializer = ShippingAddressSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = OrderService.update_shipping_address(
            pk, request.user, serializer.validated_data["shipping_address"]
        )
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=["get"])
    def track(self, request, pk=None):
        return Response(OrderService.track_order(pk, request.user))


class AdminOrderViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Order.objects.select_related("user").prefetch_related("items").order_by("-created_at")
    serializer_class = AdminOrderSerializer
    permission_classes = [IsAdminUser]
    pagination_class = StandardResultsSetPagination
    filter_backends = [DjangoFilterBackend]
    filterset_class = OrderFilter
    lookup_value_regex = UUID_REGEX

    @action(detail=True, methods=["patch"], url_path="status")
    def update_status(self, request, pk=None):
        serializer = OrderStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = OrderService.update_order_status(
            pk,
            serializer.validated_data["status"],
            reason=serializer.validated_data["reason"],
        )
        return Response(AdminOrderSerializer(order).data)
