from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.utils.pagination import StandardResultsSetPagination
from .serializers import (
    InitiatePaymentSerializer,
    PaymentSerializer,
    PaymentStatusUpdateSerializer,
    RefundSerializer,
    WalletPaymentSerializer,
)
from .services import PaymentService

UUID_REGEX = r"[0-9a-fA-F-]{36}"


class CardPaymentView(APIView):
    """
    Creates a Razorpay order and returns what the checkout SDK needs.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = InitiatePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = PaymentService.create_card_payment(serializer.validated_data["order_id"], request.user)
        return Response(data, status=status.HTTP_201_CREATED)


class CashOnDeliveryView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = InitiatePaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = PaymentService.create_cash_on_delivery(serializer.validated_data["order_id"], request.user)
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


class WalletPaymentView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = WalletPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = PaymentService.create_wallet_payment(
            serializer.validated_data["order_id"],
            request.user,
            serializer.validated_data["external_ref"],
        )
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)


class RazorpayWebhookView(APIView):
    """
    Handles Razorpay Webhooks with Strict Signature Verification.
    Must read the raw body, so request.data is never touched here.
    """
    permission_classes = [AllowAny]  # Allow public access for webhook
    authentication_classes = []

    def post(self, request, *args, **kwargs):
        result = PaymentService.handle_gateway_webhook(
            request.body,
            request.headers.get("X-Razorpay-Signature"),
            event_id=request.headers.get("X-Razorpay-Event-Id"),
        )
        return Response(result, status=status.HTTP_200_OK)


class PaymentViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Payment history for the caller (every payment for staff),
    plus admin refund / status override.
    """
    serializer_class = PaymentSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = StandardResultsSetPagination
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["status", "method"]
    lookup_value_regex = UUID_REGEX

    def get_queryset(self):
        return PaymentService.visible_payments(self.request.user).order_by("-created_at")

    def retrieve(self, request, pk=None):
        payment = PaymentService.get_payment(pk, request.user)
        return Response(PaymentSerializer(payment).data)

    @action(detail=False, methods=["get"], url_path=rf"order/(?P<order_id>{UUID_REGEX})")
    def for_order(self, request, order_id=None):
        payments = PaymentService.list_order_payments(order_id, request.user)
        return Response(PaymentSerializer(payments, many=True).data)

    @action(detail=True, methods=["post"], permission_classes=[IsAdminUser])
    def refund(self, request, pk=None):
        serializer = RefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = PaymentService.refund_payment(pk, serializer.validated_data["reason"])
        return Response(PaymentSerializer(payment).data)

    @action(detail=True, methods=["patch"], url_path="status", permission_classes=[IsAdminUser])
    def update_status(self, request, pk=None):
        serializer = PaymentStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = PaymentService.update_payment_status(
            pk,
            serializer.validated_data["status"],
            reason=serializer.validated_data["reason"],
        )
        return Response(PaymentSerializer(payment).data)
