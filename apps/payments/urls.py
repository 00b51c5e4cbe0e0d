from django.urls import path, include
from rest_framework.routers import SimpleRouter
from .views import CardPaymentView, CashOnDeliveryView, PaymentViewSet, RazorpayWebhookView, WalletPaymentView

router = SimpleRouter()
router.register(r"", PaymentViewSet, basename="payments")

urlpatterns = [
    path('card/', CardPaymentView.as_view(), name='payment-card'),
    path('cod/', CashOnDeliveryView.as_view(), name='payment-cod'),
    path('wallet/', WalletPaymentView.as_view(), name='payment-wallet'),
    path('webhook/', RazorpayWebhookView.as_view(), name='payment-webhook'),
    path('', include(router.urls)),
]
