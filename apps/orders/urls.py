from django.urls import path, include
from rest_framework.routers import SimpleRouter
from .views import AdminOrderViewSet, CartViewSet, OrderViewSet

router = SimpleRouter()
# Fixed prefixes first; the customer routes sit on the empty prefix
router.register(r"cart", CartViewSet, basename="cart")
router.register(r"admin/orders", AdminOrderViewSet, basename="admin-orders")
router.register(r"", OrderViewSet, basename="orders")

urlpatterns = [
    path("", include(router.urls)),
]
