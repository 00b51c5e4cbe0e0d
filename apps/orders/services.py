import logging
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from apps.catalog.models import Book
from apps.inventory.exceptions import BookNotFound, BookUnavailable, InsufficientStock, InvalidQuantity
from apps.inventory.services import InventoryService
from apps.notifications.services import queue_order_confirmation
from apps.payments.models import Payment, PaymentStatus
from apps.utils.exceptions import ValidationFailed
from apps.utils.utils import generate_order_number
from .exceptions import AddressLocked, EmptyCart, InvalidTransition, NotCancellable, OrderNotFound
from .models import CartItem, Order, OrderItem
from .state_machine import Event, OrderStateMachine

logger = logging.getLogger(__name__)


def _clean_address(address):
    address = (address or "").strip()
    min_length = settings.MIN_SHIPPING_ADDRESS_LENGTH
    if len(address) < min_length:
        raise ValidationFailed(
            f"Shipping address must be at least {min_length} characters.",
            field="shipping_address",
        )
    return address


class CartService:
    """
    Minimal cart used as the input of order creation.
    """

    @staticmethod
    def get_lines(user):
        return CartItem.objects.filter(user=user).select_related("book").order_by("created_at")

    @staticmethod
    def summary(user):
        lines = list(CartService.get_lines(user))
        total = sum((line.line_total for line in lines), Decimal("0.00"))
        return {"items": lines, "total_amount": total, "count": len(lines)}

    @staticmethod
    @transaction.atomic
    def add_item(user, book_id, quantity: int = 1) -> CartItem:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantity(quantity)

        book = Book.objects.filter(id=book_id).first()
        if book is None:
            raise BookNotFound(book_id)
        if not book.is_active:
            raise BookUnavailable(book)

        line, created = CartItem.objects.select_for_update().get_or_create(
            user=user, book=book, defaults={"quantity": quantity}
        )
        if not created:
            line.quantity += quantity
            line.save(update_fields=["quantity", "updated_at"])
        return line

    @staticmethod
    def remove_item(user, book_id) -> int:
        deleted, _ = CartItem.objects.filter(user=user, book_id=book_id).delete()
        return deleted

    @staticmethod
    def clear(user) -> int:
        deleted, _ = CartItem.objects.filter(user=user).delete()
        return deleted


class OrderService:

    @staticmethod
    def _owned_orders(user):
        return Order.objects.filter(user=user)

    @staticmethod
    def _fetch(queryset, order_ref, *, lock=False):
        if lock:
            queryset = queryset.select_for_update()
        try:
            order = queryset.filter(id=order_ref).first()
        except (DjangoValidationError, ValueError):
            order = None
        if order is None:
            raise OrderNotFound(order_ref)
        return order

    @staticmethod
    def _create_with_unique_number(**fields) -> Order:
        """
        Order numbers are random enough in practice but not guaranteed;
        the UNIQUE column decides and we retry inside a savepoint.
        """
        attempts = settings.ORDER_NUMBER_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            order_number = generate_order_number()
            try:
                with transaction.atomic():
                    return Order.objects.create(order_number=order_number, **fields)
            except IntegrityError:
                if attempt >= attempts:
                    logger.error(f"Could not allocate a unique order number after {attempts} attempts")
                    raise
                logger.warning(f"Order number collision on {order_number}, retrying ({attempt}/{attempts})")

    @staticmethod
    def create_order(user, shipping_address: str, notes=None) -> Order:
        """
        Secure Order Creation:
        1. Validate address (outside the transaction)
        2. Lock cart lines + books, check stock, price server-side
        3. Create order + items, reserve stock, clear cart (one transaction)
        4. Confirmation e-mail after commit
        """
        shipping_address = _clean_address(shipping_address)

        with transaction.atomic():
            lines = list(
                CartItem.objects.select_for_update()
                .filter(user=user)
                .order_by("created_at")
            )
            if not lines:
                raise EmptyCart()

            # A. Lock books in id order, then validate every line before writing
            books = InventoryService.lock_books(line.book_id for line in lines)

            total_amount = Decimal("0.00")
            priced_lines = []
            for line in lines:
                book = books[str(line.book_id)]
                if not book.is_active:
                    raise BookUnavailable(book)
                if book.stock < line.quantity:
                    raise InsufficientStock(book, available=book.stock, requested=line.quantity)

                total_amount += book.price * line.quantity
                priced_lines.append((book, line.quantity))

            # B. Create Order
            order = OrderService._create_with_unique_number(
                user=user,
                total_amount=total_amount,
                status=Order.Status.PENDING,
                shipping_address=shipping_address,
                notes=notes or None,
            )

            # C. Create Order Items (price snapshot)
            OrderItem.objects.bulk_create([
                OrderItem(
                    order=order,
                    book=book,
                    title_snapshot=book.title,
                    unit_price=book.price,
                    quantity=quantity,
                )
                for book, quantity in priced_lines
            ])

            # D. Reserve Stock
            InventoryService.reserve_many(
                [{"book_id": book.id, "quantity": quantity} for book, quantity in priced_lines],
                order=order,
            )

            # E. Clear Cart
            CartItem.objects.filter(id__in=[line.id for line in lines]).delete()

            logger.info(
                f"Order {order.order_number} created for user {user.id}: {len(priced_lines)} lines, total {total_amount}",
                extra={"order_id": order.id, "user_id": user.id},
            )
            queue_order_confirmation(order.id)

        return order

    @staticmethod
    @transaction.atomic
    def cancel_order(order_id, user) -> Order:
        """
        Customer cancellation. Stock release happens in the state machine.
        """
        order = OrderService._fetch(OrderService._owned_orders(user), order_id, lock=True)

        if not order.can_cancel:
            raise NotCancellable(order)

        return OrderStateMachine.fire(order, Event.CANCEL, reason="cancelled by customer")

    @staticmethod
    @transaction.atomic
    def update_shipping_address(order_id, user, shipping_address: str) -> Order:
        shipping_address = _clean_address(shipping_address)
        order = OrderService._fetch(OrderService._owned_orders(user), order_id, lock=True)

        if not order.is_address_editable:
            raise AddressLocked(order)

        order.shipping_address = shipping_address
        order.save(update_fields=["shipping_address", "updated_at"])
        logger.info(f"Shipping address updated for order {order.order_number}", extra={"order_id": order.id})
        return order

    @staticmethod
    def get_order(order_id, user) -> Order:
        queryset = OrderService._owned_orders(user).prefetch_related("items", "payments")
        return OrderService._fetch(queryset, order_id)

    @staticmethod
    def get_order_by_number(order_number: str, user) -> Order:
        order = (
            OrderService._owned_orders(user)
            .prefetch_related("items", "payments")
            .filter(order_number=order_number)
            .first()
        )
        if order is None:
            raise OrderNotFound(order_number)
        return order

    @staticmethod
    def list_user_orders(user):
        return OrderService._owned_orders(user).prefetch_related("items").order_by("-created_at")

    @staticmethod
    def track_order(order_id, user) -> dict:
        order = OrderService._fetch(OrderService._owned_orders(user), order_id)
        Status = Order.Status

        timeline = [{"status": "Order Placed", "date": order.created_at, "active": True}]

        if order.status in (Status.PROCESSING, Status.SHIPPED, Status.DELIVERED):
            timeline.append({"status": "Processing", "date": order.created_at, "active": True})

        if order.status in (Status.SHIPPED, Status.DELIVERED):
            timeline.append({"status": "Shipped", "date": order.shipped_at or order.created_at, "active": True})

        if order.status == Status.DELIVERED:
            timeline.append({"status": "Delivered", "date": order.delivered_at, "active": True})

        if order.status == Status.CANCELLED:
            timeline.append({"status": "Cancelled", "date": order.cancelled_at, "active": True})

        if order.status == Status.REFUNDED:
            timeline.append({"status": "Refunded", "date": order.updated_at, "active": True})

        return {
            "order": {"id": order.id, "order_number": order.order_number, "status": order.status},
            "timeline": timeline,
        }

    @staticmethod
    @transaction.atomic
    def update_order_status(order_id, new_status: str, *, reason: str = "") -> Order:
        """
        Admin path. Every request goes through the transition table;
        REFUNDED additionally needs a refunded payment on the order.
        """
        order = OrderService._fetch(Order.objects.all(), order_id, lock=True)

        if new_status == Order.Status.REFUNDED:
            if not Payment.objects.filter(order=order, status=PaymentStatus.REFUNDED).exists():
                raise InvalidTransition(order.status, new_status, reason="Order has no refunded payment.")

        return OrderStateMachine.transition_to(order, new_status, reason=reason or "admin update")

    @staticmethod
    def advance_after_payment(order: Order) -> Order:
        """
        PENDING -> PROCESSING once money is secured. Later states are left alone.
        Must run inside the caller's transaction.
        """
        if order.status != Order.Status.PENDING:
            logger.warning(
                f"Order {order.order_number} is {order.status}; payment does not advance it.",
                extra={"order_id": order.id},
            )
            return order
        return OrderStateMachine.fire(order, Event.PROCESS, reason="payment secured")
