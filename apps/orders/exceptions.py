from apps.utils.exceptions import BusinessLogicException, ConflictError, NotFoundError


class EmptyCart(BusinessLogicException):
    default_code = "empty_cart"

    def __init__(self):
        super().__init__("Cart is empty")


class OrderNotFound(NotFoundError):
    default_code = "order_not_found"

    def __init__(self, order_ref):
        super().__init__("Order not found", order=str(order_ref))


class NotCancellable(ConflictError):
    default_code = "not_cancellable"

    def __init__(self, order):
        super().__init__(
            f"Order {order.order_number} cannot be cancelled while {order.status}.",
            order_id=str(order.id),
            status=order.status,
        )


class AddressLocked(ConflictError):
    default_code = "address_locked"

    def __init__(self, order):
        super().__init__(
            f"Shipping address of order {order.order_number} can no longer be changed.",
            order_id=str(order.id),
            status=order.status,
        )


class InvalidTransition(ConflictError):
    default_code = "invalid_transition"

    def __init__(self, current, requested, reason=None):
        message = f"Cannot move order from {current} to {requested}."
        if reason:
            message = f"{message} {reason}"
        super().__init__(message, current_status=str(current), requested=str(requested))
