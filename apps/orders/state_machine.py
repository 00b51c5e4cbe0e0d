"""
Order status state machine.

Every status change goes through an explicit `(from_status, event) -> to_status`
table; pairs missing from the table are rejected with InvalidTransition.
Side effects (lifecycle timestamps, stock release on cancellation) are applied
here and nowhere else.
"""
import logging
from django.db import transaction
from django.utils import timezone

from apps.inventory.services import InventoryService
from apps.notifications.services import queue_order_status_update
from .exceptions import InvalidTransition
from .models import Order

logger = logging.getLogger(__name__)

Status = Order.Status


class Event:
    PROCESS = "process"
    SHIP = "ship"
    DELIVER = "deliver"
    CANCEL = "cancel"
    REFUND = "refund"


TRANSITIONS = {
    (Status.PENDING, Event.PROCESS): Status.PROCESSING,
    (Status.PENDING, Event.CANCEL): Status.CANCELLED,
    (Status.PROCESSING, Event.CANCEL): Status.CANCELLED,
    (Status.PROCESSING, Event.SHIP): Status.SHIPPED,
    (Status.SHIPPED, Event.DELIVER): Status.DELIVERED,
}
# A refunded payment can close out an order from any other state
TRANSITIONS.update({
    (status, Event.REFUND): Status.REFUNDED
    for status in Status
    if status != Status.REFUNDED
})

# Admin callers ask for a target status; map it to the event that produces it
EVENT_FOR_STATUS = {
    Status.PROCESSING: Event.PROCESS,
    Status.SHIPPED: Event.SHIP,
    Status.DELIVERED: Event.DELIVER,
    Status.CANCELLED: Event.CANCEL,
    Status.REFUNDED: Event.REFUND,
}
EVENT_TARGET_LABELS = {event: str(status) for status, event in EVENT_FOR_STATUS.items()}

TERMINAL_STATUSES = frozenset({Status.DELIVERED, Status.CANCELLED, Status.REFUNDED})


class OrderStateMachine:

    @staticmethod
    def target(status, event):
        return TRANSITIONS.get((Status(status), event))

    @staticmethod
    def can_fire(status, event) -> bool:
        return OrderStateMachine.target(status, event) is not None

    @staticmethod
    def allowed_events(status):
        status = Status(status)
        return [event for (from_status, event) in TRANSITIONS if from_status == status]

    @staticmethod
    @transaction.atomic
    def fire(order: Order, event: str, *, reason: str = "") -> Order:
        """
        Applies `event` to the order under a row lock and returns the
        refreshed, saved instance.
        """
        order = Order.objects.select_for_update().get(pk=order.pk)
        previous = order.status
        new_status = OrderStateMachine.target(previous, event)

        if new_status is None:
            raise InvalidTransition(previous, EVENT_TARGET_LABELS.get(event, event))

        now = timezone.now()
        update_fields = ["status", "updated_at"]

        if new_status == Status.SHIPPED and order.shipped_at is None:
            order.shipped_at = now
            update_fields.append("shipped_at")

        elif new_status == Status.DELIVERED and order.delivered_at is None:
            order.delivered_at = now
            update_fields.append("delivered_at")

        elif new_status == Status.CANCELLED:
            if order.cancelled_at is None:
                order.cancelled_at = now
                update_fields.append("cancelled_at")
            if previous != Status.CANCELLED:
                items = [
                    {"book_id": item.book_id, "quantity": item.quantity}
                    for item in order.items.all()
                ]
                InventoryService.release_many(items, order=order)

        order.status = new_status
        order.save(update_fields=update_fields)

        logger.info(
            f"Order {order.order_number}: {previous} -> {new_status} ({event}) {reason}".rstrip(),
            extra={"order_id": order.id},
        )
        queue_order_status_update(order.id)
        return order

    @staticmethod
    def transition_to(order: Order, new_status: str, *, reason: str = "") -> Order:
        event = EVENT_FOR_STATUS.get(Status(new_status)) if new_status in Status.values else None
        if event is None:
            raise InvalidTransition(order.status, new_status)
        return OrderStateMachine.fire(order, event, reason=reason)
