# apps/notifications/services.py
import logging

from django.db import transaction

logger = logging.getLogger(__name__)


def _enqueue(task, order_id):
    """
    Broker outages must never break the caller: the order is already
    committed when this runs.
    """
    try:
        task.delay(str(order_id))
    except Exception:
        logger.exception(
            f"Could not queue {task.name} for order {order_id}",
            extra={"order_id": order_id},
        )


def queue_order_confirmation(order_id):
    """
    Main entry point for order creation.
    Sends after the surrounding transaction commits; dropped on rollback.
    """
    from .tasks import send_order_confirmation_email

    transaction.on_commit(lambda: _enqueue(send_order_confirmation_email, order_id))


def queue_order_status_update(order_id):
    from .tasks import send_order_status_email

    transaction.on_commit(lambda: _enqueue(send_order_status_email, order_id))
