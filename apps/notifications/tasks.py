import logging
from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


def _load_order(order_id):
    from apps.orders.models import Order

    return (
        Order.objects
        .select_related("user")
        .prefetch_related("items")
        .filter(id=order_id)
        .first()
    )


def _deliver(order, subject, body):
    email = getattr(order.user, "email", "")
    if not email:
        logger.warning(
            f"Cannot send e-mail for order {order.order_number}: user {order.user_id} has no address.",
            extra={"order_id": order.id, "user_id": order.user_id},
        )
        return False

    send_mail(
        subject=subject,
        message=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[email],
        fail_silently=False,
    )
    logger.info(
        f"E-mail '{subject}' sent for order {order.order_number}",
        extra={"order_id": order.id, "user_id": order.user_id},
    )
    return True


@shared_task(bind=True, max_retries=3, default_retry_delay=10)
def send_order_confirmation_email(self, order_id: str):
    order = _load_order(order_id)
    if order is None:
        logger.error(f"Order {order_id} not found for confirmation e-mail.")
        return False

    lines = "\n".join(
        f"- {item.title_snapshot} x {item.quantity} @ {item.unit_price}"
        for item in order.items.all()
    )
    body = (
        f"Thank you for your order {order.order_number}.\n\n"
        f"{lines}\n\n"
        f"Total: {order.total_amount}\n"
        f"Ship to: {order.shipping_address}\n"
    )
    try:
        return _deliver(order, f"Order {order.order_number} confirmed", body)
    except Exception as exc:
        logger.exception(f"Failed to send confirmation for order {order_id}")
        raise self.retry(exc=exc)


@shared_task(bind=True, max_retries=3, default_retry_delay=10)
def send_order_status_email(self, order_id: str):
    order = _load_order(order_id)
    if order is None:
        logger.error(f"Order {order_id} not found for status e-mail.")
        return False

    body = (
        f"Your order {order.order_number} is now {order.get_status_display()}.\n"
    )
    try:
        return _deliver(order, f"Order {order.order_number}: {order.get_status_display()}", body)
    except Exception as exc:
        logger.exception(f"Failed to send status update for order {order_id}")
        raise self.retry(exc=exc)
