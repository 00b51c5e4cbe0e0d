import secrets
import time
from decimal import Decimal, ROUND_HALF_UP


def generate_order_number(prefix="ORD"):
    """
    Human-readable order number: ORD-<epoch millis>-<4 random digits>.
    Not collision-free on its own; callers rely on the unique column and retry.
    """
    millis = int(time.time() * 1000)
    return f"{prefix}-{millis}-{secrets.randbelow(10000):04d}"


def to_minor_units(amount):
    """
    Decimal currency amount -> integer minor units (paise/cents).
    """
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount):
    """
    Integer minor units -> Decimal currency amount.
    """
    return (Decimal(int(amount)) / 100).quantize(Decimal("0.01"))
