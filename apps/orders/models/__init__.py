"""
Top-level models import shim for the Orders app.

Keeps `from apps.orders.models import Order` working while the actual
models live in separate modules.
"""

from .order import *          # Order
from .item import *           # OrderItem
from .cart import *           # CartItem
