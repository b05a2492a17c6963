"""Checkout orchestration: PayPal order lifecycle mirrored into the store."""

from .models import OrderStatus, PaymentRecord, PaymentStatus
from .service import CheckoutService

__all__ = [
    "CheckoutService",
    "PaymentRecord",
    "PaymentStatus",
    "OrderStatus",
]
