"""Payment gateway integration (PayPal hosted checkout)."""

from .paypal import (
    Gateway,
    GatewayCapture,
    GatewayOrder,
    PayPalClient,
    close_paypal_client,
    format_amount,
    get_gateway,
    get_paypal_client,
)

__all__ = [
    "PayPalClient",
    "GatewayOrder",
    "GatewayCapture",
    "Gateway",
    "get_gateway",
    "get_paypal_client",
    "close_paypal_client",
    "format_amount",
]
