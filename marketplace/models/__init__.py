from .audit import AuditLog
from .cart import Cart, CartItem
from .error_log import ErrorLog
from .order import Order, OrderItem
from .payment import PaymentResponse, PaymentSession

__all__ = [
    "AuditLog",
    "Cart",
    "CartItem",
    "ErrorLog",
    "Order",
    "OrderItem",
    "PaymentResponse",
    "PaymentSession",
]
