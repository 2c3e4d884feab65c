from .payment import (
    MitecPaymentInitiated,
    MitecPaymentRequest,
    MitecWebhookRequest,
    PaymentSessionOut,
)

__all__ = [
    "MitecPaymentInitiated",
    "MitecPaymentRequest",
    "MitecWebhookRequest",
    "PaymentSessionOut",
]
