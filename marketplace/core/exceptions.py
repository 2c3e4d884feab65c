"""Payment pipeline errors. Each carries a stable ``kind`` and the HTTP status it maps to."""
from typing import Any


class PaymentError(Exception):
    kind = "payment_error"
    http_status = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Extra fields for an error body; the message travels separately."""
        return {"error_kind": self.kind}


class ValidationError(PaymentError):
    """Bad buyer input; user-correctable."""

    kind = "validation"
    http_status = 422

    def __init__(self, message: str, field: str | None = None, **context: Any):
        super().__init__(message, field=field, **context)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        if self.field:
            d["field"] = self.field
        return d


class ConfigurationError(PaymentError):
    """Required server configuration is missing. Never shown to the provider."""

    kind = "configuration"
    http_status = 503

    def __init__(self, message: str, missing: list[str] | None = None, **context: Any):
        super().__init__(message, **context)
        self.missing = missing or []


class EncryptionError(PaymentError):
    kind = "encryption"


class DuplicateReferenceError(PaymentError):
    """Transaction reference already taken; retry with a new one."""

    kind = "duplicate_reference"


class ReferenceGenerationError(PaymentError):
    kind = "reference_generation"


class MalformedResponseError(PaymentError):
    """Callback document is not well-formed XML."""

    kind = "malformed_response"
    http_status = 400


class ReconciliationAmbiguity(PaymentError):
    """Soft: only the recency heuristic matched a session. Logged, never raised past the engine."""

    kind = "reconciliation_ambiguity"


class OrderCreationFailure(PaymentError):
    """Approved payment could not become an order (cart missing or empty)."""

    kind = "order_creation_failure"
