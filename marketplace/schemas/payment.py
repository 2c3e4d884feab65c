from pydantic import BaseModel


class MitecPaymentRequest(BaseModel):
    """Checkout card form. Rules are enforced by the initiation service so the first violation wins."""
    card_number: str | None = None
    card_name: str | None = None
    exp_month: str | None = None
    exp_year: str | None = None
    cvv: str | None = None
    amount: str | None = None  # "100.00"; taken from the cart total when omitted
    currency: str | None = None
    billing_phone: str | None = None
    billing_email: str | None = None
    billing_information_id: int | None = None
    microsoft_account_id: int | None = None
    payment_method: str = "credit_card"


class MitecPaymentInitiated(BaseModel):
    success: bool = True
    transaction_reference: str
    redirect_url: str
    provider_url: str
    cart_id: int | None = None
    message: str = "Payment initiated"


class MitecWebhookRequest(BaseModel):
    """Relay of a decrypted MITEC response (e.g. from the frontend result page)."""
    transaction_reference: str | None = None
    xml_response: str | None = None
    source: str | None = None  # who relayed it, e.g. "result_page"


class PaymentSessionOut(BaseModel):
    transaction_reference: str
    provider_url: str
    cart_id: int | None = None
    payment_method: str
    created_at: str
    expires_at: str
