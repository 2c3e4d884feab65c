from datetime import datetime

from sqlmodel import Field, SQLModel

from .columns import NaiveDateTime


class Order(SQLModel, table=True):
    """Created exactly once from an approved payment. The unique columns are the idempotency gate."""

    __tablename__ = "orders"
    id: int | None = Field(default=None, primary_key=True)
    order_number: str = Field(unique=True, index=True)
    transaction_reference: str = Field(unique=True, index=True)
    payment_response_id: int | None = Field(default=None, unique=True)
    user_id: int | None = Field(default=None, index=True)
    cart_id: int | None = Field(default=None, index=True)
    billing_information_id: int | None = None
    microsoft_account_id: int | None = None
    status: str = "processing"  # processing | cancelled
    payment_status: str = "paid"  # paid | failed
    subtotal_cents: int = 0
    tax_cents: int = 0
    total_cents: int = 0
    currency: str = "MXN"
    payment_method: str = "credit_card"
    payment_gateway: str = "mitec"
    auth_code: str | None = None
    folio: str | None = None
    paid_at: datetime | None = Field(default=None, sa_type=NaiveDateTime)
    cancelled_at: datetime | None = Field(default=None, sa_type=NaiveDateTime)
    cancellation_reason: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow, sa_type=NaiveDateTime)


class OrderItem(SQLModel, table=True):
    __tablename__ = "order_items"
    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(index=True)
    sku: str
    title: str = ""
    unit_price_cents: int
    quantity: int = 1
    line_total_cents: int
