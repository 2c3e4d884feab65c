from datetime import datetime

from sqlmodel import Field, SQLModel

from .columns import NaiveDateTime


class Cart(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    cart_token: str = Field(unique=True, index=True)
    user_id: int | None = Field(default=None, index=True)
    status: str = "active"  # active | completed | converted | abandoned
    currency: str = "MXN"
    created_at: datetime = Field(default_factory=datetime.utcnow, sa_type=NaiveDateTime)
    updated_at: datetime | None = Field(default=None, sa_type=NaiveDateTime)
    expires_at: datetime | None = Field(default=None, sa_type=NaiveDateTime)


class CartItem(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    cart_id: int = Field(index=True)
    sku: str
    title: str = ""
    unit_price_cents: int  # smallest unit: MXN centavos (43,10 = 4310)
    quantity: int = 1
    status: str = "active"  # active | saved_for_later
    created_at: datetime = Field(default_factory=datetime.utcnow, sa_type=NaiveDateTime)

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity
