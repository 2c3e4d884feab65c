from datetime import datetime

from sqlmodel import Field, SQLModel

from .columns import NaiveDateTime


class AuditLog(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    event: str = Field(index=True)  # payment_initiated, payment_callback, rate_limit, etc.
    reference: str | None = Field(default=None, index=True)  # transaction reference, when there is one
    user_id: int | None = Field(default=None, index=True)
    ip: str | None = None
    detail: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow, sa_type=NaiveDateTime)
