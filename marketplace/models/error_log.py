"""Central error log: filled by the global exception handler and the callback endpoint."""
from datetime import datetime

from sqlmodel import Field, SQLModel

from .columns import NaiveDateTime


class ErrorLog(SQLModel, table=True):
    __tablename__ = "error_logs"
    id: int | None = Field(default=None, primary_key=True)
    user_id: int | None = Field(default=None, index=True)
    endpoint: str | None = None
    method: str | None = None
    error_kind: str | None = Field(default=None, index=True)
    reference: str | None = Field(default=None, index=True)
    error_message: str | None = None
    stack_trace: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow, sa_type=NaiveDateTime)
