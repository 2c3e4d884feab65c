from datetime import datetime

from sqlmodel import Field, SQLModel

from .columns import NaiveDateTime


class PaymentSession(SQLModel, table=True):
    """Expected outcome of one payment attempt. Past ``expires_at`` it is treated as absent."""

    id: int | None = Field(default=None, primary_key=True)
    transaction_reference: str = Field(unique=True, index=True, max_length=64)
    cart_id: int | None = Field(default=None, index=True)
    user_id: int | None = Field(default=None, index=True)  # None: guest checkout
    billing_information_id: int | None = None
    microsoft_account_id: int | None = None
    payment_method: str = "credit_card"
    provider_url: str = ""
    form_html: str = ""  # served verbatim from /mitec-payment/{reference}
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True, sa_type=NaiveDateTime)
    expires_at: datetime = Field(index=True, sa_type=NaiveDateTime)


class PaymentResponse(SQLModel, table=True):
    """One provider callback. Only ``order_id`` is ever written after insert."""

    id: int | None = Field(default=None, primary_key=True)
    transaction_reference: str = Field(default="", index=True)
    # sha256 of the raw document; a re-delivered callback hits this index
    payload_hash: str = Field(unique=True, index=True, max_length=64)
    payment_session_id: int | None = Field(default=None, index=True)
    cart_id: int | None = None
    user_id: int | None = None
    order_id: int | None = Field(default=None, unique=True)
    payment_status: str = "pending"  # approved | error | pending
    gateway: str = "mitec"
    match_rule: str | None = None  # exact | prefix | recent | supplied; None in degraded mode
    provider_response: str = ""
    auth_code: str = ""
    folio_cpagos: str = ""
    cd_response: str = ""
    cd_error: str = ""
    nb_error: str = ""
    amount_cents: int | None = None
    ds_trans_id: str = ""
    eci: str = ""
    cavv: str = ""
    trans_status: str = ""
    response_code: str = ""
    response_description: str = ""
    card_type: str = ""
    card_last_four: str = ""
    card_name: str = ""
    voucher: str = ""
    voucher_comercio: str = ""
    voucher_cliente: str = ""
    raw_xml_response: str = ""
    provider_date: datetime | None = Field(default=None, sa_type=NaiveDateTime)
    provider_time: str = ""
    ip_address: str | None = None
    user_agent: str | None = None
    extra_data: str | None = None  # JSON: branch, bank auth, protocol, version, friendly response
    created_at: datetime = Field(default_factory=datetime.utcnow, sa_type=NaiveDateTime)
