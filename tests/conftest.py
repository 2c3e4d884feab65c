"""Pytest fixtures: test client, test DB (in-memory SQLite), MITEC config, carts."""
import os
import uuid
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

# In-memory SQLite and a complete MITEC sandbox config; must be set before marketplace is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("MITEC_ENVIRONMENT", "sandbox")
os.environ.setdefault("MITEC_KEY_HEX", "00112233445566778899aabbccddeeff")
os.environ.setdefault("MITEC_ID_COMPANY", "SNBX")
os.environ.setdefault("MITEC_ID_BRANCH", "01SNBXBRNCH")
os.environ.setdefault("MITEC_COUNTRY", "MEX")
os.environ.setdefault("MITEC_BS_USER", "SNBXUSR01")
os.environ.setdefault("MITEC_BS_PWD", "SECRETO")
os.environ.setdefault("MITEC_DATA0", "SNDBX123")
os.environ.setdefault("MITEC_3DS_URL", "https://ssl.e-pago.com.mx/pgs/cobroXml")
os.environ.setdefault("MITEC_RESPONSE_URL", "http://testserver/api/v1/payments/mitec/callback")
os.environ.setdefault("MITEC_MERCHANT_DEFAULT", "123456")
os.environ.setdefault("MITEC_MERCHANT_AMEX", "654321")
# Payment rate limit high so every test can initiate
os.environ.setdefault("RATE_LIMIT_PAYMENT_PER_MINUTE", "1000")

from sqlmodel import Session, SQLModel

from marketplace.core.config import ProviderConfig, settings
from marketplace.core.database import engine, init_db
from marketplace.main import app
from marketplace.models import Cart, CartItem, PaymentSession


@pytest.fixture(autouse=True)
def _fresh_tables():
    """Every test starts from empty tables on the shared in-memory engine."""
    SQLModel.metadata.drop_all(engine)
    init_db(engine)
    yield


@pytest.fixture(scope="function")
def client():
    """TestClient; lifespan creates tables and loads the provider config."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture
def provider_config() -> ProviderConfig:
    return ProviderConfig.from_settings(settings)


@pytest.fixture
def admin_headers():
    return {"X-Admin-Secret": os.environ["ADMIN_SECRET"]}


def make_cart(db: Session, prices_cents=(4310, 4311), status: str = "active", user_id=None) -> Cart:
    cart = Cart(cart_token=uuid.uuid4().hex, status=status, user_id=user_id)
    db.add(cart)
    db.commit()
    db.refresh(cart)
    for i, price in enumerate(prices_cents, start=1):
        db.add(CartItem(cart_id=cart.id, sku=f"SKU-{i}", title=f"Licencia {i}", unit_price_cents=price))
    db.commit()
    return cart


def make_session(
    db: Session,
    reference: str,
    cart_id=None,
    created_at: datetime | None = None,
    ttl: timedelta = timedelta(minutes=10),
) -> PaymentSession:
    created_at = created_at or datetime.utcnow()
    session = PaymentSession(
        transaction_reference=reference,
        cart_id=cart_id,
        form_html="<form></form>",
        created_at=created_at,
        expires_at=created_at + ttl,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def callback_xml(
    reference: str = "",
    folio: str = "",
    response: str = "approved",
    amount: str = "100.00",
    auth: str = "012345",
    cd_error: str = "",
    nb_error: str = "",
) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        "<R3DSRESPONSE>"
        f"<r3ds_reference>{reference}</r3ds_reference>"
        "<r3ds_dsTransId>f25084f0-5b16-4c0a-ae5d-b24808a95e4b</r3ds_dsTransId>"
        "<r3ds_eci>05</r3ds_eci>"
        "<r3ds_transStatus>Y</r3ds_transStatus>"
        "<r3ds_cc_number>411111******1111</r3ds_cc_number>"
        "<CENTEROFPAYMENTS>"
        f"<reference>{folio}</reference>"
        f"<response>{response}</response>"
        f"<auth>{auth}</auth>"
        f"<cd_error>{cd_error}</cd_error>"
        f"<nb_error>{nb_error}</nb_error>"
        "<time>14:05:09</time>"
        "<date>18/10/2026</date>"
        "<cc_type>CREDITO/BANCO/VISA</cc_type>"
        f"<amount>{amount}</amount>"
        "</CENTEROFPAYMENTS>"
        "</R3DSRESPONSE>"
    )
