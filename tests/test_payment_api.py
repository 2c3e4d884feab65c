"""MITEC payment endpoints end to end: initiate, serve form, callback, status, admin."""
from datetime import datetime, timedelta

from fastapi.testclient import TestClient
from sqlmodel import select

from conftest import callback_xml, make_cart, make_session
from marketplace.core.security import create_access_token
from marketplace.models import AuditLog, Cart, ErrorLog, Order, PaymentResponse, PaymentSession
from marketplace.services.payment.encryption import encrypt

API = "/api/v1/payments"
CARD = {
    "card_number": "4111111111111111",
    "card_name": "Juan Perez",
    "exp_month": "12",
    "exp_year": "29",
    "cvv": "123",
    "amount": "100.00",
    "currency": "MXN",
    "billing_email": "buyer@example.com",
}


def _initiate(client: TestClient, cart: Cart, **headers) -> str:
    r = client.post(f"{API}/mitec/process", json=CARD, headers={"X-Cart-Token": cart.cart_token, **headers})
    assert r.status_code == 200, r.text
    j = r.json()
    assert j["success"] is True
    assert j["cart_id"] == cart.id
    assert j["redirect_url"].endswith(f"/mitec-payment/{j['transaction_reference']}")
    return j["transaction_reference"]


def test_approved_payment_end_to_end(client: TestClient, db):
    cart = make_cart(db, (4310, 4311))
    ref = _initiate(client, cart)

    form = client.get(f"/mitec-payment/{ref}")
    assert form.status_code == 200
    assert "text/html" in form.headers["content-type"]
    assert 'id="mitecForm"' in form.text
    stored = db.exec(select(PaymentSession).where(PaymentSession.transaction_reference == ref)).one()
    assert form.text == stored.form_html

    r = client.post(f"{API}/mitec/callback", data={"strResponse": callback_xml(folio=ref)})
    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "received", "reference": ref, "status": "approved"}

    db.expire_all()
    orders = db.exec(select(Order)).all()
    assert len(orders) == 1
    order = orders[0]
    assert order.cart_id == cart.id
    assert (order.subtotal_cents, order.tax_cents, order.total_cents) == (8621, 1379, 10000)
    response = db.exec(select(PaymentResponse)).one()
    assert response.order_id == order.id

    status = client.get(f"{API}/status/{ref}")
    assert status.status_code == 200
    j = status.json()
    assert j["payment"]["status"] == "approved"
    assert j["payment"]["amount"] == "100.00"
    assert j["payment"]["order_id"] == order.id
    assert j["order"]["order_number"] == order.order_number
    assert j["order"]["total_amount"] == "100.00"

    # Provider retry of the same document
    again = client.post(f"{API}/mitec/callback", data={"strResponse": callback_xml(folio=ref)})
    assert again.status_code == 200
    db.expire_all()
    assert len(db.exec(select(Order)).all()) == 1


def test_declined_payment_end_to_end(client: TestClient, db):
    cart = make_cart(db)
    ref = _initiate(client, cart)
    r = client.post(
        f"{API}/mitec/callback",
        data={"strResponse": callback_xml(folio=ref, response="declined", cd_error="05", nb_error="Rechazada")},
    )
    assert r.status_code == 200
    assert r.json()["status"] == "error"

    db.expire_all()
    assert db.exec(select(Order)).all() == []
    assert db.get(Cart, cart.id).status == "active"
    j = client.get(f"{API}/status/{ref}").json()
    assert j["payment"]["status"] == "error"
    assert j["payment"]["error_message"] == "Rechazada"
    assert j["order"] is None


def test_encrypted_callback_with_reference_hint(client: TestClient, db):
    cart = make_cart(db)
    ref = _initiate(client, cart)
    # MITEC leaves the reference out; the return URL token carries it
    token = encrypt(callback_xml(), "00112233445566778899aabbccddeeff")
    r = client.post(f"{API}/mitec/callback?token={ref}", data={"strResponse": token})
    assert r.status_code == 200
    assert r.json()["reference"] == ref
    db.expire_all()
    assert len(db.exec(select(Order)).all()) == 1


def test_raw_xml_body_callback(client: TestClient, db):
    cart = make_cart(db)
    ref = _initiate(client, cart)
    r = client.post(
        f"{API}/mitec/callback",
        content=callback_xml(reference=ref),
        headers={"Content-Type": "application/xml"},
    )
    assert r.status_code == 200
    assert r.json()["status"] == "approved"


def test_malformed_callback_is_acknowledged_and_logged(client: TestClient, db):
    r = client.post(f"{API}/mitec/callback", data={"strResponse": "<broken"})
    assert r.status_code == 200
    assert r.json()["success"] is True
    db.expire_all()
    errors = db.exec(select(ErrorLog).where(ErrorLog.error_kind == "malformed_response")).all()
    assert len(errors) == 1
    assert db.exec(select(PaymentResponse)).all() == []


def test_empty_callback_is_acknowledged(client: TestClient):
    r = client.post(f"{API}/mitec/callback", content=b"", headers={"Content-Type": "text/plain"})
    assert r.status_code == 200


def test_webhook(client: TestClient, db):
    cart = make_cart(db)
    ref = _initiate(client, cart)
    r = client.post(f"{API}/mitec/webhook", json={"transaction_reference": ref, "xml_response": callback_xml(folio=ref)})
    assert r.status_code == 200
    assert r.json()["status"] == "approved"
    db.expire_all()
    assert len(db.exec(select(Order)).all()) == 1


def test_webhook_records_relay_source(client: TestClient, db):
    cart = make_cart(db)
    ref = _initiate(client, cart)
    body = {"transaction_reference": ref, "xml_response": callback_xml(folio=ref), "source": "result_page"}
    r = client.post(f"{API}/mitec/webhook", json=body)
    assert r.status_code == 200
    db.expire_all()
    audit = db.exec(select(AuditLog).where(AuditLog.event == "payment_callback")).one()
    assert "source=result_page" in audit.detail
    assert "action=order_created" in audit.detail


def test_webhook_requires_xml(client: TestClient):
    r = client.post(f"{API}/mitec/webhook", json={"transaction_reference": "MKT1_AB"})
    assert r.status_code == 400
    assert r.json()["status_code"] == 400


def test_validation_error_does_not_echo_card(client: TestClient, db):
    cart = make_cart(db)
    r = client.post(
        f"{API}/mitec/process",
        json={**CARD, "cvv": "1"},
        headers={"X-Cart-Token": cart.cart_token},
    )
    assert r.status_code == 422
    j = r.json()
    assert j["success"] is False
    assert j["error_kind"] == "validation"
    assert "4111111111111111" not in r.text
    db.expire_all()
    assert db.exec(select(PaymentSession)).all() == []


def test_amount_defaults_to_cart_total(client: TestClient, db):
    cart = make_cart(db, (4310, 4311))
    body = {k: v for k, v in CARD.items() if k != "amount"}
    r = client.post(f"{API}/mitec/process", json=body, headers={"X-Cart-Token": cart.cart_token})
    assert r.status_code == 200
    db.expire_all()
    audit = db.exec(select(AuditLog).where(AuditLog.event == "payment_initiated")).one()
    assert "amount=100.00" in audit.detail


def test_status_pending_then_unknown(client: TestClient, db):
    make_session(db, "MKT1_LIVE")
    r = client.get(f"{API}/status/MKT1_LIVE")
    assert r.status_code == 200
    assert r.json()["payment"]["status"] == "pending"

    r = client.get(f"{API}/status/MKT1_NOPE")
    assert r.status_code == 404
    j = r.json()
    assert j["status"] == "unknown"
    assert j["error_code"] == "PAYMENT_NOT_FOUND"


def test_expired_form_is_not_served(client: TestClient, db):
    make_session(db, "MKT1_OLD", created_at=datetime.utcnow() - timedelta(minutes=30))
    assert client.get("/mitec-payment/MKT1_OLD").status_code == 404


def test_session_lookup_is_owner_scoped(client: TestClient, db):
    cart = make_cart(db)
    owner = {"Authorization": f"Bearer {create_access_token({'sub': '5'})}"}
    other = {"Authorization": f"Bearer {create_access_token({'sub': '6'})}"}
    ref = _initiate(client, cart, **owner)

    r = client.get(f"{API}/mitec/sessions/{ref}", headers=owner)
    assert r.status_code == 200
    assert r.json()["transaction_reference"] == ref
    assert client.get(f"{API}/mitec/sessions/{ref}", headers=other).status_code == 404


def test_invalid_token_rejected(client: TestClient, db):
    cart = make_cart(db)
    r = client.post(
        f"{API}/mitec/process",
        json=CARD,
        headers={"X-Cart-Token": cart.cart_token, "Authorization": "Bearer not-a-jwt"},
    )
    assert r.status_code == 401


def test_admin_sweep(client: TestClient, db, admin_headers):
    make_session(db, "MKT1_OLD", created_at=datetime.utcnow() - timedelta(minutes=30))
    make_session(db, "MKT2_LIVE")
    assert client.post("/admin/payment-sessions/sweep").status_code == 403
    r = client.post("/admin/payment-sessions/sweep", headers=admin_headers)
    assert r.status_code == 200
    assert r.json() == {"ok": True, "deleted": 1}


def test_admin_orphaned_approvals(client: TestClient, db, admin_headers):
    client.post(f"{API}/mitec/callback", data={"strResponse": callback_xml(reference="MKT404_NONE")})
    r = client.get("/admin/payment-sessions/orphaned-approvals", headers=admin_headers)
    assert r.status_code == 200
    rows = r.json()
    assert len(rows) == 1
    assert rows[0]["transaction_reference"] == "MKT404_NONE"
    assert rows[0]["match_rule"] is None
