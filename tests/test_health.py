"""Health and public config endpoints."""
from fastapi.testclient import TestClient


def test_health_returns_ok(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    j = r.json()
    assert j.get("status") == "ok"
    assert j.get("database") in ("ok", "error")
    assert j.get("mitec_configured") is True
    assert j.get("mitec_environment") == "sandbox"


def test_request_id_header(client: TestClient):
    r = client.get("/health")
    assert r.headers.get("X-Request-ID")


def test_mitec_config_is_public_and_non_sensitive(client: TestClient):
    r = client.get("/api/v1/payments/mitec/config")
    assert r.status_code == 200
    j = r.json()
    assert j["success"] is True
    config = j["config"]
    assert config["currency"] == "MXN"
    assert config["supported_currencies"] == ["MXN", "USD"]
    assert set(config["supported_cards"]) == {"visa", "mastercard", "amex"}
    assert "key_hex" not in config
    assert "00112233445566778899aabbccddeeff" not in r.text


def test_not_found_uses_error_body(client: TestClient):
    r = client.get("/mitec-payment/MKT000_NOPE")
    assert r.status_code == 404
    j = r.json()
    assert j["status_code"] == 404
    assert "request_id" in j


def test_init_db_creates_only_missing_tables():
    from sqlmodel import SQLModel

    from marketplace.core.database import engine, init_db
    from marketplace.models import PaymentSession

    PaymentSession.__table__.drop(engine)
    assert init_db(engine) == [PaymentSession.__tablename__]
    assert init_db(engine) == []
    assert set(SQLModel.metadata.tables) >= {"orders", "order_items", "error_logs"}
