"""PaymentSession store: uniqueness, expiry visibility, lookups, sweep."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import DateTime

from conftest import make_session
from marketplace.core.exceptions import DuplicateReferenceError
from marketplace.models import Cart, Order, PaymentResponse, PaymentSession
from marketplace.services.payment.session_store import PaymentSessionStore


def test_create_and_find(db):
    store = PaymentSessionStore(db)
    created = store.create("MKT100_AAAA", cart_id=7, user_id=3, form_html="<form/>", ttl=timedelta(minutes=10))
    found = store.find_by_reference("MKT100_AAAA")
    assert found is not None
    assert found.id == created.id
    assert found.cart_id == 7
    assert found.form_html == "<form/>"
    assert found.expires_at > found.created_at


def test_duplicate_reference_raises(db):
    store = PaymentSessionStore(db)
    store.create("MKT100_AAAA", cart_id=None, user_id=None, form_html="", ttl=timedelta(minutes=10))
    with pytest.raises(DuplicateReferenceError):
        store.create("MKT100_AAAA", cart_id=None, user_id=None, form_html="", ttl=timedelta(minutes=10))
    # Store still usable after the rollback
    assert store.find_by_reference("MKT100_AAAA") is not None


def test_expired_session_invisible_before_sweep(db):
    store = PaymentSessionStore(db)
    store.create("MKT100_AAAA", cart_id=None, user_id=None, form_html="", ttl=timedelta(0))
    assert store.find_by_reference("MKT100_AAAA") is None
    assert store.find_by_prefix("MKT100") is None
    assert store.find_most_recent(datetime.utcnow() - timedelta(hours=2)) is None


def test_find_by_prefix_returns_newest(db):
    now = datetime.utcnow()
    make_session(db, "MKT123_OLD", created_at=now - timedelta(minutes=5))
    make_session(db, "MKT123_NEW", created_at=now - timedelta(minutes=1))
    make_session(db, "MKT999_OTHER", created_at=now)
    assert PaymentSessionStore(db).find_by_prefix("MKT123").transaction_reference == "MKT123_NEW"


def test_prefix_wildcards_are_literal(db):
    make_session(db, "MKT123_ABC")
    assert PaymentSessionStore(db).find_by_prefix("MKT1%") is None


def test_find_most_recent_respects_window(db):
    now = datetime.utcnow()
    make_session(db, "MKT1_OLD", created_at=now - timedelta(hours=3), ttl=timedelta(hours=4))
    store = PaymentSessionStore(db)
    assert store.find_most_recent(now - timedelta(hours=2)) is None
    make_session(db, "MKT2_NEW", created_at=now - timedelta(minutes=30))
    assert store.find_most_recent(now - timedelta(hours=2)).transaction_reference == "MKT2_NEW"


def test_sweep_removes_only_expired(db):
    now = datetime.utcnow()
    make_session(db, "MKT1_GONE", created_at=now - timedelta(minutes=20), ttl=timedelta(minutes=10))
    make_session(db, "MKT2_LIVE", created_at=now)
    store = PaymentSessionStore(db)
    assert store.sweep_expired() == 1
    assert store.sweep_expired() == 0
    assert store.find_by_reference("MKT2_LIVE") is not None


def test_empty_reference_finds_nothing(db):
    make_session(db, "MKT1_A")
    store = PaymentSessionStore(db)
    assert store.find_by_reference("") is None
    assert store.find_by_prefix("") is None


def test_timestamps_stay_naive_utc(db):
    store = PaymentSessionStore(db)
    store.create("MKT100_AAAA", cart_id=None, user_id=None, form_html="", ttl=timedelta(minutes=10))
    db.expire_all()
    found = store.find_by_reference("MKT100_AAAA")
    assert found.created_at.tzinfo is None
    assert found.expires_at.tzinfo is None
    # Compared against utcnow() without a naive/aware TypeError
    assert found.expires_at > datetime.utcnow()
    for table in (PaymentSession, PaymentResponse, Order, Cart):
        for column in table.__table__.columns:
            if isinstance(column.type, DateTime):
                assert column.type.timezone is False, f"{table.__tablename__}.{column.name}"
