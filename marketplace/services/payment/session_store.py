"""PaymentSession persistence. Every lookup hides expired rows; the sweep only reclaims space."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from marketplace.core.exceptions import DuplicateReferenceError
from marketplace.models import PaymentSession

log = logging.getLogger("marketplace.payment")


class PaymentSessionStore:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        reference: str,
        cart_id: int | None,
        user_id: int | None,
        form_html: str,
        ttl: timedelta,
        provider_url: str = "",
        billing_information_id: int | None = None,
        microsoft_account_id: int | None = None,
        payment_method: str = "credit_card",
    ) -> PaymentSession:
        now = datetime.utcnow()
        session = PaymentSession(
            transaction_reference=reference,
            cart_id=cart_id,
            user_id=user_id,
            form_html=form_html,
            provider_url=provider_url,
            billing_information_id=billing_information_id,
            microsoft_account_id=microsoft_account_id,
            payment_method=payment_method or "credit_card",
            created_at=now,
            expires_at=now + ttl,
        )
        self.db.add(session)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise DuplicateReferenceError(f"Reference already in use: {reference}", reference=reference) from None
        self.db.refresh(session)
        return session

    def _live(self, now: datetime | None = None):
        return select(PaymentSession).where(PaymentSession.expires_at > (now or datetime.utcnow()))

    def find_by_reference(self, reference: str) -> PaymentSession | None:
        if not reference:
            return None
        stmt = self._live().where(PaymentSession.transaction_reference == reference)
        return self.db.exec(stmt).first()

    def find_by_prefix(self, prefix: str) -> PaymentSession | None:
        """Newest live session whose reference starts with ``prefix``."""
        if not prefix:
            return None
        stmt = (
            self._live()
            .where(PaymentSession.transaction_reference.startswith(prefix, autoescape=True))
            .order_by(PaymentSession.created_at.desc(), PaymentSession.id.desc())
        )
        return self.db.exec(stmt).first()

    def find_most_recent(self, since: datetime) -> PaymentSession | None:
        stmt = (
            self._live()
            .where(PaymentSession.created_at >= since)
            .order_by(PaymentSession.created_at.desc(), PaymentSession.id.desc())
        )
        return self.db.exec(stmt).first()

    def sweep_expired(self) -> int:
        result = self.db.exec(delete(PaymentSession).where(PaymentSession.expires_at <= datetime.utcnow()))
        self.db.commit()
        count = result.rowcount or 0
        if count:
            log.info("payment sessions swept count=%d", count)
        return count
