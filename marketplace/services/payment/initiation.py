"""
Payment initiation: validate → build payload → encrypt → persist session → render redirect form.

Each stage returns ``(value, failure)``; the first failure ends the pipeline and becomes the
``InitiationResult``. Only unexpected faults raise.
"""
from __future__ import annotations

import logging
import secrets
import time
from datetime import timedelta
from typing import Callable, NamedTuple

from sqlmodel import Session

from marketplace.core.config import ProviderConfig, settings
from marketplace.core.exceptions import (
    DuplicateReferenceError,
    PaymentError,
    ReferenceGenerationError,
)
from marketplace.core.security import mask_card_number
from marketplace.models import AuditLog
from marketplace.schemas.payment import MitecPaymentRequest
from marketplace.services.payment.encryption import encrypt
from marketplace.services.payment.forms import render_redirect_form
from marketplace.services.payment.session_store import PaymentSessionStore
from marketplace.services.payment.validation import ValidatedPayment, validate_payment_input
from marketplace.services.payment.xml_builder import (
    BillingData,
    TransactionData,
    TransactionXmlBuilder,
    detect_card_network,
)

log = logging.getLogger("marketplace.payment")

REFERENCE_PREFIX = "MKT"
MAX_REFERENCE_ATTEMPTS = 3


def generate_reference() -> str:
    """``MKT<epoch microseconds>_<8 hex chars>``; only [A-Z0-9_] so MITEC round-trips it."""
    return f"{REFERENCE_PREFIX}{time.time_ns() // 1000}_{secrets.token_hex(4).upper()}"


class InitiationResult(NamedTuple):
    success: bool
    transaction_reference: str | None = None
    form_html: str | None = None
    form_xml: str | None = None
    provider_url: str | None = None
    encrypted_payload: str | None = None
    cart_id: int | None = None
    error_kind: str | None = None
    message: str | None = None

    @classmethod
    def failed(cls, error: PaymentError, reference: str | None = None) -> "InitiationResult":
        return cls(success=False, transaction_reference=reference, error_kind=error.kind, message=error.message)


class _Payload(NamedTuple):
    reference: str
    form_xml: str
    encrypted: str
    form_html: str


class PaymentInitiationService:
    def __init__(
        self,
        db: Session,
        config: ProviderConfig,
        builder: TransactionXmlBuilder | None = None,
        reference_factory: Callable[[], str] | None = None,
        session_ttl: timedelta | None = None,
    ):
        self.db = db
        self.config = config
        self.builder = builder or TransactionXmlBuilder(config)
        self.reference_factory = reference_factory or generate_reference
        if session_ttl is None:
            session_ttl = timedelta(minutes=settings.payment_session_ttl_minutes)
        self.session_ttl = session_ttl
        self.sessions = PaymentSessionStore(db)

    def browser_ip(self, client_ip: str | None) -> str:
        if not self.config.is_production and self.config.test_ip:
            return self.config.test_ip
        return client_ip or ""

    def _build_payload(
        self, reference: str, payment: ValidatedPayment, client_ip: str | None
    ) -> tuple[_Payload | None, PaymentError | None]:
        try:
            xml = self.builder.build_transaction_xml(
                TransactionData(reference=reference, amount=payment.amount, currency=payment.currency),
                payment.card,
                BillingData(phone=payment.phone, email=payment.email, ip=self.browser_ip(client_ip)),
            )
            encrypted = encrypt(xml, self.config.key_hex)
            form_xml = self.builder.build_form_xml(encrypted)
        except PaymentError as e:
            return None, e
        form_html = render_redirect_form(self.config.three_ds_url, form_xml, reference)
        return _Payload(reference=reference, form_xml=form_xml, encrypted=encrypted, form_html=form_html), None

    def process_payment(
        self,
        data: MitecPaymentRequest,
        user_id: int | None = None,
        cart_id: int | None = None,
        client_ip: str | None = None,
        cart_total_cents: int | None = None,
    ) -> InitiationResult:
        payment, error = validate_payment_input(data, self.config, cart_total_cents)
        if error:
            log.info("payment validation failed field=%s user_id=%s", error.field, user_id)
            return InitiationResult.failed(error)

        payload = None
        for attempt in range(1, MAX_REFERENCE_ATTEMPTS + 1):
            reference = self.reference_factory()
            payload, error = self._build_payload(reference, payment, client_ip)
            if error:
                log.error("payment payload failed reference=%s kind=%s: %s", reference, error.kind, error.message)
                return InitiationResult.failed(error, reference)
            try:
                self.sessions.create(
                    reference,
                    cart_id=cart_id,
                    user_id=user_id,
                    form_html=payload.form_html,
                    ttl=self.session_ttl,
                    provider_url=self.config.three_ds_url,
                    billing_information_id=data.billing_information_id,
                    microsoft_account_id=data.microsoft_account_id,
                    payment_method=data.payment_method,
                )
                break
            except DuplicateReferenceError:
                log.warning("reference collision reference=%s attempt=%d", reference, attempt)
                payload = None
        if payload is None:
            return InitiationResult.failed(
                ReferenceGenerationError(f"No unique reference after {MAX_REFERENCE_ATTEMPTS} attempts")
            )

        masked = mask_card_number(payment.card.number)
        self.db.add(
            AuditLog(
                event="payment_initiated",
                reference=payload.reference,
                user_id=user_id,
                ip=client_ip,
                detail=f"card={masked} amount={payment.amount} currency={payment.currency}",
            )
        )
        self.db.commit()
        log.info(
            "payment initiated reference=%s card=%s network=%s amount=%s currency=%s cart_id=%s",
            payload.reference,
            masked,
            detect_card_network(payment.card.number),
            payment.amount,
            payment.currency,
            cart_id,
        )
        return InitiationResult(
            success=True,
            transaction_reference=payload.reference,
            form_html=payload.form_html,
            form_xml=payload.form_xml,
            provider_url=self.config.three_ds_url,
            encrypted_payload=payload.encrypted,
            cart_id=cart_id,
        )
