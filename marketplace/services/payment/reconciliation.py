"""
Callback reconciliation: match the callback to a payment session, record it once, then create
exactly one order (approved) or compensate (error).

At-most-one-order is carried by the database: ``paymentresponse.payload_hash``,
``paymentresponse.order_id``, ``orders.transaction_reference`` and ``orders.payment_response_id``
are unique, and the response is stamped with a conditional ``UPDATE ... WHERE order_id IS NULL``.
A lost race rolls back and reports the order that won.
"""
from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from functools import partial
from typing import Callable, NamedTuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from marketplace.core.config import settings
from marketplace.core.exceptions import OrderCreationFailure, ReconciliationAmbiguity
from marketplace.models import ErrorLog, Order, PaymentResponse, PaymentSession
from marketplace.services.carts import CartService
from marketplace.services.orders import OrderService
from marketplace.services.payment.callback_parser import (
    ProviderCallback,
    derive_status,
    parse_provider_datetime,
)
from marketplace.services.payment.session_store import PaymentSessionStore

log = logging.getLogger("marketplace.reconciliation")

Matcher = Callable[[ProviderCallback, PaymentSessionStore], "PaymentSession | None"]


def match_exact(callback: ProviderCallback, store: PaymentSessionStore) -> PaymentSession | None:
    for reference in (callback.r3ds_reference, callback.folio):
        if reference:
            session = store.find_by_reference(reference)
            if session is not None:
                return session
    return None


def match_prefix(callback: ProviderCallback, store: PaymentSessionStore) -> PaymentSession | None:
    """``MKT123_XYZ`` finds ``MKT123_ABC``: everything before the first underscore must match."""
    prefix = callback.reference.split("_", 1)[0]
    if not prefix:
        return None
    return store.find_by_prefix(prefix)


def match_recent(
    callback: ProviderCallback,
    store: PaymentSessionStore,
    window: timedelta = timedelta(hours=2),
) -> PaymentSession | None:
    """Newest live session inside ``window``. A guess; only tried when MITEC sent some reference."""
    if not callback.reference:
        return None
    return store.find_most_recent(datetime.utcnow() - window)


def default_matchers(recency_window: timedelta | None = None) -> list[tuple[str, Matcher]]:
    window = recency_window or timedelta(hours=settings.reconciliation_recency_hours)
    return [
        ("exact", match_exact),
        ("prefix", match_prefix),
        ("recent", partial(match_recent, window=window)),
    ]


def resolve_session(
    callback: ProviderCallback,
    store: PaymentSessionStore,
    matchers: list[tuple[str, Matcher]],
) -> tuple[PaymentSession | None, str | None]:
    """First matcher that returns a session wins: (session, rule name)."""
    for name, matcher in matchers:
        session = matcher(callback, store)
        if session is not None:
            return session, name
    return None, None


def payload_hash(callback: ProviderCallback, raw_xml: str | None) -> str:
    source = raw_xml.strip() if raw_xml and raw_xml.strip() else json.dumps(callback._asdict(), sort_keys=True)
    return hashlib.sha256(source.encode("utf-8")).hexdigest()


def _amount_cents(amount: str) -> int | None:
    try:
        return int((Decimal(amount.replace(",", "").strip()) * 100).quantize(Decimal(1)))
    except (InvalidOperation, ValueError):
        return None


class ReconciliationOutcome(NamedTuple):
    payment_response: PaymentResponse
    session: PaymentSession | None
    match_rule: str | None
    low_confidence: bool
    duplicate: bool
    action: str  # order_created | order_exists | order_aborted | compensated | recorded
    order_id: int | None = None


class ReconciliationEngine:
    def __init__(
        self,
        db: Session,
        orders: OrderService | None = None,
        carts: CartService | None = None,
        matchers: list[tuple[str, Matcher]] | None = None,
        retry_days: int | None = None,
    ):
        self.db = db
        self.carts = carts or CartService(db)
        self.orders = orders or OrderService(db, self.carts)
        self.sessions = PaymentSessionStore(db)
        self.matchers = matchers if matchers is not None else default_matchers()
        self.retry_days = settings.cart_retry_days if retry_days is None else retry_days

    def reconcile(
        self,
        callback: ProviderCallback,
        raw_xml: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        session: PaymentSession | None = None,
    ) -> ReconciliationOutcome:
        rule = "supplied" if session is not None else None
        low_confidence = False
        if session is None:
            session, rule = resolve_session(callback, self.sessions, self.matchers)
            if rule == "recent":
                low_confidence = True
                ambiguity = ReconciliationAmbiguity(
                    "Session matched by recency only",
                    reference=callback.reference,
                    session_reference=session.transaction_reference,
                )
                log.warning(
                    "low_confidence match kind=%s callback_reference=%s session_reference=%s",
                    ambiguity.kind,
                    callback.reference,
                    session.transaction_reference,
                )
            elif session is None:
                log.warning("degraded reconciliation: no session callback_reference=%s", callback.reference)

        response, duplicate = self._record(callback, raw_xml, session, rule, ip_address, user_agent)
        if duplicate:
            log.info("duplicate callback payment_response_id=%s reference=%s", response.id, response.transaction_reference)

        order_id = response.order_id
        if response.payment_status == "approved":
            action, order_id = self._materialize_order(response, session)
        elif response.payment_status == "error":
            action = self._compensate(response, session)
        else:
            action = "recorded"

        log.info(
            "reconciled reference=%s status=%s rule=%s action=%s order_id=%s duplicate=%s",
            response.transaction_reference,
            response.payment_status,
            rule,
            action,
            order_id,
            duplicate,
        )
        return ReconciliationOutcome(
            payment_response=response,
            session=session,
            match_rule=rule,
            low_confidence=low_confidence,
            duplicate=duplicate,
            action=action,
            order_id=order_id,
        )

    def _find_by_hash(self, digest: str) -> PaymentResponse | None:
        return self.db.exec(select(PaymentResponse).where(PaymentResponse.payload_hash == digest)).first()

    def _record(
        self,
        callback: ProviderCallback,
        raw_xml: str | None,
        session: PaymentSession | None,
        rule: str | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> tuple[PaymentResponse, bool]:
        digest = payload_hash(callback, raw_xml)
        existing = self._find_by_hash(digest)
        if existing is not None:
            return existing, True

        extra = {
            "provider_reference": callback.reference,
            "auth_number": callback.auth_number,
            "branch": callback.branch,
            "bank_authorization": callback.bank_authorization,
            "auth_full": callback.auth_full,
            "protocol": callback.protocol,
            "version": callback.version,
            "friendly_response": callback.friendly_response,
        }
        response = PaymentResponse(
            transaction_reference=session.transaction_reference if session else callback.reference,
            payload_hash=digest,
            payment_session_id=session.id if session else None,
            cart_id=session.cart_id if session else None,
            user_id=session.user_id if session else None,
            payment_status=derive_status(callback),
            match_rule=rule,
            provider_response=callback.response,
            auth_code=callback.auth,
            folio_cpagos=callback.folio,
            cd_response=callback.cd_response,
            cd_error=callback.cd_error,
            nb_error=callback.nb_error,
            amount_cents=_amount_cents(callback.amount) if callback.amount else None,
            ds_trans_id=callback.ds_trans_id,
            eci=callback.eci,
            cavv=callback.cavv,
            trans_status=callback.trans_status,
            response_code=callback.response_code,
            response_description=callback.response_description,
            card_type=callback.cc_type,
            card_last_four=callback.card_last_four,
            card_name=callback.cc_name,
            voucher=callback.voucher,
            voucher_comercio=callback.voucher_comercio,
            voucher_cliente=callback.voucher_cliente,
            raw_xml_response=raw_xml or "",
            provider_date=parse_provider_datetime(callback.date, callback.time),
            provider_time=callback.time,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:500] or None,
            extra_data=json.dumps({k: v for k, v in extra.items() if v}),
        )
        self.db.add(response)
        try:
            self.db.commit()
        except IntegrityError:
            # Same payload committed by a concurrent delivery
            self.db.rollback()
            existing = self._find_by_hash(digest)
            if existing is None:
                raise
            return existing, True
        self.db.refresh(response)
        return response, False

    def _abort_order(self, response: PaymentResponse, reason: str, cart_id: int | None) -> tuple[str, None]:
        failure = OrderCreationFailure(reason, reference=response.transaction_reference, cart_id=cart_id)
        log.error(
            "order not created kind=%s reference=%s payment_response_id=%s cart_id=%s: %s",
            failure.kind,
            response.transaction_reference,
            response.id,
            cart_id,
            reason,
        )
        self.db.add(
            ErrorLog(
                endpoint="reconciliation",
                method="CALLBACK",
                error_kind=failure.kind,
                reference=response.transaction_reference,
                error_message=f"{reason} (payment_response_id={response.id} cart_id={cart_id})",
            )
        )
        self.db.commit()
        return "order_aborted", None

    def _existing_order_id(self, response: PaymentResponse) -> int | None:
        """Order already produced for this response's reference by any delivery."""
        if not response.transaction_reference:
            return None
        sibling = self.db.exec(
            select(PaymentResponse).where(
                PaymentResponse.transaction_reference == response.transaction_reference,
                PaymentResponse.order_id.is_not(None),
            )
        ).first()
        if sibling is not None:
            return sibling.order_id
        order = self.db.exec(
            select(Order).where(Order.transaction_reference == response.transaction_reference)
        ).first()
        return order.id if order else None

    def _materialize_order(
        self, response: PaymentResponse, session: PaymentSession | None
    ) -> tuple[str, int | None]:
        if response.order_id is not None:
            return "order_exists", response.order_id
        existing = self._existing_order_id(response)
        if existing is not None:
            return "order_exists", existing

        cart_id = response.cart_id if response.cart_id is not None else (session.cart_id if session else None)
        if cart_id is None:
            return self._abort_order(response, "No cart linked to the payment", None)
        cart = self.carts.get(cart_id)
        if cart is None:
            return self._abort_order(response, "Cart not found", cart_id)
        items = self.carts.active_items(cart)
        if not items:
            return self._abort_order(response, "Cart has no active items", cart_id)

        try:
            order = self.orders.create_order_from_cart(cart, items, response, session)
            result = self.db.exec(
                update(PaymentResponse)
                .where(PaymentResponse.id == response.id, PaymentResponse.order_id.is_(None))
                .values(order_id=order.id)
            )
            if result.rowcount != 1:
                self.db.rollback()
                self.db.refresh(response)
                return "order_exists", response.order_id
            order_id = order.id
            self.db.commit()
        except IntegrityError:
            # A concurrent delivery created the order first
            self.db.rollback()
            self.db.refresh(response)
            log.info("order creation lost race reference=%s", response.transaction_reference)
            return "order_exists", response.order_id or self._existing_order_id(response)
        self.db.refresh(response)
        log.info(
            "order created order_id=%s reference=%s cart_id=%s payment_response_id=%s",
            order_id,
            response.transaction_reference,
            cart_id,
            response.id,
        )
        return "order_created", order_id

    def _compensate(self, response: PaymentResponse, session: PaymentSession | None) -> str:
        changed = False
        if response.order_id is not None:
            order = self.db.get(Order, response.order_id)
            if order is not None and order.status != "cancelled":
                reason = f"Payment failed: {response.cd_error} - {response.nb_error}"
                self.orders.cancel_order_for_failed_payment(order, reason)
                changed = True
        if session is not None and session.cart_id is not None:
            cart = self.carts.get(session.cart_id)
            if cart is not None and self.carts.reactivate_for_retry(cart, self.retry_days):
                log.info("cart reactivated for retry cart_id=%s reference=%s", cart.id, response.transaction_reference)
                changed = True
        if not changed:
            return "recorded"
        self.db.commit()
        return "compensated"
