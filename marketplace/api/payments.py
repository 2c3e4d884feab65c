"""MITEC payment endpoints: initiation, hosted redirect form, callback/webhook, status and config."""
import logging
import traceback

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
from sqlmodel import Session, select

from marketplace.api.deps import get_optional_user_id, get_provider_config
from marketplace.core.config import SUPPORTED_CURRENCIES, ProviderConfig, settings
from marketplace.core.database import engine, get_db
from marketplace.core.exceptions import EncryptionError, MalformedResponseError, PaymentError
from marketplace.core.rate_limit import get_client_ip, limiter, payment_rate_limit
from marketplace.models import AuditLog, ErrorLog, Order, PaymentResponse
from marketplace.schemas.payment import (
    MitecPaymentInitiated,
    MitecPaymentRequest,
    MitecWebhookRequest,
    PaymentSessionOut,
)
from marketplace.services.carts import CartService
from marketplace.services.payment.callback_parser import parse_callback
from marketplace.services.payment.encryption import decrypt
from marketplace.services.payment.initiation import REFERENCE_PREFIX, PaymentInitiationService
from marketplace.services.payment.reconciliation import ReconciliationEngine
from marketplace.services.payment.session_store import PaymentSessionStore
from marketplace.services.pricing import from_cents

log = logging.getLogger("marketplace.payment")

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])
pages_router = APIRouter(tags=["payments"])

_CALLBACK_FIELDS = ("xml", "strResponse", "token")
SUPPORTED_CARDS = ["visa", "mastercard", "amex"]


def _audit(db: Session, event: str, reference: str | None, user_id: int | None, ip: str | None, detail: str | None = None) -> None:
    try:
        db.add(AuditLog(event=event, reference=reference, user_id=user_id, ip=ip, detail=detail))
        db.commit()
    except Exception as e:
        db.rollback()
        log.warning("AuditLog write failed event=%s: %s", event, e)


def _record_callback_error(request: Request, exc: Exception, reference: str | None) -> None:
    """Own session: the request session may be mid-rollback."""
    kind = exc.kind if isinstance(exc, PaymentError) else type(exc).__name__
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                endpoint=request.url.path,
                method=request.method,
                error_kind=kind,
                reference=reference,
                error_message=str(exc)[:2000],
                stack_trace=traceback.format_exc()[:10000],
            ))
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)


def _failure_status(error_kind: str | None) -> int:
    if error_kind == "validation":
        return 422
    if error_kind == "configuration":
        return 503
    return 500


@router.post("/mitec/process", response_model=MitecPaymentInitiated)
@limiter.limit(payment_rate_limit)
def process_mitec_payment(
    request: Request,
    body: MitecPaymentRequest,
    x_cart_token: str | None = Header(None, alias="X-Cart-Token"),
    user_id: int | None = Depends(get_optional_user_id),
    config: ProviderConfig = Depends(get_provider_config),
    db: Session = Depends(get_db),
):
    carts = CartService(db)
    cart = carts.get_by_token(x_cart_token)
    if x_cart_token and cart is None:
        log.warning("cart not found for X-Cart-Token user_id=%s", user_id)
    elif not x_cart_token:
        log.warning("payment without X-Cart-Token user_id=%s", user_id)

    client_ip = get_client_ip(request)
    result = PaymentInitiationService(db, config).process_payment(
        body,
        user_id=user_id,
        cart_id=cart.id if cart else None,
        client_ip=client_ip,
        cart_total_cents=carts.totals(cart).total_cents if cart else None,
    )
    if not result.success:
        status_code = _failure_status(result.error_kind)
        content = {
            "success": False,
            "error": result.message,
            "error_kind": result.error_kind,
            "status_code": status_code,
        }
        rid = getattr(request.state, "request_id", None)
        if rid:
            content["request_id"] = rid
        return JSONResponse(status_code=status_code, content=content)

    redirect_url = f"{str(request.base_url).rstrip('/')}/mitec-payment/{result.transaction_reference}"
    return MitecPaymentInitiated(
        transaction_reference=result.transaction_reference,
        redirect_url=redirect_url,
        provider_url=result.provider_url,
        cart_id=result.cart_id,
    )


@pages_router.get("/mitec-payment/{reference}", response_class=HTMLResponse)
def serve_payment_form(reference: str, db: Session = Depends(get_db)):
    """The stored redirect form, byte for byte as generated at initiation."""
    store = PaymentSessionStore(db)
    store.sweep_expired()
    session = store.find_by_reference(reference)
    if session is None:
        raise HTTPException(status_code=404, detail="Payment session not found or expired.")
    return HTMLResponse(content=session.form_html)


@router.get("/mitec/sessions/{reference}", response_model=PaymentSessionOut)
def get_payment_session(
    reference: str,
    user_id: int | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
):
    session = PaymentSessionStore(db).find_by_reference(reference)
    # Another buyer's session looks exactly like a missing one
    if session is None or (session.user_id is not None and session.user_id != user_id):
        raise HTTPException(status_code=404, detail="Payment session not found or expired.")
    return PaymentSessionOut(
        transaction_reference=session.transaction_reference,
        provider_url=session.provider_url,
        cart_id=session.cart_id,
        payment_method=session.payment_method,
        created_at=session.created_at.isoformat(),
        expires_at=session.expires_at.isoformat(),
    )


def _decrypt_document(value: str, config: ProviderConfig | None) -> str:
    if config is None:
        raise MalformedResponseError("Encrypted MITEC response but no key configured")
    return decrypt(value, config.key_hex)


async def _extract_callback_document(request: Request, config: ProviderConfig | None) -> tuple[str, str | None]:
    """(xml document, reference hint). The hint is the ``?token=<reference>`` MITEC echoes on the return URL."""
    body = await request.body()
    fields = dict(request.query_params)
    content_type = request.headers.get("content-type", "")
    is_form = request.method == "POST" and (
        content_type.startswith("application/x-www-form-urlencoded") or content_type.startswith("multipart/form-data")
    )
    if is_form:
        form = await request.form()
        fields.update({k: v for k, v in form.items() if isinstance(v, str)})

    hint = None
    token = (fields.get("token") or "").strip()
    if token.startswith(REFERENCE_PREFIX):
        hint = token
        fields.pop("token")

    for name in _CALLBACK_FIELDS:
        value = (fields.get(name) or "").strip()
        if not value:
            continue
        if value.startswith("<"):
            return value, hint
        return _decrypt_document(value, config), hint

    text = "" if is_form else body.decode("utf-8", errors="replace").strip()
    if not text:
        raise MalformedResponseError("No MITEC response document in request", reference=hint)
    if text.startswith("<"):
        return text, hint
    return _decrypt_document(text, config), hint


def _reconcile_document(request: Request, db: Session, raw: str, hint: str | None, source: str | None = None):
    callback = parse_callback(raw)
    if not callback.reference and hint:
        callback = callback._replace(r3ds_reference=hint)
    outcome = ReconciliationEngine(db).reconcile(
        callback,
        raw_xml=raw,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    response = outcome.payment_response
    detail = f"status={response.payment_status} action={outcome.action} rule={outcome.match_rule}"
    if source:
        detail += f" source={source}"
    _audit(db, "payment_callback", response.transaction_reference, response.user_id, get_client_ip(request), detail=detail)
    return outcome


def _ack(reference: str | None, status: str | None = None) -> JSONResponse:
    # MITEC retries anything that is not a 200
    return JSONResponse(status_code=200, content={"success": True, "message": "received", "reference": reference, "status": status})


@router.api_route("/mitec/callback", methods=["GET", "POST"])
async def mitec_callback(request: Request, db: Session = Depends(get_db)):
    config = getattr(request.app.state, "provider_config", None)
    reference = request.query_params.get("token")
    try:
        raw, hint = await _extract_callback_document(request, config)
        reference = hint or reference
        outcome = _reconcile_document(request, db, raw, hint)
        return _ack(outcome.payment_response.transaction_reference, outcome.payment_response.payment_status)
    except (MalformedResponseError, EncryptionError) as e:
        log.error("callback rejected kind=%s reference=%s: %s", e.kind, reference, e.message)
        db.rollback()
        _record_callback_error(request, e, reference)
    except Exception as e:
        log.exception("callback processing failed reference=%s: %s", reference, e)
        db.rollback()
        _record_callback_error(request, e, reference)
    return _ack(reference)


@router.post("/mitec/webhook")
def mitec_webhook(request: Request, body: MitecWebhookRequest, db: Session = Depends(get_db)):
    raw = (body.xml_response or "").strip()
    if not raw:
        raise HTTPException(status_code=400, detail="xml_response is required.")
    reference = body.transaction_reference
    log.info("webhook received reference=%s source=%s", reference, body.source or "-")
    try:
        outcome = _reconcile_document(request, db, raw, reference, source=body.source)
        return _ack(outcome.payment_response.transaction_reference, outcome.payment_response.payment_status)
    except MalformedResponseError as e:
        log.error("webhook rejected kind=%s reference=%s: %s", e.kind, reference, e.message)
        db.rollback()
        _record_callback_error(request, e, reference)
    except Exception as e:
        log.exception("webhook processing failed reference=%s: %s", reference, e)
        db.rollback()
        _record_callback_error(request, e, reference)
    return _ack(reference)


def _pick_response(responses: list[PaymentResponse]) -> PaymentResponse:
    """An order-linked approval outranks later noise for the same reference."""
    for r in responses:
        if r.order_id is not None:
            return r
    for r in responses:
        if r.payment_status == "approved":
            return r
    return responses[0]


@router.get("/status/{reference}")
def get_payment_status(reference: str, db: Session = Depends(get_db)):
    responses = list(
        db.exec(
            select(PaymentResponse)
            .where(PaymentResponse.transaction_reference == reference)
            .order_by(PaymentResponse.id.desc())
        ).all()
    )
    if not responses:
        if PaymentSessionStore(db).find_by_reference(reference) is not None:
            return {"success": True, "payment": {"reference": reference, "status": "pending"}, "order": None}
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "status": "unknown",
                "error": "Payment not found.",
                "error_code": "PAYMENT_NOT_FOUND",
            },
        )

    r = _pick_response(responses)
    order = db.get(Order, r.order_id) if r.order_id else None
    return {
        "success": True,
        "payment": {
            "reference": r.transaction_reference,
            "status": r.payment_status,
            "amount": from_cents(r.amount_cents) if r.amount_cents is not None else None,
            "currency": order.currency if order else settings.mitec_default_currency,
            "authorization_code": r.auth_code or None,
            "processed_at": r.created_at.isoformat() if r.created_at else None,
            "error_message": r.nb_error or None,
            "response_code": r.response_code or r.cd_response or None,
            "card_last_four": r.card_last_four or None,
            "card_type": r.card_type or None,
            "order_id": r.order_id,
        },
        "order": {
            "order_number": order.order_number,
            "status": order.status,
            "total_amount": from_cents(order.total_cents),
        }
        if order
        else None,
    }


@router.get("/mitec/config")
def get_mitec_config(config: ProviderConfig = Depends(get_provider_config)):
    """Public, non-sensitive checkout settings."""
    return {
        "success": True,
        "config": {
            "currency": config.default_currency,
            "supported_currencies": list(SUPPORTED_CURRENCIES),
            "supported_cards": SUPPORTED_CARDS,
            "min_amount": config.min_amount,
            "max_amount": config.max_amount,
            "billing_required": config.billing_required,
            "environment": config.environment,
        },
    }
