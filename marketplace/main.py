import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root regardless of where uvicorn is started
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlmodel import Session

from marketplace.admin import admin_router
from marketplace.api.payments import pages_router, router as payments_router
from marketplace.core.config import ProviderConfig, settings
from marketplace.core.database import check_db, engine, init_db
from marketplace.core.exceptions import PaymentError
from marketplace.core.rate_limit import get_client_ip, limiter
from marketplace.logging import setup_logging
from marketplace.models import AuditLog, ErrorLog

setup_logging(level=logging.INFO)
log = logging.getLogger("marketplace")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    # Fails startup with the list of missing MITEC_* variables
    app.state.provider_config = ProviderConfig.from_settings(settings)
    log.info(
        "MITEC configured: environment=%s currency=%s",
        app.state.provider_config.environment,
        app.state.provider_config.default_currency,
    )
    yield


app = FastAPI(
    title="Marketplace Payments API",
    description="Checkout payments through MITEC 3-D Secure",
    lifespan=lifespan,
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str, **extra) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code, **extra}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    try:
        with Session(engine) as db:
            db.add(AuditLog(event="rate_limit", ip=get_client_ip(request) or None, detail=request.url.path))
            db.commit()
    except Exception as e:
        log.warning("AuditLog rate_limit write failed: %s", e)
    return _error_response(request, 429, "Too many requests", detail=str(exc.detail))


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.warning(
        "Request validation error (422): path=%s method=%s fields=%s",
        request.url.path,
        request.method,
        [".".join(str(p) for p in e.get("loc", ())) for e in errs],
    )
    first = errs[0].get("msg") if errs else None
    # Input values are left out of the body: card data must not be echoed
    detail = [{"loc": e.get("loc"), "msg": e.get("msg"), "type": e.get("type")} for e in errs]
    return _error_response(request, 422, first or "Invalid request.", detail=detail)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))


@app.exception_handler(PaymentError)
def payment_exception_handler(request: Request, exc: PaymentError) -> JSONResponse:
    log.error("Payment error: path=%s kind=%s message=%s", request.url.path, exc.kind, exc.message)
    return _error_response(request, exc.http_status, exc.message, **exc.to_dict())


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc, exc_info=True)
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                user_id=None,
                endpoint=request.url.path,
                method=request.method,
                error_kind=type(exc).__name__,
                error_message=str(exc)[:2000],
                stack_trace=traceback.format_exc()[:10000],
            ))
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    return _error_response(request, 500, "Unexpected server error.")


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(payments_router)
app.include_router(pages_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    config = getattr(app.state, "provider_config", None)
    return {
        "status": "ok",
        "database": "ok" if check_db() else "error",
        "mitec_configured": config is not None,
        "mitec_environment": config.environment if config else None,
    }
