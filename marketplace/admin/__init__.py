"""Operator endpoints under /admin, guarded by X-Admin-Secret."""
from fastapi import APIRouter

from marketplace.admin.routers import payment_sessions

admin_router = APIRouter(prefix="/admin", tags=["admin"])

admin_router.include_router(payment_sessions.router, prefix="/payment-sessions", tags=["admin-payments"])
