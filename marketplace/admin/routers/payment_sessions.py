"""Payment maintenance: session sweep and approved payments that never became an order."""
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select

from marketplace.admin.deps import require_admin
from marketplace.core.database import get_db
from marketplace.models import AuditLog, PaymentResponse
from marketplace.services.payment.session_store import PaymentSessionStore

router = APIRouter()


@router.post("/sweep")
def sweep_payment_sessions(_=Depends(require_admin), db: Session = Depends(get_db)):
    count = PaymentSessionStore(db).sweep_expired()
    db.add(AuditLog(event="payment_sessions_swept", detail=f"count={count}"))
    db.commit()
    return {"ok": True, "deleted": count}


@router.get("/orphaned-approvals")
def orphaned_approvals(
    _=Depends(require_admin),
    db: Session = Depends(get_db),
    limit: int = Query(50, ge=1, le=500),
):
    """Approved payments with no order: cart missing/empty at callback time, or no session matched."""
    stmt = (
        select(PaymentResponse)
        .where(PaymentResponse.payment_status == "approved", PaymentResponse.order_id.is_(None))
        .order_by(PaymentResponse.id.desc())
        .limit(limit)
    )
    return [
        {
            "id": r.id,
            "transaction_reference": r.transaction_reference,
            "cart_id": r.cart_id,
            "auth_code": r.auth_code,
            "amount_cents": r.amount_cents,
            "match_rule": r.match_rule,
            "created_at": r.created_at.isoformat() if r.created_at else None,
        }
        for r in db.exec(stmt).all()
    ]
