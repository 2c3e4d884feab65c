"""Order collaborator: materialize an order from a cart, cancel one after a failed payment."""
import logging
import secrets
from datetime import datetime

from sqlmodel import Session

from marketplace.models import Cart, CartItem, Order, OrderItem, PaymentResponse, PaymentSession
from marketplace.services.carts import CartService

log = logging.getLogger("marketplace.orders")


def generate_order_number(now: datetime | None = None) -> str:
    """``ORD-YYYYMM-<8 hex>``. Random rather than sequential so concurrent callbacks never race for a number."""
    now = now or datetime.utcnow()
    return f"ORD-{now:%Y%m}-{secrets.token_hex(4).upper()}"


class OrderService:
    def __init__(self, db: Session, carts: CartService | None = None):
        self.db = db
        self.carts = carts or CartService(db)

    def create_order_from_cart(
        self,
        cart: Cart,
        items: list[CartItem],
        payment_response: PaymentResponse,
        session: PaymentSession | None = None,
    ) -> Order:
        """Adds the order, its items and the cart conversion to the current transaction. Caller commits."""
        totals = self.carts.totals(cart, items)
        now = datetime.utcnow()
        order = Order(
            order_number=generate_order_number(now),
            transaction_reference=(session.transaction_reference if session else payment_response.transaction_reference),
            payment_response_id=payment_response.id,
            user_id=cart.user_id if cart.user_id is not None else payment_response.user_id,
            cart_id=cart.id,
            billing_information_id=session.billing_information_id if session else None,
            microsoft_account_id=session.microsoft_account_id if session else None,
            status="processing",
            payment_status="paid",
            subtotal_cents=totals.subtotal_cents,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            currency=cart.currency,
            payment_method=session.payment_method if session else "credit_card",
            payment_gateway="mitec",
            auth_code=payment_response.auth_code or None,
            folio=payment_response.folio_cpagos or None,
            paid_at=now,
        )
        self.db.add(order)
        self.db.flush()
        for item in items:
            self.db.add(
                OrderItem(
                    order_id=order.id,
                    sku=item.sku,
                    title=item.title,
                    unit_price_cents=item.unit_price_cents,
                    quantity=item.quantity,
                    line_total_cents=item.line_total_cents,
                )
            )
        self.carts.mark_converted(cart)
        return order

    def cancel_order_for_failed_payment(self, order: Order, reason: str = "Payment failed") -> None:
        """Caller commits."""
        order.status = "cancelled"
        order.payment_status = "failed"
        order.cancelled_at = datetime.utcnow()
        order.cancellation_reason = reason[:500]
        self.db.add(order)
        log.info("order cancelled order_number=%s reason=%s", order.order_number, reason)
