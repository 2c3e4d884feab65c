"""Cart collaborator: lookups, totals and the retry reactivation used after a failed payment."""
from datetime import datetime, timedelta

from sqlmodel import Session, select

from marketplace.core.config import settings
from marketplace.models import Cart, CartItem
from marketplace.services.pricing import CartTotals, cart_totals


class CartService:
    def __init__(self, db: Session, tax_rate: float | None = None):
        self.db = db
        self.tax_rate = settings.tax_rate if tax_rate is None else tax_rate

    def get(self, cart_id: int | None) -> Cart | None:
        if cart_id is None:
            return None
        return self.db.get(Cart, cart_id)

    def get_by_token(self, cart_token: str | None) -> Cart | None:
        if not cart_token:
            return None
        return self.db.exec(select(Cart).where(Cart.cart_token == cart_token)).first()

    def active_items(self, cart: Cart) -> list[CartItem]:
        stmt = (
            select(CartItem)
            .where(CartItem.cart_id == cart.id, CartItem.status == "active")
            .order_by(CartItem.id)
        )
        return list(self.db.exec(stmt).all())

    def totals(self, cart: Cart, items: list[CartItem] | None = None) -> CartTotals:
        if items is None:
            items = self.active_items(cart)
        return cart_totals((i.line_total_cents for i in items), self.tax_rate)

    def mark_converted(self, cart: Cart) -> None:
        """Cart became an order. Caller commits."""
        now = datetime.utcnow()
        cart.status = "converted"
        cart.expires_at = now
        cart.updated_at = now
        self.db.add(cart)

    def reactivate_for_retry(self, cart: Cart, days: int | None = None) -> bool:
        """A completed cart whose payment failed is reopened so the buyer can pay again. Caller commits."""
        if cart.status != "completed":
            return False
        now = datetime.utcnow()
        cart.status = "active"
        cart.expires_at = now + timedelta(days=settings.cart_retry_days if days is None else days)
        cart.updated_at = now
        self.db.add(cart)
        return True
