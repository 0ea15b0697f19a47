from __future__ import annotations

from ..extensions import db
from wallet.time_utils import to_utc_z


PAYMENT_STATUS_PAID = "PAID"
PAYMENT_STATUS_PENDING = "PENDING"  # bought on credit

VALID_PURCHASE_PAYMENT_STATUSES = [PAYMENT_STATUS_PAID, PAYMENT_STATUS_PENDING]


class Purchase(db.Model):
    """
    Stock replenishment from a supplier.

    IMMUTABLE: posted once, in a single unit with the stock and weighted
    average cost updates of every line. There is no edit or delete flow.
    """
    __tablename__ = "purchases"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    supplier_name = db.Column(db.String(255), nullable=True)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PAID)
    paid_by = db.Column(db.String(255), nullable=False, default="Store")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "PurchaseItem",
        back_populates="purchase",
        cascade="all, delete-orphan",
        lazy=True,
        order_by="PurchaseItem.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_date": to_utc_z(self.purchase_date),
            "supplier_name": self.supplier_name,
            "total_cents": self.total_cents,
            "payment_status": self.payment_status,
            "paid_by": self.paid_by,
            "items": [item.to_dict() for item in self.items],
            "created_at": to_utc_z(self.created_at),
        }


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)

    purchase = db.relationship("Purchase", back_populates="items")
    product = db.relationship("Product")

    @property
    def total_cost_cents(self) -> int:
        return self.quantity * self.unit_cost_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cost_cents": self.total_cost_cents,
        }
