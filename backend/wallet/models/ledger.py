from __future__ import annotations

from ..extensions import db
from wallet.time_utils import to_utc_z


STATUS_PENDING = "PENDING"
STATUS_COMPLETED = "COMPLETED"
STATUS_CANCELED = "CANCELED"
STATUS_REFUNDED = "REFUNDED"

VALID_STATUSES = [STATUS_PENDING, STATUS_COMPLETED, STATUS_CANCELED, STATUS_REFUNDED]

# Statuses whose line quantities are currently deducted from stock
STOCK_HOLDING_STATUSES = {STATUS_PENDING, STATUS_COMPLETED}


class Transaction(db.Model):
    """
    Sale invoice.

    total_cents is captured at creation (sum of line subtotals minus the
    discount, floored at zero) and is never recomputed from the lines later.
    What has been paid is derived from payment allocations.

    LIFECYCLE:
    - COMPLETED: counter sale, initial state for non-delivery orders
    - PENDING: delivery order awaiting driver completion
    - CANCELED: stock returned; may be un-canceled
    - REFUNDED: terminal; stock returned and paid money handed back
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_person_date", "person_id", "transaction_date"),
        db.Index("ix_transactions_driver_status", "driver_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    person_id = db.Column(db.Integer, db.ForeignKey("people.id", ondelete="SET NULL"), nullable=True)
    # Display snapshot; survives deletion of the person row
    customer_name = db.Column(db.String(255), nullable=True)

    is_delivery = db.Column(db.Boolean, nullable=False, default=False)
    driver_id = db.Column(db.Integer, db.ForeignKey("people.id", ondelete="SET NULL"), nullable=True)

    note = db.Column(db.Text, nullable=True)
    employee_name = db.Column(db.String(255), nullable=False, default="")

    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=STATUS_COMPLETED, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    person = db.relationship("Person", foreign_keys=[person_id])
    driver = db.relationship("Person", foreign_keys=[driver_id])
    items = db.relationship(
        "TransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        lazy=True,
        order_by="TransactionItem.id",
    )
    allocations = db.relationship(
        "PaymentAllocation",
        back_populates="transaction",
        cascade="all, delete-orphan",
        lazy=True,
        order_by="PaymentAllocation.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def total_paid_cents(self) -> int:
        return sum(a.amount_cents for a in self.allocations)

    @property
    def balance_due_cents(self) -> int:
        return self.total_cents - self.total_paid_cents

    @property
    def holds_stock(self) -> bool:
        return self.status in STOCK_HOLDING_STATUSES

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} total={self.total_cents} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "transaction_date": to_utc_z(self.transaction_date),
            "person_id": self.person_id,
            "customer_name": self.customer_name,
            "is_delivery": self.is_delivery,
            "driver_id": self.driver_id,
            "driver_name": self.driver.name if self.driver else None,
            "note": self.note,
            "employee_name": self.employee_name,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "total_paid_cents": self.total_paid_cents,
            "balance_due_cents": self.balance_due_cents,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["allocations"] = [a.to_dict() for a in self.allocations]
        return data


class TransactionItem(db.Model):
    """Invoice line; unit_cost_cents is the product cost captured when the line was reserved."""
    __tablename__ = "transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    transaction = db.relationship("Transaction", back_populates="items")
    product = db.relationship("Product")

    @property
    def profit_cents(self) -> int:
        return self.subtotal_cents - self.quantity * self.unit_cost_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class Payment(db.Model):
    """
    Money received from (positive) or handed back to (negative) a person.

    A payment may be split across several invoices through allocations, and
    may sit partly or wholly unallocated as credit on the person's account.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_person_date", "person_id", "payment_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=True)
    reference = db.Column(db.String(255), nullable=True)

    person_id = db.Column(db.Integer, db.ForeignKey("people.id", ondelete="SET NULL"), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)
    employee_name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    person = db.relationship("Person", foreign_keys=[person_id])
    allocations = db.relationship(
        "PaymentAllocation",
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy=True,
        order_by="PaymentAllocation.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def allocated_cents(self) -> int:
        return sum(a.amount_cents for a in self.allocations)

    @property
    def unallocated_cents(self) -> int:
        return self.amount_cents - self.allocated_cents

    def __repr__(self) -> str:
        return f"<Payment id={self.id} amount={self.amount_cents} person_id={self.person_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_date": to_utc_z(self.payment_date),
            "amount_cents": self.amount_cents,
            "method": self.method,
            "reference": self.reference,
            "person_id": self.person_id,
            "customer_name": self.customer_name,
            "employee_name": self.employee_name,
            "allocated_cents": self.allocated_cents,
            "unallocated_cents": self.unallocated_cents,
            "allocations": [a.to_dict() for a in self.allocations],
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class PaymentAllocation(db.Model):
    """Attributes part of one payment to one transaction. Signed like the payment it belongs to."""
    __tablename__ = "payment_allocations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    payment = db.relationship("Payment", back_populates="allocations")
    transaction = db.relationship("Transaction", back_populates="allocations")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "transaction_id": self.transaction_id,
            "amount_cents": self.amount_cents,
        }
