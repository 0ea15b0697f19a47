# Overview: Service-layer operations for transactions (sales invoices); encapsulates business logic and database work.

# backend/wallet/services/transaction_service.py

from flask import current_app

from ..extensions import db
from ..models import Payment, PaymentAllocation, Transaction, TransactionItem
from ..models.people import ROLE_DRIVER
from ..models.ledger import (
    STATUS_PENDING,
    STATUS_COMPLETED,
    STATUS_CANCELED,
    STATUS_REFUNDED,
    VALID_STATUSES,
)
from ..validation import normalize_business_date
from wallet.time_utils import format_cents, utcnow
from . import audit_service, allocation_service, person_service, stock_service
from .concurrency import lock_for_update, run_with_retry
from .errors import NotFoundError, InvalidStateError, AlreadyRefundedError, ValidationError
"""
Transaction Lifecycle Invariants (authoritative)

State machine:
- Create -> COMPLETED (counter sale) or PENDING (delivery awaiting driver).
- PENDING/COMPLETED -> CANCELED: every line's quantity is restored to stock.
- CANCELED -> PENDING/COMPLETED (un-cancel): every line is reserved again;
  fails with InsufficientStockError if stock has since been sold.
- PENDING/COMPLETED -> REFUNDED only through refund_transaction.
- REFUNDED is terminal.
- Setting the current status again is a no-op.

Money:
- total_cents = max(0, sum(line subtotals) - discount), fixed at creation.
- Deleting a transaction un-applies its allocations (payments become credit
  again) and never creates a Payment. Refunding creates exactly one negative
  Payment sized to what had been paid. A REFUNDED transaction cannot be
  deleted.

Atomicity:
- Each public operation is one unit of work (run_with_retry); any failure
  leaves stock, allocations and the transaction untouched.
"""


def _label() -> str:
    return current_app.config.get("CURRENCY_LABEL", "")


def get_transaction(transaction_id: int, *, lock: bool = False) -> Transaction:
    query = db.session.query(Transaction).filter_by(id=transaction_id)
    if lock:
        query = lock_for_update(query)
    txn = query.first()
    if txn is None:
        raise NotFoundError(f"Transaction {transaction_id} not found", details={"transaction_id": transaction_id})
    return txn


def list_transactions(
    *,
    person_id: int | None = None,
    driver_id: int | None = None,
    status: str | None = None,
    limit: int = 500,
) -> list[Transaction]:
    """Newest first. driver_id + status=PENDING is a driver's delivery queue."""
    query = db.session.query(Transaction)
    if person_id is not None:
        query = query.filter(Transaction.person_id == person_id)
    if driver_id is not None:
        query = query.filter(Transaction.driver_id == driver_id)
    if status:
        query = query.filter(Transaction.status == status.strip().upper())
    return query.order_by(Transaction.transaction_date.desc(), Transaction.id.desc()).limit(limit).all()


def _resolve_driver(driver_id: int | None, driver_name: str | None, driver_phone: str | None):
    if driver_id is None and not driver_name and not driver_phone:
        return None
    return person_service.resolve_or_create_person(
        person_id=driver_id,
        name=driver_name,
        phone=driver_phone,
        role=ROLE_DRIVER,
    )


# =============================================================================
# CREATE
# =============================================================================

def create_transaction(
    *,
    items: list[dict],
    person_id: int | None = None,
    customer_name: str | None = None,
    phone: str | None = None,
    is_delivery: bool = False,
    driver_id: int | None = None,
    driver_name: str | None = None,
    driver_phone: str | None = None,
    note: str | None = None,
    employee_name: str | None = None,
    discount_cents: int = 0,
    transaction_date=None,
    audit: audit_service.AuditSink | None = None,
) -> Transaction:
    """
    Record a sale.

    Steps, all inside one unit of work:
    1. Normalize the business date (default now).
    2. Reserve stock for every line and capture the product's current cost.
    3. total = max(0, sum(subtotals) - discount).
    4. Resolve or create the customer (and the driver for deliveries).
    5. Persist the transaction and its lines.
    6. Sweep the customer's unapplied payment credit onto the new invoice.
    7. Append a "Sale" audit entry.

    Args:
        items: [{"product_id", "quantity", "unit_price_cents"?}, ...]; a line
               without unit_price_cents sells at the product's list price.

    Raises:
        InsufficientStockError: any tracked line lacks stock (nothing reserved)
        NotFoundError: unknown product, person or driver id
        AmbiguousPersonError: customer/driver name or phone is ambiguous
        ValidationError: empty sale or negative discount
    """
    def _op():
        if not items:
            raise ValidationError("Transaction must contain at least one item")
        if discount_cents is None or discount_cents < 0:
            raise ValidationError("discount_cents cannot be negative")

        # 1
        txn_date = normalize_business_date(transaction_date, "transaction_date")

        # 2
        lines = []
        for line in items:
            product = stock_service.get_product(line["product_id"], lock=True)
            quantity = line["quantity"]
            unit_price = line.get("unit_price_cents")
            if unit_price is None:
                unit_price = product.price_cents
            unit_cost = stock_service.reserve_stock(product, quantity)
            lines.append(TransactionItem(
                product=product,
                product_id=product.id,
                quantity=quantity,
                unit_price_cents=unit_price,
                unit_cost_cents=unit_cost,
                subtotal_cents=quantity * unit_price,
            ))

        # 3
        total = max(0, sum(item.subtotal_cents for item in lines) - discount_cents)

        # 4
        customer = person_service.resolve_or_create_person(
            person_id=person_id,
            name=customer_name,
            phone=phone,
        )
        driver = _resolve_driver(driver_id, driver_name, driver_phone) if is_delivery else None

        # 5
        txn = Transaction(
            transaction_date=txn_date,
            person_id=customer.id if customer else None,
            customer_name=customer.name if customer else None,
            is_delivery=bool(is_delivery),
            driver_id=driver.id if driver else None,
            note=note,
            employee_name=employee_name or "",
            discount_cents=discount_cents,
            total_cents=total,
            status=STATUS_PENDING if is_delivery else STATUS_COMPLETED,
            items=lines,
        )
        db.session.add(txn)
        db.session.flush()

        # 6
        applied = allocation_service.auto_allocate(
            allocation_service.DIRECTION_INVOICE_SEEKS_CREDIT,
            transaction=txn,
        )

        # 7
        item_summary = ", ".join(f"{item.product.name} x{item.quantity}" for item in txn.items)
        audit_service.record(
            audit,
            action="Sale",
            entity_type="Transaction",
            entity_id=txn.id,
            actor_name=employee_name,
            description=(
                f"Date: {txn_date:%Y/%m/%d} | "
                f"Customer: {txn.customer_name or 'Walk-in'} | "
                f"Items: {item_summary} | "
                f"Total: {format_cents(total, _label())}"
            ),
            changes={
                "transaction_date": txn_date.isoformat(),
                "person_id": txn.person_id,
                "customer_name": txn.customer_name,
                "is_delivery": txn.is_delivery,
                "driver_id": txn.driver_id,
                "items": [
                    {
                        "product_id": item.product_id,
                        "quantity": item.quantity,
                        "unit_price_cents": item.unit_price_cents,
                        "unit_cost_cents": item.unit_cost_cents,
                    }
                    for item in txn.items
                ],
                "discount_cents": discount_cents,
                "total_cents": total,
                "allocations": [allocation_service.allocation_triple(a) for a in applied],
            },
        )

        db.session.commit()
        return txn

    return run_with_retry(_op)


# =============================================================================
# STATUS
# =============================================================================

def update_status(
    transaction_id: int,
    new_status: str,
    *,
    actor_name: str | None = None,
    audit: audit_service.AuditSink | None = None,
) -> Transaction:
    """
    Move a transaction through the state machine, applying stock effects.

    Raises:
        ValidationError: unknown status
        InvalidStateError: REFUNDED source or target
        InsufficientStockError: un-cancel without enough stock
    """
    def _op():
        target = (new_status or "").strip().upper()
        if target not in VALID_STATUSES:
            raise ValidationError(f"Invalid status: {new_status}. Must be one of {VALID_STATUSES}")

        txn = get_transaction(transaction_id, lock=True)
        old = txn.status

        if target == old:
            return txn
        if old == STATUS_REFUNDED:
            raise InvalidStateError(
                f"Transaction {txn.id} is refunded; its status can no longer change",
                details={"status": old, "requested": target},
            )
        if target == STATUS_REFUNDED:
            raise InvalidStateError(
                "Use the refund operation to refund a transaction",
                details={"status": old, "requested": target},
            )

        if target == STATUS_CANCELED:
            stock_service.restore_lines(txn.items)
        elif old == STATUS_CANCELED:
            stock_service.reserve_lines(txn.items)

        txn.status = target

        audit_service.record(
            audit,
            action="UpdateStatus",
            entity_type="Transaction",
            entity_id=txn.id,
            actor_name=actor_name,
            description=f"Status: {old} -> {target}",
            changes={"from": old, "to": target},
        )

        db.session.commit()
        return txn

    return run_with_retry(_op)


# =============================================================================
# DELETE
# =============================================================================

def delete_transaction(
    transaction_id: int,
    *,
    actor_name: str | None = None,
    audit: audit_service.AuditSink | None = None,
) -> None:
    """
    Remove a transaction, returning its stock and un-applying its payments.

    Payments that paid this invoice stay recorded; the money they had applied
    here becomes unallocated credit. No Payment row is created.
    Stock is restored only if the transaction still holds it (a canceled
    transaction already gave its stock back).

    Raises:
        InvalidStateError: transaction is REFUNDED (its refund payment stays
            allocated to it)
    """
    def _op():
        txn = get_transaction(transaction_id, lock=True)

        if txn.status == STATUS_REFUNDED:
            raise InvalidStateError(
                f"Transaction {txn.id} is refunded and cannot be deleted",
                details={"status": txn.status},
            )

        if txn.holds_stock:
            stock_service.restore_lines(txn.items)
            stock_note = "Stock restored"
        else:
            stock_note = "Stock already restored"

        # allocations go with the transaction through the delete-orphan cascade
        removed = [allocation_service.allocation_triple(a) for a in txn.allocations]

        total = txn.total_cents
        customer = txn.customer_name
        db.session.delete(txn)

        audit_service.record(
            audit,
            action="Delete",
            entity_type="Transaction",
            entity_id=transaction_id,
            actor_name=actor_name,
            description=(
                f"Deleted Order #{transaction_id} | Customer: {customer or 'Walk-in'} | "
                f"Total: {format_cents(total, _label())} | {stock_note}"
            ),
            changes={"stock": stock_note, "allocations_removed": removed},
        )

        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# EDIT
# =============================================================================

_UNSET = object()


def _name_or_none(person) -> str:
    return person.name if person is not None else "None"


def _move_exclusive_payments(txn: Transaction, new_customer) -> int:
    """
    Re-home payments whose money is tied only to this transaction.

    A payment counts as exclusive when every other transaction it pays
    already belongs to the new customer (or it pays nothing else). Payments
    shared with other customers' invoices keep their owner. Returns the
    number of payments moved.
    """
    moved = 0
    for allocation in txn.allocations:
        payment = allocation.payment
        if payment is None:
            continue
        others = [a for a in payment.allocations if a.transaction_id != txn.id]
        if new_customer is None:
            exclusive = not others
        else:
            exclusive = all(a.transaction.person_id == new_customer.id for a in others)
        if not exclusive:
            continue
        payment.person_id = new_customer.id if new_customer else None
        payment.customer_name = new_customer.name if new_customer else None
        moved += 1
    return moved


def update_transaction(
    transaction_id: int,
    *,
    note=_UNSET,
    person_id=_UNSET,
    customer_name: str | None = None,
    phone: str | None = None,
    driver_id=_UNSET,
    employee_name=_UNSET,
    actor_name: str | None = None,
    audit: audit_service.AuditSink | None = None,
) -> Transaction:
    """
    Edit the mutable fields of a transaction: note, customer, driver, employee.

    Items, prices, discount and total are fixed once created.

    Customer change:
    - person_id=None removes the customer; a name/phone (without person_id)
      resolves or creates one. Passing both is a ValidationError.
    - Payments tied exclusively to this invoice follow it to the new customer.
    - The new customer's unapplied credit is swept onto what is still due.

    Every changed field produces its own line in the audit description.
    """
    def _op():
        txn = get_transaction(transaction_id, lock=True)
        change_lines = []
        applied = []

        if note is not _UNSET and (note or None) != txn.note:
            change_lines.append(f"Note: '{txn.note or ''}' -> '{note or ''}'")
            txn.note = note or None

        if employee_name is not _UNSET and (employee_name or "") != (txn.employee_name or ""):
            change_lines.append(f"Employee: {txn.employee_name or 'None'} -> {employee_name or 'None'}")
            txn.employee_name = employee_name or ""

        if driver_id is not _UNSET and driver_id != txn.driver_id:
            new_driver = person_service.get_person(driver_id) if driver_id is not None else None
            change_lines.append(f"Driver: {_name_or_none(txn.driver)} -> {_name_or_none(new_driver)}")
            txn.driver_id = new_driver.id if new_driver else None
            txn.driver = new_driver

        customer_requested = person_id is not _UNSET or customer_name or phone
        if customer_requested:
            if person_id is not _UNSET and person_id is None:
                if customer_name or phone:
                    raise ValidationError(
                        "person_id null removes the customer; omit it to set customer_name or phone",
                        details={"customer_name": customer_name, "phone": phone},
                    )
                new_customer = None
            else:
                new_customer = person_service.resolve_or_create_person(
                    person_id=None if person_id is _UNSET else person_id,
                    name=customer_name,
                    phone=phone,
                )

            new_id = new_customer.id if new_customer else None
            if new_id != txn.person_id:
                old_name = txn.customer_name or "Walk-in"
                moved = _move_exclusive_payments(txn, new_customer)

                txn.person_id = new_id
                txn.person = new_customer
                txn.customer_name = new_customer.name if new_customer else None
                change_lines.append(f"Customer: {old_name} -> {txn.customer_name or 'Walk-in'}")
                if moved:
                    change_lines.append(f"Payments moved with customer: {moved}")

                if new_customer is not None and txn.holds_stock:
                    applied = allocation_service.auto_allocate(
                        allocation_service.DIRECTION_INVOICE_SEEKS_CREDIT,
                        transaction=txn,
                    )
                    if applied:
                        change_lines.append(
                            f"Credit applied: {allocation_service.describe_allocations(applied)}"
                        )

        if change_lines:
            audit_service.record(
                audit,
                action="Update",
                entity_type="Transaction",
                entity_id=txn.id,
                actor_name=actor_name,
                description="; ".join(change_lines),
                changes={
                    "lines": change_lines,
                    "allocations": [allocation_service.allocation_triple(a) for a in applied],
                },
            )

        db.session.commit()
        return txn

    return run_with_retry(_op)


# =============================================================================
# REFUND
# =============================================================================

def refund_transaction(
    transaction_id: int,
    *,
    reason: str | None = None,
    method: str | None = None,
    actor_name: str | None = None,
    audit: audit_service.AuditSink | None = None,
) -> Transaction:
    """
    Fully refund a transaction.

    Hands back everything paid against it as one negative Payment with one
    matching negative allocation, returns all stock, and marks it REFUNDED.
    Partial refunds are not supported.

    Raises:
        AlreadyRefundedError: already REFUNDED
        InvalidStateError: CANCELED (nothing was kept; delete it instead)
    """
    def _op():
        txn = get_transaction(transaction_id, lock=True)

        if txn.status == STATUS_REFUNDED:
            raise AlreadyRefundedError(
                f"Transaction {txn.id} is already refunded",
                details={"transaction_id": txn.id},
            )
        if txn.status == STATUS_CANCELED:
            raise InvalidStateError(
                f"Transaction {txn.id} is canceled and cannot be refunded",
                details={"transaction_id": txn.id, "status": txn.status},
            )

        refunded = txn.total_paid_cents
        refund_payment = None
        if refunded > 0:
            reference = f"Refund for Order #{txn.id}"
            if reason:
                reference = f"{reference} - {reason}"
            refund_payment = Payment(
                payment_date=utcnow(),
                amount_cents=-refunded,
                method=method or current_app.config.get("DEFAULT_PAYMENT_METHOD", "Cash"),
                reference=reference[:255],
                person_id=txn.person_id,
                customer_name=txn.customer_name,
                employee_name=actor_name,
            )
            db.session.add(refund_payment)
            db.session.add(PaymentAllocation(payment=refund_payment, transaction=txn, amount_cents=-refunded))

        restored = stock_service.restore_lines(txn.items)
        old_status = txn.status
        txn.status = STATUS_REFUNDED
        db.session.flush()

        audit_service.record(
            audit,
            action="Refund",
            entity_type="Transaction",
            entity_id=txn.id,
            actor_name=actor_name,
            description=(
                f"Refunded Order #{txn.id}: {format_cents(refunded, _label())}"
                + (f" | Reason: {reason}" if reason else "")
            ),
            changes={
                "from": old_status,
                "refunded_cents": refunded,
                "refund_payment_id": refund_payment.id if refund_payment else None,
                "reason": reason,
                "items_restored": restored,
            },
        )

        db.session.commit()
        return txn

    return run_with_retry(_op)
