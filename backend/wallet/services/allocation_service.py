# Overview: Service-layer operations for payments and their allocation to invoices.

"""
Payment Allocation Service

Money received is attributed to invoices through PaymentAllocation rows.
A payment can be split across invoices by the caller (manual allocation) or
spread automatically, oldest first (FIFO).

DESIGN:
- One FIFO routine, two directions:
  INVOICE_SEEKS_CREDIT   - a new invoice consumes the person's unapplied
                           payment credit, oldest payment first.
  PAYMENT_SEEKS_INVOICES - a new payment's unapplied amount is spread over
                           the person's open invoices, oldest invoice first.
- Ordering is always (date, id). Insertion order is never relied on.
- Helpers below the public operations do not commit; they run inside the
  caller's unit of work.
"""

from flask import current_app

from ..extensions import db
from ..models import Payment, PaymentAllocation, Transaction
from ..models.ledger import STOCK_HOLDING_STATUSES
from ..validation import normalize_business_date
from wallet.time_utils import format_cents
from . import audit_service, person_service
from .concurrency import lock_for_update, run_with_retry
from .errors import NotFoundError, OverAllocationError, ValidationError


DIRECTION_INVOICE_SEEKS_CREDIT = "INVOICE_SEEKS_CREDIT"
DIRECTION_PAYMENT_SEEKS_INVOICES = "PAYMENT_SEEKS_INVOICES"

VALID_DIRECTIONS = [DIRECTION_INVOICE_SEEKS_CREDIT, DIRECTION_PAYMENT_SEEKS_INVOICES]


def allocation_triple(allocation: PaymentAllocation) -> dict:
    return {
        "transaction_id": allocation.transaction.id if allocation.transaction else allocation.transaction_id,
        "payment_id": allocation.payment.id if allocation.payment else allocation.payment_id,
        "amount_cents": allocation.amount_cents,
    }


def describe_allocations(allocations: list[PaymentAllocation]) -> str:
    label = current_app.config.get("CURRENCY_LABEL", "")
    if not allocations:
        return "none"
    return ", ".join(
        f"Order #{a.transaction.id} {format_cents(a.amount_cents, label)}" for a in allocations
    )


# =============================================================================
# FIFO
# =============================================================================

def _fifo_fill(need: int, sources) -> list[tuple]:
    """
    Take from sources in order until need is met.

    sources: iterable of (source, available_cents); sources with nothing
    available are skipped. Returns [(source, amount_taken), ...].
    """
    taken = []
    for source, available in sources:
        if need <= 0:
            break
        if available <= 0:
            continue
        amount = min(need, available)
        taken.append((source, amount))
        need -= amount
    return taken


def _credit_sources(person_id: int):
    payments = (
        lock_for_update(
            db.session.query(Payment).filter(
                Payment.person_id == person_id,
                Payment.amount_cents > 0,
            )
        )
        .order_by(Payment.payment_date.asc(), Payment.id.asc())
        .all()
    )
    return ((p, p.unallocated_cents) for p in payments)


def _invoice_sources(person_id: int):
    invoices = (
        lock_for_update(
            db.session.query(Transaction).filter(
                Transaction.person_id == person_id,
                Transaction.status.in_(list(STOCK_HOLDING_STATUSES)),
            )
        )
        .order_by(Transaction.transaction_date.asc(), Transaction.id.asc())
        .all()
    )
    return ((t, t.balance_due_cents) for t in invoices)


def auto_allocate(
    direction: str,
    *,
    transaction: Transaction | None = None,
    payment: Payment | None = None,
) -> list[PaymentAllocation]:
    """
    FIFO auto-allocation in either direction.

    Args:
        direction: INVOICE_SEEKS_CREDIT (pass transaction) or
                   PAYMENT_SEEKS_INVOICES (pass payment)

    Returns the allocations actually created (possibly none). The target is
    never over-filled and no source gives more than it has unapplied.
    """
    if direction == DIRECTION_INVOICE_SEEKS_CREDIT:
        if transaction is None:
            raise ValueError("transaction is required for INVOICE_SEEKS_CREDIT")
        if transaction.person_id is None:
            return []
        taken = _fifo_fill(transaction.balance_due_cents, _credit_sources(transaction.person_id))
        pairs = [(source, transaction, amount) for source, amount in taken]

    elif direction == DIRECTION_PAYMENT_SEEKS_INVOICES:
        if payment is None:
            raise ValueError("payment is required for PAYMENT_SEEKS_INVOICES")
        if payment.person_id is None:
            return []
        taken = _fifo_fill(payment.unallocated_cents, _invoice_sources(payment.person_id))
        pairs = [(payment, target, amount) for target, amount in taken]

    else:
        raise ValueError(f"Unknown allocation direction: {direction}")

    created = []
    for pay, txn, amount in pairs:
        allocation = PaymentAllocation(payment=pay, transaction=txn, amount_cents=amount)
        db.session.add(allocation)
        created.append(allocation)
    db.session.flush()
    return created


def validate_manual_allocations(payment: Payment, allocations: list[dict]) -> list[PaymentAllocation]:
    """
    Attach caller-chosen allocations to a payment.

    Args:
        allocations: [{"transaction_id": int, "amount_cents": int}, ...]

    Raises:
        OverAllocationError: allocations add up to more than the payment
        NotFoundError: an allocation references a missing transaction
    """
    requested = sum(a["amount_cents"] for a in allocations)
    if requested > payment.amount_cents:
        raise OverAllocationError(
            f"Allocations ({requested}) exceed payment amount ({payment.amount_cents})",
            details={"allocated_cents": requested, "amount_cents": payment.amount_cents},
        )

    created = []
    for row in allocations:
        txn = lock_for_update(
            db.session.query(Transaction).filter_by(id=row["transaction_id"])
        ).first()
        if txn is None:
            raise NotFoundError(
                f"Transaction {row['transaction_id']} not found",
                details={"transaction_id": row["transaction_id"]},
            )
        allocation = PaymentAllocation(payment=payment, transaction=txn, amount_cents=row["amount_cents"])
        db.session.add(allocation)
        created.append(allocation)

    # Payment without a customer belongs to whoever owns the first invoice it pays
    if payment.person_id is None and created and created[0].transaction.person_id is not None:
        first = created[0].transaction
        payment.person_id = first.person_id
        payment.customer_name = first.customer_name

    db.session.flush()
    return created


# =============================================================================
# PAYMENTS
# =============================================================================

def record_payment(
    *,
    amount_cents: int,
    person_id: int | None = None,
    customer_name: str | None = None,
    phone: str | None = None,
    method: str | None = None,
    reference: str | None = None,
    payment_date=None,
    employee_name: str | None = None,
    allocations: list[dict] | None = None,
    audit: audit_service.AuditSink | None = None,
) -> Payment:
    """
    Record money received from a customer.

    Either the caller's allocations are applied as given, or (when none are
    given) the amount is swept over the customer's open invoices oldest
    first. Whatever is left stays on account as credit.

    Raises:
        ValidationError: amount is not positive
        OverAllocationError / NotFoundError: bad manual allocations
        AmbiguousPersonError: name/phone matches several customers
    """
    def _op():
        if amount_cents is None or amount_cents <= 0:
            raise ValidationError("Payment amount must be positive", details={"amount_cents": amount_cents})

        person = person_service.resolve_or_create_person(
            person_id=person_id,
            name=customer_name,
            phone=phone,
        )

        payment = Payment(
            payment_date=normalize_business_date(payment_date, "payment_date"),
            amount_cents=amount_cents,
            method=method or current_app.config.get("DEFAULT_PAYMENT_METHOD", "Cash"),
            reference=reference,
            person_id=person.id if person else None,
            customer_name=person.name if person else customer_name,
            employee_name=employee_name,
        )
        db.session.add(payment)
        db.session.flush()

        if allocations:
            applied = validate_manual_allocations(payment, allocations)
        else:
            applied = auto_allocate(DIRECTION_PAYMENT_SEEKS_INVOICES, payment=payment)

        label = current_app.config.get("CURRENCY_LABEL", "")
        audit_service.record(
            audit,
            action="Payment",
            entity_type="Payment",
            entity_id=payment.id,
            actor_name=employee_name,
            description=(
                f"Payment #{payment.id} from {payment.customer_name or 'Unknown'}: "
                f"{format_cents(amount_cents, label)} ({payment.method}) | "
                f"Applied: {describe_allocations(applied)}"
            ),
            changes={
                "amount_cents": amount_cents,
                "method": payment.method,
                "person_id": payment.person_id,
                "mode": "manual" if allocations else "auto",
                "allocations": [allocation_triple(a) for a in applied],
                "unallocated_cents": payment.unallocated_cents,
            },
        )

        db.session.commit()
        return payment

    return run_with_retry(_op)


def delete_payment(
    payment_id: int,
    *,
    actor_name: str | None = None,
    audit: audit_service.AuditSink | None = None,
) -> None:
    """
    Remove a payment and its allocations.

    The invoices it paid become due again; stock and transaction status are
    untouched.
    """
    def _op():
        payment = get_payment(payment_id, lock=True)
        removed = [allocation_triple(a) for a in payment.allocations]
        amount = payment.amount_cents
        name = payment.customer_name

        db.session.delete(payment)

        label = current_app.config.get("CURRENCY_LABEL", "")
        audit_service.record(
            audit,
            action="Delete",
            entity_type="Payment",
            entity_id=payment_id,
            actor_name=actor_name,
            description=f"Deleted payment #{payment_id} of {format_cents(amount, label)} from {name or 'Unknown'}",
            changes={"amount_cents": amount, "allocations_removed": removed},
        )
        db.session.commit()

    run_with_retry(_op)


def get_payment(payment_id: int, *, lock: bool = False) -> Payment:
    query = db.session.query(Payment).filter_by(id=payment_id)
    if lock:
        query = lock_for_update(query)
    payment = query.first()
    if payment is None:
        raise NotFoundError(f"Payment {payment_id} not found", details={"payment_id": payment_id})
    return payment


def list_payments(person_id: int | None = None, limit: int = 500) -> list[Payment]:
    query = db.session.query(Payment)
    if person_id is not None:
        query = query.filter(Payment.person_id == person_id)
    return query.order_by(Payment.payment_date.desc(), Payment.id.desc()).limit(limit).all()
