# Overview: Read-only statement building for one person's account.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..extensions import db
from ..models import Payment, Transaction
from ..models.ledger import STATUS_CANCELED
from wallet.time_utils import to_utc_z
from . import person_service


ENTRY_TRANSACTION = "Transaction"
ENTRY_PAYMENT = "Payment"

# Same-timestamp tie-break: a charge is listed before the payment settling it
_TYPE_ORDER = {ENTRY_TRANSACTION: 0, ENTRY_PAYMENT: 1}


@dataclass(frozen=True)
class StatementItem:
    date: datetime
    description: str
    type: str
    entity_id: int
    amount_cents: int
    running_balance_cents: int

    def to_dict(self) -> dict:
        return {
            "date": to_utc_z(self.date),
            "description": self.description,
            "type": self.type,
            "entity_id": self.entity_id,
            "amount_cents": self.amount_cents,
            "running_balance_cents": self.running_balance_cents,
        }


@dataclass(frozen=True)
class Statement:
    person_id: int
    person_name: str
    opening_balance_cents: int
    closing_balance_cents: int
    items: list[StatementItem]

    def to_dict(self) -> dict:
        return {
            "person_id": self.person_id,
            "person_name": self.person_name,
            "opening_balance_cents": self.opening_balance_cents,
            "closing_balance_cents": self.closing_balance_cents,
            "items": [item.to_dict() for item in self.items],
        }


def _raw_entries(person_id: int) -> list[tuple]:
    entries = []
    for txn in db.session.query(Transaction).filter(Transaction.person_id == person_id):
        if txn.status == STATUS_CANCELED:
            # Listed for completeness; canceled invoices do not count toward balance
            entries.append((txn.transaction_date, ENTRY_TRANSACTION, txn.id, f"Order #{txn.id} (canceled)", 0))
        else:
            entries.append((txn.transaction_date, ENTRY_TRANSACTION, txn.id, f"Order #{txn.id}", -txn.total_cents))
    for payment in db.session.query(Payment).filter(Payment.person_id == person_id):
        entries.append((
            payment.payment_date,
            ENTRY_PAYMENT,
            payment.id,
            f"Payment #{payment.id} ({payment.method or 'Unknown'})",
            payment.amount_cents,
        ))
    entries.sort(key=lambda e: (e[0], _TYPE_ORDER[e[1]], e[2]))
    return entries


def build_statement(
    person_id: int,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    newest_first: bool = True,
) -> Statement:
    """
    Debits (transactions) and credits (payments) for one person with a running balance.

    The running balance is always a prefix sum in ascending (date, type, id)
    order. The from/to window is applied afterwards; everything before the
    window is folded into opening_balance_cents. newest_first only reverses
    the finished list, the balances are not recomputed.

    Raises:
        NotFoundError: unknown person
    """
    person = person_service.get_person(person_id)

    running = 0
    computed = []
    for date, entry_type, entity_id, description, amount in _raw_entries(person_id):
        running += amount
        computed.append(StatementItem(
            date=date,
            description=description,
            type=entry_type,
            entity_id=entity_id,
            amount_cents=amount,
            running_balance_cents=running,
        ))

    opening = 0
    window = []
    for item in computed:
        if from_date is not None and item.date < from_date:
            opening = item.running_balance_cents
            continue
        if to_date is not None and item.date > to_date:
            continue
        window.append(item)

    closing = window[-1].running_balance_cents if window else opening

    if newest_first:
        window.reverse()

    return Statement(
        person_id=person.id,
        person_name=person.name,
        opening_balance_cents=opening,
        closing_balance_cents=closing,
        items=window,
    )
