# Overview: Service-layer operations for people; identity resolution, derived summaries and credentials.

from __future__ import annotations

from dataclasses import dataclass

import bcrypt
from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..time_utils import to_utc_z
from ..models import Person, Transaction, TransactionItem, Payment
from ..models.people import ROLE_CUSTOMER, VALID_ROLES
from ..models.ledger import STATUS_CANCELED, STATUS_REFUNDED, STATUS_PENDING, STATUS_COMPLETED
from . import audit_service
from .concurrency import lock_for_update, run_with_retry
from .errors import NotFoundError, ValidationError, AmbiguousPersonError
"""
Person Invariants (authoritative)

Identity:
- Lookup is scoped to one role. Phone wins over name; names compare
  case-insensitively.
- A lookup never guesses: more than one hit is reported as AMBIGUOUS and the
  caller must pick a person by id.

Balance:
- balance = sum(payments.amount) - sum(transactions.total)
  over the person's transactions whose status is not CANCELED.
- Positive balance is credit on account, negative is money owed.
- The aggregate listing and the per-person summary use the same formula and
  must agree for every person.

Snapshots:
- Transactions and payments keep customer_name even after the person row is
  deleted. reconcile_name_snapshots() is the only code that rewrites them.
"""


MATCH_MATCHED = "MATCHED"
MATCH_AMBIGUOUS = "AMBIGUOUS"
MATCH_NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class PersonMatch:
    kind: str
    person: Person | None = None
    candidates: tuple = ()

    @property
    def candidate_ids(self) -> list[int]:
        return [p.id for p in self.candidates]


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _match_from(rows: list[Person]) -> PersonMatch | None:
    if len(rows) == 1:
        return PersonMatch(kind=MATCH_MATCHED, person=rows[0])
    if len(rows) > 1:
        return PersonMatch(kind=MATCH_AMBIGUOUS, candidates=tuple(rows))
    return None


def resolve_person_by_identity(name: str | None, phone: str | None, role: str = ROLE_CUSTOMER) -> PersonMatch:
    """
    Find an existing person by phone, then by name, within one role.

    Returns:
        PersonMatch tagged MATCHED (person set), AMBIGUOUS (candidates set)
        or NOT_FOUND.
    """
    name = _clean(name)
    phone = _clean(phone)

    if phone:
        rows = (
            db.session.query(Person)
            .filter(Person.role == role, Person.phone == phone)
            .order_by(Person.id.asc())
            .all()
        )
        match = _match_from(rows)
        if match is not None:
            return match

    if name:
        rows = (
            db.session.query(Person)
            .filter(Person.role == role, func.lower(Person.name) == name.lower())
            .order_by(Person.id.asc())
            .all()
        )
        match = _match_from(rows)
        if match is not None:
            return match

    return PersonMatch(kind=MATCH_NOT_FOUND)


def get_person(person_id: int, *, lock: bool = False) -> Person:
    query = db.session.query(Person).filter_by(id=person_id)
    if lock:
        query = lock_for_update(query)
    person = query.first()
    if person is None:
        raise NotFoundError(f"Person {person_id} not found", details={"person_id": person_id})
    return person


def resolve_or_create_person(
    *,
    person_id: int | None = None,
    name: str | None = None,
    phone: str | None = None,
    role: str = ROLE_CUSTOMER,
) -> Person | None:
    """
    Turn the identity a caller supplied into a Person row, creating one if needed.

    An explicit person_id always wins. With neither name nor phone the caller
    is anonymous (walk-in) and None is returned. Must run inside the caller's
    unit of work: the new row is flushed, not committed.

    Raises:
        NotFoundError: person_id does not exist
        AmbiguousPersonError: several people share the name/phone
        ValidationError: no match and no name to create the person with
    """
    if person_id is not None:
        return get_person(person_id)

    name = _clean(name)
    phone = _clean(phone)
    if not name and not phone:
        return None

    match = resolve_person_by_identity(name, phone, role)
    if match.kind == MATCH_MATCHED:
        return match.person
    if match.kind == MATCH_AMBIGUOUS:
        raise AmbiguousPersonError(
            f"More than one {role.lower()} matches '{name or phone}'; choose one by id",
            details={"candidate_ids": match.candidate_ids, "name": name, "phone": phone},
        )

    if not name:
        raise ValidationError("name is required to create a new person", details={"phone": phone})

    person = Person(name=name, phone=phone, role=role)
    db.session.add(person)
    db.session.flush()
    return person


# =============================================================================
# CREDENTIALS
# =============================================================================

def hash_secret(secret: str) -> str:
    """Hash a password or passcode with bcrypt."""
    salt = bcrypt.gensalt(rounds=int(current_app.config.get("BCRYPT_ROUNDS", 12)))
    return bcrypt.hashpw(secret.encode("utf-8"), salt).decode("utf-8")


def _check_secret(secret: str, secret_hash: str | None) -> bool:
    if not secret_hash:
        return False
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), secret_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash stored in the row
        return False


def verify_credentials(identifier: str, password: str | None = None) -> Person | None:
    """
    Simple credential check for staff.

    With a password, identifier is a username. Without one, identifier is
    treated as a passcode and compared against every active staff passcode.
    Customers and inactive people never pass.

    Returns the Person on success, None otherwise.
    """
    if not identifier:
        return None

    staff = db.session.query(Person).filter(
        Person.is_active.is_(True),
        Person.role != ROLE_CUSTOMER,
    )

    if password is not None:
        person = staff.filter(Person.username == identifier).first()
        if person is None or not _check_secret(password, person.password_hash):
            return None
        return person

    for person in staff.filter(Person.passcode_hash.isnot(None)).order_by(Person.id.asc()):
        if _check_secret(identifier, person.passcode_hash):
            return person
    return None


# =============================================================================
# CRUD
# =============================================================================

def _validate_role(role: str) -> str:
    role = (role or "").strip().upper()
    if role not in VALID_ROLES:
        raise ValidationError(f"Invalid role: {role}. Must be one of {VALID_ROLES}")
    return role


def _ensure_username_free(username: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Person).filter(Person.username == username)
    if exclude_id is not None:
        query = query.filter(Person.id != exclude_id)
    if query.first() is not None:
        raise ValidationError(f"Username '{username}' is already taken")


def create_person(
    *,
    name: str,
    role: str = ROLE_CUSTOMER,
    phone: str | None = None,
    username: str | None = None,
    password: str | None = None,
    passcode: str | None = None,
    is_active: bool = True,
    actor_name: str | None = None,
    audit: audit_service.AuditSink | None = None,
) -> Person:
    def _op():
        clean_name = _clean(name)
        if not clean_name:
            raise ValidationError("name is required")
        clean_role = _validate_role(role)
        clean_username = _clean(username)
        if clean_username:
            _ensure_username_free(clean_username)

        person = Person(
            name=clean_name,
            role=clean_role,
            phone=_clean(phone),
            username=clean_username,
            password_hash=hash_secret(password) if password else None,
            passcode_hash=hash_secret(passcode) if passcode else None,
            is_active=is_active,
        )
        db.session.add(person)
        db.session.flush()

        audit_service.record(
            audit,
            action="Create",
            entity_type="Person",
            entity_id=person.id,
            actor_name=actor_name,
            description=f"Created {clean_role.lower()} {clean_name}",
            changes={"name": clean_name, "role": clean_role, "phone": person.phone},
        )
        db.session.commit()
        return person

    return run_with_retry(_op)


_UPDATABLE_FIELDS = ("name", "role", "phone", "username", "is_active")


def update_person(
    person_id: int,
    *,
    changes: dict,
    actor_name: str | None = None,
    audit: audit_service.AuditSink | None = None,
) -> Person:
    """
    Update profile fields and/or credentials.

    changes may hold name, role, phone, username, is_active, password and
    passcode. Credential values are hashed; an empty string clears them.
    """
    def _op():
        person = get_person(person_id, lock=True)
        change_lines = []

        for field in _UPDATABLE_FIELDS:
            if field not in changes:
                continue
            value = changes[field]
            if field == "name":
                value = _clean(value)
                if not value:
                    raise ValidationError("name cannot be blank")
            elif field == "role":
                value = _validate_role(value)
            elif field in ("phone", "username"):
                value = _clean(value)
                if field == "username" and value:
                    _ensure_username_free(value, exclude_id=person.id)
            elif field == "is_active":
                value = bool(value)

            old = getattr(person, field)
            if old != value:
                setattr(person, field, value)
                change_lines.append(f"{field}: {old} -> {value}")

        for field, column in (("password", "password_hash"), ("passcode", "passcode_hash")):
            if field not in changes:
                continue
            secret = changes[field]
            setattr(person, column, hash_secret(secret) if secret else None)
            change_lines.append(f"{field} {'changed' if secret else 'cleared'}")

        if change_lines:
            audit_service.record(
                audit,
                action="Update",
                entity_type="Person",
                entity_id=person.id,
                actor_name=actor_name,
                description="; ".join(change_lines),
            )

        db.session.commit()
        return person

    return run_with_retry(_op)


def delete_person(
    person_id: int,
    *,
    actor_name: str | None = None,
    audit: audit_service.AuditSink | None = None,
) -> None:
    """
    Remove a person row.

    Transactions and payments keep their customer_name snapshot; their
    references to the person are nulled explicitly (SQLite does not enforce
    ON DELETE SET NULL without the foreign_keys pragma).
    """
    def _op():
        person = get_person(person_id, lock=True)
        name = person.name

        for txn in db.session.query(Transaction).filter(Transaction.person_id == person_id):
            txn.person_id = None
        for txn in db.session.query(Transaction).filter(Transaction.driver_id == person_id):
            txn.driver_id = None
        for payment in db.session.query(Payment).filter(Payment.person_id == person_id):
            payment.person_id = None

        db.session.delete(person)

        audit_service.record(
            audit,
            action="Delete",
            entity_type="Person",
            entity_id=person_id,
            actor_name=actor_name,
            description=f"Deleted {name}",
        )
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# DERIVED SUMMARIES
# =============================================================================

def _empty_summary() -> dict:
    return {
        "balance_cents": 0,
        "total_spent_cents": 0,
        "total_profit_cents": 0,
        "last_activity_at": None,
        "pending_deliveries": 0,
        "completed_deliveries": 0,
    }


def person_balance_cents(person_id: int) -> int:
    paid = (
        db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.person_id == person_id)
        .scalar()
    )
    charged = (
        db.session.query(func.coalesce(func.sum(Transaction.total_cents), 0))
        .filter(Transaction.person_id == person_id, Transaction.status != STATUS_CANCELED)
        .scalar()
    )
    return int(paid) - int(charged)


def get_person_summary(person_id: int) -> dict:
    """Derived figures for one person, computed from that person's rows only."""
    person = get_person(person_id)
    summary = _empty_summary()
    summary["balance_cents"] = person_balance_cents(person_id)

    transactions = db.session.query(Transaction).filter(Transaction.person_id == person_id).all()
    payments = db.session.query(Payment).filter(Payment.person_id == person_id).all()

    for txn in transactions:
        if txn.status in (STATUS_CANCELED, STATUS_REFUNDED):
            continue
        summary["total_spent_cents"] += txn.total_cents
        summary["total_profit_cents"] += sum(item.profit_cents for item in txn.items) - txn.discount_cents

    dates = [t.transaction_date for t in transactions] + [p.payment_date for p in payments]
    summary["last_activity_at"] = max(dates) if dates else None

    deliveries = db.session.query(Transaction).filter(
        Transaction.driver_id == person_id,
        Transaction.is_delivery.is_(True),
    )
    summary["pending_deliveries"] = deliveries.filter(Transaction.status == STATUS_PENDING).count()
    summary["completed_deliveries"] = deliveries.filter(Transaction.status == STATUS_COMPLETED).count()

    return {"person": person, **summary}


def _grouped(query) -> dict:
    return {row[0]: row[1] for row in query.all() if row[0] is not None}


def list_people(role: str | None = None) -> list[dict]:
    """
    Every person (optionally one role) with derived summaries.

    Computed with one grouped aggregate query per figure rather than per
    person; get_person_summary must produce the same numbers.
    """
    query = db.session.query(Person)
    if role:
        query = query.filter(Person.role == role.strip().upper())
    people = query.order_by(Person.name.asc(), Person.id.asc()).all()

    active = ~Transaction.status.in_([STATUS_CANCELED, STATUS_REFUNDED])

    paid = _grouped(
        db.session.query(Payment.person_id, func.sum(Payment.amount_cents)).group_by(Payment.person_id)
    )
    charged = _grouped(
        db.session.query(Transaction.person_id, func.sum(Transaction.total_cents))
        .filter(Transaction.status != STATUS_CANCELED)
        .group_by(Transaction.person_id)
    )
    spent = _grouped(
        db.session.query(Transaction.person_id, func.sum(Transaction.total_cents))
        .filter(active)
        .group_by(Transaction.person_id)
    )
    discounts = _grouped(
        db.session.query(Transaction.person_id, func.sum(Transaction.discount_cents))
        .filter(active)
        .group_by(Transaction.person_id)
    )
    line_profit = _grouped(
        db.session.query(
            Transaction.person_id,
            func.sum(TransactionItem.subtotal_cents - TransactionItem.quantity * TransactionItem.unit_cost_cents),
        )
        .join(TransactionItem, TransactionItem.transaction_id == Transaction.id)
        .filter(active)
        .group_by(Transaction.person_id)
    )
    last_txn = _grouped(
        db.session.query(Transaction.person_id, func.max(Transaction.transaction_date)).group_by(Transaction.person_id)
    )
    last_payment = _grouped(
        db.session.query(Payment.person_id, func.max(Payment.payment_date)).group_by(Payment.person_id)
    )
    delivery_counts = {}
    for driver_id, status, count in (
        db.session.query(Transaction.driver_id, Transaction.status, func.count(Transaction.id))
        .filter(Transaction.is_delivery.is_(True), Transaction.driver_id.isnot(None))
        .group_by(Transaction.driver_id, Transaction.status)
        .all()
    ):
        delivery_counts[(driver_id, status)] = count

    results = []
    for person in people:
        pid = person.id
        dates = [d for d in (last_txn.get(pid), last_payment.get(pid)) if d is not None]
        summary = _empty_summary()
        summary.update({
            "balance_cents": int(paid.get(pid) or 0) - int(charged.get(pid) or 0),
            "total_spent_cents": int(spent.get(pid) or 0),
            "total_profit_cents": int(line_profit.get(pid) or 0) - int(discounts.get(pid) or 0),
            "last_activity_at": max(dates) if dates else None,
            "pending_deliveries": delivery_counts.get((pid, STATUS_PENDING), 0),
            "completed_deliveries": delivery_counts.get((pid, STATUS_COMPLETED), 0),
        })
        results.append({"person": person, **summary})
    return results


def summary_to_dict(summary: dict) -> dict:
    data = summary["person"].to_dict()
    data.update({k: v for k, v in summary.items() if k != "person"})
    data["last_activity_at"] = to_utc_z(summary["last_activity_at"])
    return data


# =============================================================================
# NAME SNAPSHOT RECONCILIATION
# =============================================================================

def reconcile_name_snapshots(
    *,
    actor_name: str | None = None,
    audit: audit_service.AuditSink | None = None,
) -> dict:
    """
    Batch job: bring customer_name snapshots and person links back in line.

    1. Rows linked to a person get that person's current name.
    2. Unlinked rows with a name are linked to the customer of that name,
       creating the customer when nobody matches. Ambiguous names are left
       alone and counted.

    Idempotent: a second run reports zero changes.
    """
    def _op():
        stats = {"refreshed": 0, "linked": 0, "created": 0, "skipped_ambiguous": 0}

        for model in (Transaction, Payment):
            linked_rows = (
                db.session.query(model, Person.name)
                .join(Person, Person.id == model.person_id)
                .filter(db.or_(model.customer_name.is_(None), model.customer_name != Person.name))
                .all()
            )
            for row, current_name in linked_rows:
                row.customer_name = current_name
                stats["refreshed"] += 1

        resolved: dict[str, Person | None] = {}
        for model in (Transaction, Payment):
            unlinked_rows = (
                db.session.query(model)
                .filter(model.person_id.is_(None), model.customer_name.isnot(None))
                .order_by(model.id.asc())
                .all()
            )
            for row in unlinked_rows:
                name = _clean(row.customer_name)
                if not name:
                    continue
                key = name.lower()
                if key not in resolved:
                    match = resolve_person_by_identity(name, None, ROLE_CUSTOMER)
                    if match.kind == MATCH_MATCHED:
                        resolved[key] = match.person
                    elif match.kind == MATCH_AMBIGUOUS:
                        resolved[key] = None
                    else:
                        person = Person(name=name, role=ROLE_CUSTOMER)
                        db.session.add(person)
                        db.session.flush()
                        resolved[key] = person
                        stats["created"] += 1

                person = resolved[key]
                if person is None:
                    stats["skipped_ambiguous"] += 1
                    continue
                row.person_id = person.id
                row.customer_name = person.name
                stats["linked"] += 1

        if stats["refreshed"] or stats["linked"] or stats["created"]:
            audit_service.record(
                audit,
                action="Sync",
                entity_type="Person",
                entity_id=None,
                actor_name=actor_name,
                description=(
                    f"Name sync: {stats['refreshed']} refreshed, {stats['linked']} linked, "
                    f"{stats['created']} created, {stats['skipped_ambiguous']} ambiguous"
                ),
                changes=stats,
            )

        db.session.commit()
        return stats

    stats = run_with_retry(_op)
    current_app.logger.info(
        "Name snapshot sync finished: refreshed=%s linked=%s created=%s skipped_ambiguous=%s",
        stats["refreshed"], stats["linked"], stats["created"], stats["skipped_ambiguous"],
    )
    return stats
