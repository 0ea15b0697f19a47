"""
Transaction lifecycle tests.

Verifies:
- Create is all-or-nothing across lines and captures unit cost
- Status state machine and its stock effects (cancel / un-cancel round trip)
- Refund creates exactly one offsetting negative payment
- Delete un-applies payments and never refunds
- Edit moves exclusively-tied payments with the customer
"""

from datetime import datetime

import pytest

from wallet.extensions import db
from wallet.models import Payment, PaymentAllocation, Product, Transaction, TransactionItem, AuditLog
from wallet.models.people import ROLE_DRIVER
from wallet.services import allocation_service, person_service, transaction_service
from wallet.services.errors import (
    AlreadyRefundedError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)


def day(n: int) -> datetime:
    return datetime(2024, 1, n, 12, 0, 0)


def _stock(product_id: int) -> int:
    return db.session.get(Product, product_id).stock_quantity


# =============================================================================
# CREATE
# =============================================================================


class TestCreateTransaction:

    def test_counter_sale_completes_and_captures_cost(self, make_product, audit_sink):
        product = make_product(name="Sugar", stock=10, cost_cents=180, price_cents=250)

        txn = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 4}],
            customer_name="Ann",
            employee_name="Mary",
            transaction_date=day(3),
            audit=audit_sink,
        )

        assert txn.status == "COMPLETED"
        assert txn.total_cents == 1000
        line = txn.items[0]
        assert line.unit_price_cents == 250
        assert line.unit_cost_cents == 180
        assert line.subtotal_cents == 1000
        assert _stock(product.id) == 6

        entry = audit_sink.entries[0]
        assert entry.action == "Sale"
        assert entry.description == "Date: 2024/01/03 | Customer: Ann | Items: Sugar x4 | Total: 10.00 LD"

    def test_walk_in_description(self, make_product, audit_sink):
        product = make_product(name="Sugar", price_cents=250)

        transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 1}],
            audit=audit_sink,
        )

        assert "Customer: Walk-in" in audit_sink.entries[0].description

    def test_delivery_starts_pending_with_driver(self, make_product):
        product = make_product()

        txn = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 1}],
            customer_name="Ann",
            is_delivery=True,
            driver_name="Sam",
        )

        assert txn.status == "PENDING"
        assert txn.driver is not None
        assert txn.driver.role == ROLE_DRIVER
        assert txn.driver.name == "Sam"

    def test_discount_floors_total_at_zero(self, make_product):
        product = make_product(price_cents=500)

        txn = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 1}],
            discount_cents=800,
        )

        assert txn.total_cents == 0

    def test_failed_line_rolls_back_every_line(self, make_product):
        plenty = make_product(name="Plenty", stock=10)
        scarce = make_product(name="Scarce", stock=1)

        with pytest.raises(InsufficientStockError):
            transaction_service.create_transaction(items=[
                {"product_id": plenty.id, "quantity": 3},
                {"product_id": scarce.id, "quantity": 2},
            ], customer_name="Ann")

        assert _stock(plenty.id) == 10
        assert _stock(scarce.id) == 1
        assert db.session.query(Transaction).count() == 0
        assert db.session.query(TransactionItem).count() == 0

    def test_unknown_product(self):
        with pytest.raises(NotFoundError):
            transaction_service.create_transaction(items=[{"product_id": 999, "quantity": 1}])

    def test_empty_sale_rejected(self):
        with pytest.raises(ValidationError):
            transaction_service.create_transaction(items=[])


# =============================================================================
# STATUS
# =============================================================================


class TestUpdateStatus:

    def test_cancel_uncancel_round_trip(self, make_product, audit_sink):
        product = make_product(stock=10)
        txn = transaction_service.create_transaction(items=[{"product_id": product.id, "quantity": 4}])
        assert _stock(product.id) == 6

        transaction_service.update_status(txn.id, "CANCELED", audit=audit_sink)
        assert _stock(product.id) == 10

        transaction_service.update_status(txn.id, "COMPLETED", audit=audit_sink)
        assert _stock(product.id) == 6

        assert [e.description for e in audit_sink.entries] == [
            "Status: COMPLETED -> CANCELED",
            "Status: CANCELED -> COMPLETED",
        ]

    def test_same_status_is_noop(self, make_product, audit_sink):
        product = make_product(stock=10)
        txn = transaction_service.create_transaction(items=[{"product_id": product.id, "quantity": 1}])

        transaction_service.update_status(txn.id, "COMPLETED", audit=audit_sink)

        assert audit_sink.entries == []
        assert _stock(product.id) == 9

    def test_pending_to_completed_keeps_stock(self, make_product):
        product = make_product(stock=10)
        txn = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 2}],
            is_delivery=True,
        )

        transaction_service.update_status(txn.id, "COMPLETED")

        assert _stock(product.id) == 8

    def test_uncancel_without_stock_fails_and_stays_canceled(self, make_product):
        product = make_product(stock=2)
        first = transaction_service.create_transaction(items=[{"product_id": product.id, "quantity": 2}])
        transaction_service.update_status(first.id, "CANCELED")
        transaction_service.create_transaction(items=[{"product_id": product.id, "quantity": 2}])

        with pytest.raises(InsufficientStockError):
            transaction_service.update_status(first.id, "COMPLETED")

        assert db.session.get(Transaction, first.id).status == "CANCELED"
        assert _stock(product.id) == 0

    def test_refunded_cannot_be_set_directly(self, make_product):
        product = make_product()
        txn = transaction_service.create_transaction(items=[{"product_id": product.id, "quantity": 1}])

        with pytest.raises(InvalidStateError):
            transaction_service.update_status(txn.id, "REFUNDED")

    def test_refunded_is_terminal(self, make_product):
        product = make_product()
        txn = transaction_service.create_transaction(items=[{"product_id": product.id, "quantity": 1}])
        transaction_service.refund_transaction(txn.id)

        with pytest.raises(InvalidStateError):
            transaction_service.update_status(txn.id, "COMPLETED")

    def test_unknown_status(self, make_product):
        product = make_product()
        txn = transaction_service.create_transaction(items=[{"product_id": product.id, "quantity": 1}])

        with pytest.raises(ValidationError):
            transaction_service.update_status(txn.id, "LOST")


# =============================================================================
# REFUND
# =============================================================================


class TestRefund:

    def test_full_refund(self, make_product, make_person, audit_sink):
        ann = make_person("Ann")
        product = make_product(stock=10, price_cents=4000)
        txn = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 2}],
            person_id=ann.id,
            transaction_date=day(1),
        )
        allocation_service.record_payment(amount_cents=8000, person_id=ann.id, payment_date=day(2))
        assert _stock(product.id) == 8
        payments_before = db.session.query(Payment).count()

        refunded = transaction_service.refund_transaction(
            txn.id, reason="damaged", actor_name="Mary", audit=audit_sink,
        )

        assert refunded.status == "REFUNDED"
        assert _stock(product.id) == 10
        assert db.session.query(Payment).count() == payments_before + 1

        refund_payment = db.session.query(Payment).filter(Payment.amount_cents < 0).one()
        assert refund_payment.amount_cents == -8000
        assert refund_payment.person_id == ann.id
        assert refund_payment.reference == f"Refund for Order #{txn.id} - damaged"
        assert [a.amount_cents for a in refund_payment.allocations] == [-8000]
        assert refund_payment.allocations[0].transaction_id == txn.id
        assert refunded.total_paid_cents == 0

        entry = audit_sink.entries[0]
        assert entry.action == "Refund"
        assert entry.changes["refunded_cents"] == 8000
        assert entry.changes["reason"] == "damaged"

    def test_unpaid_refund_creates_no_payment(self, make_product):
        product = make_product(stock=10)
        txn = transaction_service.create_transaction(items=[{"product_id": product.id, "quantity": 1}])

        transaction_service.refund_transaction(txn.id)

        assert db.session.query(Payment).count() == 0
        assert _stock(product.id) == 10

    def test_refund_twice(self, make_product):
        product = make_product()
        txn = transaction_service.create_transaction(items=[{"product_id": product.id, "quantity": 1}])
        transaction_service.refund_transaction(txn.id)

        with pytest.raises(AlreadyRefundedError):
            transaction_service.refund_transaction(txn.id)

    def test_refund_canceled(self, make_product):
        product = make_product(stock=5)
        txn = transaction_service.create_transaction(items=[{"product_id": product.id, "quantity": 1}])
        transaction_service.update_status(txn.id, "CANCELED")

        with pytest.raises(InvalidStateError) as exc:
            transaction_service.refund_transaction(txn.id)

        assert not isinstance(exc.value, AlreadyRefundedError)
        assert _stock(product.id) == 5


# =============================================================================
# DELETE
# =============================================================================


class TestDelete:

    def test_delete_unapplies_and_never_refunds(self, make_product, make_person, audit_sink):
        ann = make_person("Ann")
        product = make_product(stock=10)
        txn = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 3, "unit_price_cents": 1000}],
            person_id=ann.id,
        )
        payment = allocation_service.record_payment(amount_cents=3000, person_id=ann.id)
        assert payment.unallocated_cents == 0

        transaction_service.delete_transaction(txn.id, audit=audit_sink)

        assert db.session.query(Transaction).count() == 0
        assert db.session.query(PaymentAllocation).count() == 0
        assert db.session.query(Payment).count() == 1
        assert db.session.get(Payment, payment.id).unallocated_cents == 3000
        assert _stock(product.id) == 10
        assert audit_sink.entries[0].changes["stock"] == "Stock restored"

    def test_refunded_cannot_be_deleted(self, make_product, make_person):
        ann = make_person("Ann")
        product = make_product(stock=10, price_cents=8000)
        txn = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 1}], person_id=ann.id, transaction_date=day(1),
        )
        paid = allocation_service.record_payment(amount_cents=8000, person_id=ann.id, payment_date=day(2))
        transaction_service.refund_transaction(txn.id)

        with pytest.raises(InvalidStateError):
            transaction_service.delete_transaction(txn.id)

        assert db.session.get(Transaction, txn.id).status == "REFUNDED"
        assert db.session.get(Payment, paid.id).unallocated_cents == 0

        # The refunded money must not come back as credit for the next sale
        later = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 1}], person_id=ann.id, transaction_date=day(3),
        )
        assert later.balance_due_cents == 8000
        assert person_service.person_balance_cents(ann.id) == -16000

    @pytest.mark.filterwarnings("error::sqlalchemy.exc.SAWarning")
    def test_delete_removes_each_allocation_once(self, make_product, make_person):
        ann = make_person("Ann")
        product = make_product(stock=10, price_cents=1000)
        txn = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 2}], person_id=ann.id, transaction_date=day(1),
        )
        allocation_service.record_payment(amount_cents=500, person_id=ann.id, payment_date=day(2))
        allocation_service.record_payment(amount_cents=700, person_id=ann.id, payment_date=day(3))

        transaction_service.delete_transaction(txn.id)

        assert db.session.query(PaymentAllocation).count() == 0
        assert sorted(p.unallocated_cents for p in db.session.query(Payment)) == [500, 700]

    def test_delete_canceled_does_not_restore_twice(self, make_product, audit_sink):
        product = make_product(stock=10)
        txn = transaction_service.create_transaction(items=[{"product_id": product.id, "quantity": 3}])
        transaction_service.update_status(txn.id, "CANCELED")

        transaction_service.delete_transaction(txn.id, audit=audit_sink)

        assert _stock(product.id) == 10
        assert audit_sink.entries[0].changes["stock"] == "Stock already restored"

    def test_delete_writes_audit_row(self, make_product):
        product = make_product(stock=10)
        txn = transaction_service.create_transaction(items=[{"product_id": product.id, "quantity": 1}])

        transaction_service.delete_transaction(txn.id, actor_name="Mary")

        log = db.session.query(AuditLog).filter_by(action="Delete").one()
        assert log.entity_id == str(txn.id)
        assert log.actor_name == "Mary"


# =============================================================================
# EDIT
# =============================================================================


class TestUpdateTransaction:

    def test_each_field_change_is_its_own_line(self, make_product, make_person, audit_sink):
        sam = make_person("Sam", role=ROLE_DRIVER)
        product = make_product()
        txn = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 1}],
            note="ring twice",
            employee_name="Mary",
        )

        transaction_service.update_transaction(
            txn.id,
            note="leave at door",
            driver_id=sam.id,
            employee_name="Joe",
            audit=audit_sink,
        )

        description = audit_sink.entries[0].description
        assert "Note: 'ring twice' -> 'leave at door'" in description
        assert "Employee: Mary -> Joe" in description
        assert "Driver: None -> Sam" in description
        assert description.count("; ") == 2

    def test_no_changes_no_audit(self, make_product, audit_sink):
        product = make_product()
        txn = transaction_service.create_transaction(items=[{"product_id": product.id, "quantity": 1}], note="x")

        transaction_service.update_transaction(txn.id, note="x", audit=audit_sink)

        assert audit_sink.entries == []

    def test_customer_change_moves_exclusive_payment_and_sweeps_credit(self, make_product, make_person):
        ann = make_person("Ann")
        bob = make_person("Bob")
        product = make_product(stock=10)
        txn = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 1, "unit_price_cents": 5000}],
            person_id=ann.id,
            transaction_date=day(1),
        )
        ann_payment = allocation_service.record_payment(amount_cents=2000, person_id=ann.id, payment_date=day(2))
        bob_credit = allocation_service.record_payment(amount_cents=1000, person_id=bob.id, payment_date=day(3))

        updated = transaction_service.update_transaction(txn.id, person_id=bob.id)

        assert updated.person_id == bob.id
        assert updated.customer_name == "Bob"
        assert db.session.get(Payment, ann_payment.id).person_id == bob.id
        assert db.session.get(Payment, bob_credit.id).unallocated_cents == 0
        assert updated.total_paid_cents == 3000

    def test_shared_payment_keeps_its_owner(self, make_product, make_person):
        ann = make_person("Ann")
        bob = make_person("Bob")
        product = make_product(stock=10)
        first = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 1, "unit_price_cents": 1000}],
            person_id=ann.id,
            transaction_date=day(1),
        )
        transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 1, "unit_price_cents": 1000}],
            person_id=ann.id,
            transaction_date=day(2),
        )
        shared = allocation_service.record_payment(amount_cents=2000, person_id=ann.id, payment_date=day(3))
        assert len(shared.allocations) == 2

        transaction_service.update_transaction(first.id, person_id=bob.id)

        assert db.session.get(Payment, shared.id).person_id == ann.id

    def test_removing_customer_clears_exclusive_payment(self, make_product, make_person):
        ann = make_person("Ann")
        product = make_product(stock=10)
        txn = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 1, "unit_price_cents": 1000}],
            person_id=ann.id,
        )
        payment = allocation_service.record_payment(amount_cents=1000, person_id=ann.id)

        updated = transaction_service.update_transaction(txn.id, person_id=None)

        assert updated.person_id is None
        assert updated.customer_name is None
        assert db.session.get(Payment, payment.id).person_id is None

    def test_null_person_with_name_rejected(self, make_product, make_person):
        ann = make_person("Ann")
        product = make_product(stock=10)
        txn = transaction_service.create_transaction(
            items=[{"product_id": product.id, "quantity": 1}], person_id=ann.id,
        )

        with pytest.raises(ValidationError):
            transaction_service.update_transaction(txn.id, person_id=None, customer_name="Bob")

        reloaded = db.session.get(Transaction, txn.id)
        assert reloaded.person_id == ann.id
        assert reloaded.customer_name == "Ann"
