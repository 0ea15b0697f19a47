"""
Stock & costing tests.

Verifies:
- Weighted-average cost blending with half-up cent rounding
- Reservation edge cases (exact stock, insufficient stock, stockless/service)
- Purchases are all-or-nothing across lines
"""

import pytest

from wallet.extensions import db
from wallet.models import Product, Purchase, AuditLog
from wallet.services import stock_service
from wallet.services.errors import InsufficientStockError, NotFoundError, ValidationError


# =============================================================================
# WEIGHTED-AVERAGE COST
# =============================================================================


class TestApplyPurchase:

    def test_blends_cost_by_quantity(self, make_product):
        product = make_product(stock=10, cost_cents=500)

        stock_service.apply_purchase(product, 10, 700)

        assert product.stock_quantity == 20
        assert product.cost_price_cents == 600

    def test_rounds_half_up_to_the_cent(self, make_product):
        # (1 * 100 + 1 * 101) / 2 = 100.5 -> 101
        product = make_product(stock=1, cost_cents=100)

        stock_service.apply_purchase(product, 1, 101)

        assert product.cost_price_cents == 101

    def test_rounds_down_below_half(self, make_product):
        # (2 * 100 + 1 * 101) / 3 = 100.33 -> 100
        product = make_product(stock=2, cost_cents=100)

        stock_service.apply_purchase(product, 1, 101)

        assert product.cost_price_cents == 100

    def test_empty_stock_takes_purchase_cost(self, make_product):
        product = make_product(stock=0, cost_cents=999)

        stock_service.apply_purchase(product, 5, 250)

        assert product.stock_quantity == 5
        assert product.cost_price_cents == 250

    def test_reactivates_inactive_product(self, make_product):
        product = make_product(stock=0, is_active=False)

        stock_service.apply_purchase(product, 1, 100)

        assert product.is_active is True

    def test_rejects_non_positive_quantity(self, make_product):
        product = make_product()
        with pytest.raises(ValidationError):
            stock_service.apply_purchase(product, 0, 100)


# =============================================================================
# RESERVE / RESTORE
# =============================================================================


class TestReserveStock:

    def test_reserving_exact_stock_leaves_zero(self, make_product):
        product = make_product(stock=3, cost_cents=450)

        unit_cost = stock_service.reserve_stock(product, 3)

        assert product.stock_quantity == 0
        assert unit_cost == 450

    def test_insufficient_stock_leaves_stock_unchanged(self, make_product):
        product = make_product(name="Rice", stock=2)

        with pytest.raises(InsufficientStockError) as exc:
            stock_service.reserve_stock(product, 3)

        assert product.stock_quantity == 2
        assert str(exc.value) == "Insufficient stock for Rice. Available: 2, Requested: 3"
        assert exc.value.details["available"] == 2
        assert exc.value.details["requested"] == 3

    @pytest.mark.parametrize("flag", ["is_stockless", "is_service"])
    def test_untracked_products_bypass_stock(self, make_product, flag):
        product = make_product(stock=0, **{flag: True})

        stock_service.reserve_stock(product, 5)
        assert product.stock_quantity == 0

        stock_service.restore_stock(product, 5)
        assert product.stock_quantity == 0

    def test_restore_is_inverse_of_reserve(self, make_product):
        product = make_product(stock=7)

        stock_service.reserve_stock(product, 4)
        stock_service.restore_stock(product, 4)

        assert product.stock_quantity == 7


# =============================================================================
# PURCHASES
# =============================================================================


class TestCreatePurchase:

    def test_purchase_updates_stock_cost_and_total(self, make_product, audit_sink):
        oil = make_product(name="Oil", stock=10, cost_cents=500)
        rice = make_product(name="Rice", stock=0, cost_cents=0)

        purchase = stock_service.create_purchase(
            items=[
                {"product_id": oil.id, "quantity": 10, "unit_cost_cents": 700},
                {"product_id": rice.id, "quantity": 4, "unit_cost_cents": 1250},
            ],
            supplier_name="Acme Wholesale",
            actor_name="Mary",
            audit=audit_sink,
        )

        assert purchase.total_cents == 10 * 700 + 4 * 1250
        assert len(purchase.items) == 2
        assert db.session.get(Product, oil.id).cost_price_cents == 600
        assert db.session.get(Product, rice.id).stock_quantity == 4

        assert audit_sink.actions() == ["Create"]
        entry = audit_sink.entries[0]
        assert entry.entity_type == "Purchase"
        assert entry.actor_name == "Mary"
        assert "Acme Wholesale" in entry.description

    def test_unknown_product_rejects_whole_purchase(self, make_product):
        oil = make_product(name="Oil", stock=10, cost_cents=500)

        with pytest.raises(NotFoundError):
            stock_service.create_purchase(items=[
                {"product_id": oil.id, "quantity": 10, "unit_cost_cents": 700},
                {"product_id": 999999, "quantity": 1, "unit_cost_cents": 100},
            ])

        reloaded = db.session.get(Product, oil.id)
        assert reloaded.stock_quantity == 10
        assert reloaded.cost_price_cents == 500
        assert db.session.query(Purchase).count() == 0

    def test_default_sink_writes_audit_row(self, make_product):
        oil = make_product(name="Oil")

        purchase = stock_service.create_purchase(
            items=[{"product_id": oil.id, "quantity": 1, "unit_cost_cents": 100}],
        )

        log = db.session.query(AuditLog).filter_by(entity_type="Purchase").one()
        assert log.entity_id == str(purchase.id)
        assert log.actor_name == "System"

    def test_invalid_payment_status_rejected(self, make_product):
        oil = make_product(name="Oil")
        with pytest.raises(ValidationError):
            stock_service.create_purchase(
                items=[{"product_id": oil.id, "quantity": 1, "unit_cost_cents": 100}],
                payment_status="LATER",
            )
