# Overview: Service-layer operations for stock and costing; encapsulates business logic and database work.

# backend/wallet/services/stock_service.py

from ..extensions import db
from ..models import Product, Purchase, PurchaseItem
from ..models.purchasing import VALID_PURCHASE_PAYMENT_STATUSES, PAYMENT_STATUS_PAID
from ..validation import normalize_business_date
from wallet.time_utils import format_cents
from . import audit_service
from .concurrency import lock_for_update, run_with_retry
from .errors import NotFoundError, InsufficientStockError, ValidationError
"""
Stock & Costing Invariants (authoritative)

Stock model:
- Product.stock_quantity is the on-hand count, mutated in place.
- Tracked products never go below zero: reserve_stock refuses the sale.
- Stockless and service products bypass stock accounting in both
  directions (reserve and restore leave stock_quantity untouched).

Cost model:
- Product.cost_price_cents is a weighted average cost (WAC), changed only by
  purchases:
    new_cost = (stock * cost + qty * unit_cost) / (stock + qty)
  with nearest-cent rounding (half-up).
- Sales capture the current WAC on each line as unit_cost_cents.

Atomicity:
- A purchase is all-or-nothing across its lines: any failure rolls back every
  cost and stock mutation already applied in the same call.
"""


def _round_half_up_div(numerator: int, denominator: int) -> int:
    # nearest-cent rounding (half-up); operands are non-negative here
    return (numerator + (denominator // 2)) // denominator


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product with ID {product_id} not found", details={"product_id": product_id})
    return product


def apply_purchase(product: Product, quantity: int, unit_cost_cents: int) -> Product:
    """
    Receive purchased stock into a product and blend its cost.

    Reactivates inactive products: buying stock for an item means it is
    being sold again.
    """
    if quantity <= 0:
        raise ValidationError("Purchase quantity must be positive")
    if unit_cost_cents < 0:
        raise ValidationError("Unit cost cannot be negative")

    current_stock = product.stock_quantity or 0
    current_cost = product.cost_price_cents or 0
    new_total_qty = current_stock + quantity

    if new_total_qty > 0:
        current_value = current_stock * current_cost
        new_value = quantity * unit_cost_cents
        product.cost_price_cents = _round_half_up_div(current_value + new_value, new_total_qty)
    else:
        product.cost_price_cents = unit_cost_cents

    product.stock_quantity = new_total_qty

    if not product.is_active:
        product.is_active = True

    return product


def reserve_stock(product: Product, quantity: int) -> int:
    """
    Deduct stock for a sale line.

    Returns the product's current cost as the unit cost captured on the line.

    Raises:
        InsufficientStockError: tracked product with less stock than requested
    """
    if product.tracks_stock:
        available = product.stock_quantity or 0
        if available < quantity:
            raise InsufficientStockError(
                f"Insufficient stock for {product.name}. Available: {available}, Requested: {quantity}",
                details={
                    "product_id": product.id,
                    "product_name": product.name,
                    "available": available,
                    "requested": quantity,
                },
            )
        product.stock_quantity = available - quantity

    return product.cost_price_cents or 0


def restore_stock(product: Product, quantity: int) -> None:
    """Inverse of reserve_stock; used on cancel, delete and refund."""
    if not product.tracks_stock:
        return
    product.stock_quantity = (product.stock_quantity or 0) + quantity


def restore_lines(items) -> list[dict]:
    """Restore every line's quantity. Returns what was restored, for audit payloads."""
    restored = []
    for item in items:
        product = db.session.query(Product).filter_by(id=item.product_id).first()
        if product is None:
            # Product row removed after the sale; nothing left to restock.
            continue
        restore_stock(product, item.quantity)
        restored.append({"product_id": item.product_id, "quantity": item.quantity})
    return restored


def reserve_lines(items) -> None:
    """Re-deduct every line's quantity (un-cancel). Unit costs captured at sale are kept."""
    for item in items:
        product = get_product(item.product_id, lock=True)
        reserve_stock(product, item.quantity)


# =============================================================================
# PURCHASES
# =============================================================================

def create_purchase(
    *,
    items: list[dict],
    supplier_name: str | None = None,
    payment_status: str = PAYMENT_STATUS_PAID,
    paid_by: str | None = None,
    purchase_date=None,
    actor_name: str | None = None,
    audit: audit_service.AuditSink | None = None,
) -> Purchase:
    """
    Record a supplier purchase and receive every line into stock.

    Args:
        items: [{"product_id", "quantity", "unit_cost_cents"}, ...]
        supplier_name: Supplier display name (optional)
        payment_status: PAID or PENDING (bought on credit)
        paid_by: "Store" or the employee who paid
        purchase_date: Business date (defaults to now)

    Raises:
        NotFoundError: any line references an unknown product (nothing is applied)
        ValidationError: empty purchase, non-positive quantity, negative cost
    """
    def _op():
        if not items:
            raise ValidationError("Purchase must contain at least one item")
        if payment_status not in VALID_PURCHASE_PAYMENT_STATUSES:
            raise ValidationError(
                f"Invalid payment_status: {payment_status}. Must be one of {VALID_PURCHASE_PAYMENT_STATUSES}"
            )

        purchase = Purchase(
            purchase_date=normalize_business_date(purchase_date, "purchase_date"),
            supplier_name=supplier_name,
            payment_status=payment_status,
            paid_by=paid_by or "Store",
        )
        db.session.add(purchase)

        total = 0
        product_names = []
        for line in items:
            product = get_product(line["product_id"], lock=True)
            quantity = line["quantity"]
            unit_cost = line["unit_cost_cents"]

            apply_purchase(product, quantity, unit_cost)

            purchase.items.append(PurchaseItem(
                product_id=product.id,
                quantity=quantity,
                unit_cost_cents=unit_cost,
            ))
            total += quantity * unit_cost
            product_names.append(product.name)

        purchase.total_cents = total
        db.session.flush()

        label = _currency_label()
        audit_service.record(
            audit,
            action="Create",
            entity_type="Purchase",
            entity_id=purchase.id,
            actor_name=actor_name,
            description=(
                f"Purchase #{purchase.id} from {supplier_name or 'Unknown supplier'} | "
                f"Items: {', '.join(product_names)} | Total: {format_cents(total, label)}"
            ),
            changes={
                "supplier": supplier_name,
                "payment_status": payment_status,
                "paid_by": purchase.paid_by,
                "items": [
                    {"product_id": i["product_id"], "quantity": i["quantity"], "unit_cost_cents": i["unit_cost_cents"]}
                    for i in items
                ],
            },
        )

        db.session.commit()
        return purchase

    return run_with_retry(_op)


def get_purchase(purchase_id: int) -> Purchase:
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFoundError(f"Purchase {purchase_id} not found")
    return purchase


def list_purchases(limit: int = 200) -> list[Purchase]:
    return (
        db.session.query(Purchase)
        .order_by(Purchase.purchase_date.desc(), Purchase.id.desc())
        .limit(limit)
        .all()
    )


def _currency_label() -> str:
    from flask import current_app
    return current_app.config.get("CURRENCY_LABEL", "")
