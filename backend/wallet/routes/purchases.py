# Overview: Flask API routes for supplier purchases; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import with_actor, current_actor
from ..services import stock_service
from ..services.errors import LedgerError
from ..validation import coerce_str, parse_purchase_items


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


@purchases_bp.post("")
@with_actor
def create_purchase_route():
    """
    Receive a supplier purchase into stock.

    Request body:
    {
        "supplier_name": "Acme Wholesale",
        "items": [{"product_id": 1, "quantity": 10, "unit_cost_cents": 700}],
        "payment_status": "PAID",       (PAID or PENDING)
        "paid_by": "Store",
        "purchase_date": "2024-01-31T10:00:00Z"
    }

    All lines are applied or none are: an unknown product on any line
    rejects the whole purchase.
    """
    try:
        data = request.get_json(silent=True) or {}

        purchase = stock_service.create_purchase(
            items=parse_purchase_items(data.get("items")),
            supplier_name=coerce_str(data.get("supplier_name"), "supplier_name", max_length=255),
            payment_status=(coerce_str(data.get("payment_status"), "payment_status") or "PAID").upper(),
            paid_by=coerce_str(data.get("paid_by"), "paid_by", max_length=255),
            purchase_date=data.get("purchase_date"),
            actor_name=current_actor(),
        )

        return jsonify({"purchase": purchase.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create purchase")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.get("")
def list_purchases_route():
    try:
        limit = request.args.get("limit", default=200, type=int)
        purchases = stock_service.list_purchases(limit=max(1, min(limit, 1000)))
        return jsonify({
            "purchases": [p.to_dict() for p in purchases],
            "count": len(purchases),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list purchases")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.get("/<int:purchase_id>")
def get_purchase_route(purchase_id: int):
    try:
        purchase = stock_service.get_purchase(purchase_id)
        return jsonify({"purchase": purchase.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get purchase")
        return jsonify({"error": "Internal server error"}), 500
