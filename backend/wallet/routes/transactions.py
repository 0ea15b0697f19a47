# Overview: Flask API routes for transaction (sales invoice) operations; parses input and returns JSON responses.

# backend/wallet/routes/transactions.py
"""
Transaction API Routes

DESIGN:
- Create a sale (stock reserved, customer resolved, credit swept)
- Edit the mutable fields (note, customer, driver, employee)
- Move through the status state machine
- Refund (full) and delete (un-apply, never refund)
- The acting employee comes from X-Authorized-By (see with_actor)
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import with_actor, current_actor
from ..services import transaction_service
from ..services.errors import LedgerError
from ..validation import (
    coerce_bool,
    coerce_cents,
    coerce_int,
    coerce_str,
    parse_sale_items,
)


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.post("")
@with_actor
def create_transaction_route():
    """
    Create a sale.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2, "unit_price_cents": 500}],
        "person_id": 3,                  (optional)
        "customer_name": "Ann",          (optional; resolved or created)
        "phone": "555-0101",             (optional; matched before name)
        "is_delivery": false,
        "driver_id": 7, "driver_name": "Sam", "driver_phone": "...",
        "discount_cents": 0,
        "note": "...",
        "transaction_date": "2024-01-31T10:00:00Z"
    }

    Returns:
        201: Transaction created
        400: Invalid input
        404: Unknown product / person
        409: Insufficient stock or ambiguous customer
    """
    try:
        data = request.get_json(silent=True) or {}

        txn = transaction_service.create_transaction(
            items=parse_sale_items(data.get("items")),
            person_id=coerce_int(data.get("person_id"), "person_id", required=False),
            customer_name=coerce_str(data.get("customer_name"), "customer_name", max_length=255),
            phone=coerce_str(data.get("phone"), "phone", max_length=32),
            is_delivery=coerce_bool(data.get("is_delivery", False)),
            driver_id=coerce_int(data.get("driver_id"), "driver_id", required=False),
            driver_name=coerce_str(data.get("driver_name"), "driver_name", max_length=255),
            driver_phone=coerce_str(data.get("driver_phone"), "driver_phone", max_length=32),
            note=coerce_str(data.get("note"), "note"),
            employee_name=current_actor(),
            discount_cents=coerce_cents(data.get("discount_cents"), "discount_cents", required=False) or 0,
            transaction_date=data.get("transaction_date"),
        )

        return jsonify({"transaction": txn.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("")
def list_transactions_route():
    """
    List transactions, newest first.

    Query params: person_id, driver_id, status, limit
    """
    try:
        limit = request.args.get("limit", default=500, type=int)
        limit = max(1, min(limit, 5000))

        transactions = transaction_service.list_transactions(
            person_id=request.args.get("person_id", type=int),
            driver_id=request.args.get("driver_id", type=int),
            status=request.args.get("status"),
            limit=limit,
        )

        return jsonify({
            "transactions": [t.to_dict(include_items=False) for t in transactions],
            "count": len(transactions),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.get("/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    try:
        txn = transaction_service.get_transaction(transaction_id)
        return jsonify({"transaction": txn.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.put("/<int:transaction_id>")
@with_actor
def update_transaction_route(transaction_id: int):
    """
    Edit note, customer, driver or employee-of-record.

    Only keys present in the body are changed. "person_id": null removes the
    customer; customer_name/phone without person_id resolve or create one.
    """
    try:
        data = request.get_json(silent=True) or {}
        kwargs = {}

        if "note" in data:
            kwargs["note"] = coerce_str(data.get("note"), "note")
        if "employee_name" in data:
            kwargs["employee_name"] = coerce_str(data.get("employee_name"), "employee_name", max_length=255)
        if "driver_id" in data:
            kwargs["driver_id"] = coerce_int(data.get("driver_id"), "driver_id", required=False)
        if "person_id" in data:
            kwargs["person_id"] = coerce_int(data.get("person_id"), "person_id", required=False)
        if "customer_name" in data:
            kwargs["customer_name"] = coerce_str(data.get("customer_name"), "customer_name", max_length=255)
        if "phone" in data:
            kwargs["phone"] = coerce_str(data.get("phone"), "phone", max_length=32)

        txn = transaction_service.update_transaction(
            transaction_id,
            actor_name=current_actor(),
            **kwargs,
        )

        return jsonify({"transaction": txn.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.put("/<int:transaction_id>/status")
@with_actor
def update_status_route(transaction_id: int):
    """
    Request body: {"status": "CANCELED"}

    REFUNDED is rejected here; use POST /<id>/refund.
    """
    try:
        data = request.get_json(silent=True) or {}
        status = coerce_str(data.get("status"), "status")
        if not status:
            return jsonify({"error": "status required"}), 400

        txn = transaction_service.update_status(
            transaction_id,
            status,
            actor_name=current_actor(),
        )

        return jsonify({"transaction": txn.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update transaction status")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/refund")
@with_actor
def refund_transaction_route(transaction_id: int):
    """
    Request body: {"reason": "damaged", "method": "Cash"}  (both optional)
    """
    try:
        data = request.get_json(silent=True) or {}

        txn = transaction_service.refund_transaction(
            transaction_id,
            reason=coerce_str(data.get("reason"), "reason", max_length=200),
            method=coerce_str(data.get("method"), "method", max_length=32),
            actor_name=current_actor(),
        )

        return jsonify({"transaction": txn.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to refund transaction")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.delete("/<int:transaction_id>")
@with_actor
def delete_transaction_route(transaction_id: int):
    try:
        transaction_service.delete_transaction(transaction_id, actor_name=current_actor())
        return jsonify({"deleted": True, "transaction_id": transaction_id}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete transaction")
        return jsonify({"error": "Internal server error"}), 500
