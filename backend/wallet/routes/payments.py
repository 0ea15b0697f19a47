# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

# backend/wallet/routes/payments.py
"""
Payment API Routes

DESIGN:
- Record a payment, optionally with manual allocations
  (without them the amount is swept over open invoices, oldest first)
- Delete a payment: its allocations go with it, invoices become due again
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import with_actor, current_actor
from ..services import allocation_service
from ..services.errors import LedgerError
from ..validation import coerce_cents, coerce_int, coerce_str, parse_allocations


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("")
@with_actor
def record_payment_route():
    """
    Record a payment.

    Request body:
    {
        "amount_cents": 10000,
        "person_id": 3,                 (optional)
        "customer_name": "Ann",         (optional; resolved or created)
        "phone": "555-0101",            (optional)
        "method": "Cash",               (optional, defaults to DEFAULT_PAYMENT_METHOD)
        "reference": "...",             (optional)
        "payment_date": "2024-02-01T09:00:00Z",
        "allocations": [{"transaction_id": 12, "amount_cents": 5000}]  (optional)
    }

    Returns:
        201: Payment recorded
        400: Invalid input / over-allocation
        404: Allocation references an unknown transaction
        409: Ambiguous customer
    """
    try:
        data = request.get_json(silent=True) or {}

        payment = allocation_service.record_payment(
            amount_cents=coerce_cents(data.get("amount_cents"), "amount_cents", minimum=None),
            person_id=coerce_int(data.get("person_id"), "person_id", required=False),
            customer_name=coerce_str(data.get("customer_name"), "customer_name", max_length=255),
            phone=coerce_str(data.get("phone"), "phone", max_length=32),
            method=coerce_str(data.get("method"), "method", max_length=32),
            reference=coerce_str(data.get("reference"), "reference", max_length=255),
            payment_date=data.get("payment_date"),
            employee_name=current_actor(),
            allocations=parse_allocations(data.get("allocations")),
        )

        return jsonify({"payment": payment.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("")
def list_payments_route():
    try:
        limit = request.args.get("limit", default=500, type=int)
        limit = max(1, min(limit, 5000))

        payments = allocation_service.list_payments(
            person_id=request.args.get("person_id", type=int),
            limit=limit,
        )

        return jsonify({
            "payments": [p.to_dict() for p in payments],
            "count": len(payments),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
def get_payment_route(payment_id: int):
    try:
        payment = allocation_service.get_payment(payment_id)
        return jsonify({"payment": payment.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.delete("/<int:payment_id>")
@with_actor
def delete_payment_route(payment_id: int):
    try:
        allocation_service.delete_payment(payment_id, actor_name=current_actor())
        return jsonify({"deleted": True, "payment_id": payment_id}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete payment")
        return jsonify({"error": "Internal server error"}), 500
