# Overview: Flask API routes for people (customers, drivers, staff); parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import with_actor, current_actor
from ..services import person_service, statement_service
from ..services.errors import LedgerError, ValidationError
from ..validation import coerce_bool, coerce_str, optional_datetime


people_bp = Blueprint("people", __name__, url_prefix="/api/people")


@people_bp.get("")
def list_people_route():
    """
    List people with derived balance, spend, profit and delivery counts.

    Query params: role (CUSTOMER, DRIVER, EMPLOYEE, ADMIN, SYSTEM)
    """
    try:
        summaries = person_service.list_people(role=request.args.get("role"))
        return jsonify({
            "people": [person_service.summary_to_dict(s) for s in summaries],
            "count": len(summaries),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list people")
        return jsonify({"error": "Internal server error"}), 500


@people_bp.post("")
@with_actor
def create_person_route():
    """
    Request body:
    {
        "name": "Ann", "role": "CUSTOMER", "phone": "555-0101",
        "username": "ann", "password": "...", "passcode": "1234", "is_active": true
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        person = person_service.create_person(
            name=coerce_str(data.get("name"), "name", max_length=255),
            role=data.get("role") or "CUSTOMER",
            phone=coerce_str(data.get("phone"), "phone", max_length=32),
            username=coerce_str(data.get("username"), "username", max_length=64),
            password=data.get("password") or None,
            passcode=data.get("passcode") or None,
            is_active=coerce_bool(data.get("is_active", True)),
            actor_name=current_actor(),
        )

        return jsonify({"person": person.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create person")
        return jsonify({"error": "Internal server error"}), 500


@people_bp.get("/<int:person_id>")
def get_person_route(person_id: int):
    try:
        summary = person_service.get_person_summary(person_id)
        return jsonify({"person": person_service.summary_to_dict(summary)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get person")
        return jsonify({"error": "Internal server error"}), 500


@people_bp.put("/<int:person_id>")
@with_actor
def update_person_route(person_id: int):
    """Only keys present in the body are changed; empty password/passcode clears it."""
    try:
        data = request.get_json(silent=True) or {}
        allowed = ("name", "role", "phone", "username", "is_active", "password", "passcode")
        changes = {k: data[k] for k in allowed if k in data}
        if "is_active" in changes:
            changes["is_active"] = coerce_bool(changes["is_active"])

        person = person_service.update_person(person_id, changes=changes, actor_name=current_actor())
        return jsonify({"person": person.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update person")
        return jsonify({"error": "Internal server error"}), 500


@people_bp.delete("/<int:person_id>")
@with_actor
def delete_person_route(person_id: int):
    try:
        person_service.delete_person(person_id, actor_name=current_actor())
        return jsonify({"deleted": True, "person_id": person_id}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete person")
        return jsonify({"error": "Internal server error"}), 500


@people_bp.get("/<int:person_id>/statement")
def person_statement_route(person_id: int):
    """
    Account statement, newest first.

    Query params:
        from, to: ISO-8601 window (balances are still computed from the start);
            a date-only "to" includes that whole day
        order: "desc" (default) or "asc"
    """
    try:
        from_date = optional_datetime(request.args.get("from"), "from")
        to_date = optional_datetime(request.args.get("to"), "to", end_of_day=True)
        order = (request.args.get("order") or "desc").lower()
        if order not in ("asc", "desc"):
            raise ValidationError("order must be 'asc' or 'desc'")

        statement = statement_service.build_statement(
            person_id,
            from_date=from_date,
            to_date=to_date,
            newest_first=order == "desc",
        )
        return jsonify({"statement": statement.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build statement")
        return jsonify({"error": "Internal server error"}), 500


@people_bp.post("/login")
def login_route():
    """
    Staff credential check.

    Request body: {"username": "ann", "password": "..."} or {"passcode": "1234"}

    Returns:
        200: {"person": {...}}
        400: Missing credentials
        401: Invalid credentials
    """
    try:
        data = request.get_json(silent=True) or {}
        username = coerce_str(data.get("username"), "username")
        password = data.get("password")
        passcode = data.get("passcode")

        if username and password:
            person = person_service.verify_credentials(username, password)
        elif passcode:
            person = person_service.verify_credentials(str(passcode))
        else:
            return jsonify({"error": "username and password, or passcode, required"}), 400

        if person is None:
            return jsonify({"error": "Invalid credentials"}), 401

        return jsonify({"person": person.to_dict()}), 200

    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "Internal server error"}), 500


@people_bp.post("/sync")
@with_actor
def sync_names_route():
    """Run the name snapshot reconciliation job; returns its counters."""
    try:
        stats = person_service.reconcile_name_snapshots(actor_name=current_actor())
        return jsonify({"result": stats}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to sync person names")
        return jsonify({"error": "Internal server error"}), 500
