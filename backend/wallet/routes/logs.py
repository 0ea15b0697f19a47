# Overview: Flask API routes for the audit log; read-only.

from flask import Blueprint, request, jsonify, current_app

from ..services import audit_service


logs_bp = Blueprint("logs", __name__, url_prefix="/api/logs")


@logs_bp.get("")
def list_logs_route():
    """
    Audit entries, newest first.

    Query params: entity_type, entity_id, limit (capped at AUDIT_LOG_LIMIT)
    """
    try:
        max_limit = int(current_app.config.get("AUDIT_LOG_LIMIT", 1000))
        limit = request.args.get("limit", default=max_limit, type=int)
        limit = max(1, min(limit, max_limit))

        logs = audit_service.list_audit_logs(
            entity_type=request.args.get("entity_type"),
            entity_id=request.args.get("entity_id"),
            limit=limit,
        )

        return jsonify({
            "logs": [log.to_dict() for log in logs],
            "count": len(logs),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list audit logs")
        return jsonify({"error": "Internal server error"}), 500
