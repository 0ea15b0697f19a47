from __future__ import annotations

import json

from ..extensions import db
from wallet.time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Append-only record of business operations.

    - description is the human-readable line shown to operators.
    - changes holds the machine-readable payload (JSON text).
    - Rows are never updated or deleted by normal operation flow.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False, index=True)  # Sale, Update, UpdateStatus, Delete, Refund, Payment, Create
    entity_type = db.Column(db.String(32), nullable=False)  # Transaction, Payment, Purchase, Person
    entity_id = db.Column(db.String(64), nullable=True)
    actor_name = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    changes = db.Column(db.Text, nullable=True)

    @property
    def changes_data(self):
        if not self.changes:
            return None
        try:
            return json.loads(self.changes)
        except ValueError:
            return self.changes

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": to_utc_z(self.timestamp),
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_name": self.actor_name,
            "description": self.description,
            "changes": self.changes_data,
        }
