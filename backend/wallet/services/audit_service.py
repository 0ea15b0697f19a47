# Overview: Service-layer operations for the audit log; the sink every ledger operation writes to.

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..extensions import db
from ..models import AuditLog
from wallet.time_utils import utcnow
"""
Audit Invariants (authoritative)

- Append-only: no updates/deletes of existing entries.
- The sink is an explicit collaborator: every service operation accepts
  an `audit=` argument and falls back to DatabaseAuditSink.
- DatabaseAuditSink writes inside the caller's session, so an entry is
  committed or rolled back together with the operation it describes.
- Descriptions report what was actually applied (e.g. partial allocation
  amounts), never what was requested.
"""


@dataclass(frozen=True)
class AuditEntry:
    action: str
    entity_type: str
    entity_id: Any
    actor_name: Optional[str]
    description: str
    changes: Any = None
    timestamp: Optional[datetime] = field(default=None)


class AuditSink:
    """Destination for audit entries."""

    def append(self, entry: AuditEntry) -> None:
        raise NotImplementedError


class DatabaseAuditSink(AuditSink):
    """Persist entries as AuditLog rows in the current unit of work."""

    def append(self, entry: AuditEntry) -> AuditLog:
        log = AuditLog(
            timestamp=entry.timestamp or utcnow(),
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=None if entry.entity_id is None else str(entry.entity_id),
            actor_name=entry.actor_name or "System",
            description=entry.description,
            changes=_serialize_changes(entry.changes),
        )
        db.session.add(log)
        db.session.flush()
        return log


def _serialize_changes(changes: Any) -> Optional[str]:
    if changes is None:
        return None
    if isinstance(changes, str):
        return changes
    return json.dumps(changes, default=str)


def resolve_sink(audit: AuditSink | None) -> AuditSink:
    return audit if audit is not None else DatabaseAuditSink()


def record(
    audit: AuditSink | None,
    *,
    action: str,
    entity_type: str,
    entity_id: Any,
    actor_name: str | None,
    description: str,
    changes: Any = None,
) -> None:
    resolve_sink(audit).append(AuditEntry(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_name=actor_name,
        description=description,
        changes=changes,
    ))


def list_audit_logs(
    *,
    entity_type: str | None = None,
    entity_id: Any = None,
    limit: int = 1000,
) -> list[AuditLog]:
    """Newest first."""
    q = db.session.query(AuditLog)
    if entity_type:
        q = q.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditLog.entity_id == str(entity_id))
    return q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
