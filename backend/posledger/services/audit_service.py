# Overview: Append-only audit trail written alongside operator actions.

from __future__ import annotations

from ..models import AuditLogEntry
"""
Audit Log Invariants

- Append-only; entries are never updated or deleted.
- No domain logic here.
- Entries are written inside the same DB transaction as the action they record,
  so a rolled-back action leaves no audit entry behind.
"""


def append_audit_event(
    session,
    *,
    action: str,
    entity_type: str,
    entity_id: int | None,
    user_id: int | None = None,
    details: dict | None = None,
) -> AuditLogEntry:
    entry = AuditLogEntry(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
    )
    session.add(entry)
    session.flush()  # ensures entry.id is assigned without committing
    return entry


def list_audit_events(session, *, entity_type: str | None = None, entity_id: int | None = None, limit: int = 100):
    query = session.query(AuditLogEntry)
    if entity_type is not None:
        query = query.filter(AuditLogEntry.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLogEntry.entity_id == entity_id)
    return query.order_by(AuditLogEntry.id.desc()).limit(limit).all()
