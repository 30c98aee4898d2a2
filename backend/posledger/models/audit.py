from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class AuditLogEntry(db.Model):
    """
    Append-only audit trail for operator actions (voids, returns, adjustments,
    transfers, purchase receipts). Written in the same transaction as the
    action it records.
    """
    __tablename__ = "audit_log"
    __table_args__ = (
        db.Index("ix_audit_log_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)
    details = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "details": self.details,
            "created_at": to_utc_z(self.created_at),
        }
