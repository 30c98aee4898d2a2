from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Setting(db.Model):
    """
    Generic key-value settings.

    Also hosts the invoice counters ("last_invoice_seq_{branch_id}_{year}"),
    which invoice_service mutates inside the sale's own transaction.
    """
    __tablename__ = "settings"

    key = db.Column(db.String(128), primary_key=True)
    value = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.value,
            "updated_at": to_utc_z(self.updated_at),
        }
