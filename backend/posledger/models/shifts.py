from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


SHIFT_STATUS_OPEN = "open"
SHIFT_STATUS_CLOSED = "closed"


class Shift(db.Model):
    """
    Cash-drawer shift for one cashier at one branch.

    total_sales_cents / total_transactions / total_refunds_cents are running
    aggregates moved in the same transaction as each sale, void and return.
    They must always equal what reconciliation_service.reconcile_shift_totals
    recomputes from the sales table.

    One open shift per (user, branch); checked when opening, not by a constraint.
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index("ix_shifts_user_branch_status", "user_id", "branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    # Cash tracking (all amounts in cents)
    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_cash_cents = db.Column(db.Integer, nullable=True)
    expected_cash_cents = db.Column(db.Integer, nullable=True)
    difference_cents = db.Column(db.Integer, nullable=True)  # closing - expected

    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_refunds_cents = db.Column(db.Integer, nullable=False, default=0)
    total_transactions = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=SHIFT_STATUS_OPEN, index=True)
    notes = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    branch = db.relationship("Branch")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "user_id": self.user_id,
            "opening_cash_cents": self.opening_cash_cents,
            "closing_cash_cents": self.closing_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "difference_cents": self.difference_cents,
            "total_sales_cents": self.total_sales_cents,
            "total_refunds_cents": self.total_refunds_cents,
            "total_transactions": self.total_transactions,
            "status": self.status,
            "notes": self.notes,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
        }
