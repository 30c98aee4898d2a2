from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


PURCHASE_STATUS_DRAFT = "draft"
PURCHASE_STATUS_RECEIVED = "received"
PURCHASE_STATUS_CANCELLED = "cancelled"


class PurchaseInvoice(db.Model):
    """
    Supplier purchase invoice.

    LIFECYCLE:
    1. draft: bookkeeping only, no inventory effect
    2. received: PURCHASE movements posted, branch stock increased
    3. cancelled: abandoned draft

    Subtotal is always recomputed server-side from the items.
    """
    __tablename__ = "purchase_invoices"
    __table_args__ = (
        db.Index("ix_purchase_invoices_branch_status", "branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=True)

    # Supplier's own invoice reference (free text)
    invoice_number = db.Column(db.String(64), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=PURCHASE_STATUS_DRAFT, index=True)
    notes = db.Column(db.Text, nullable=True)

    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    supplier = db.relationship("Supplier")
    branch = db.relationship("Branch")

    def to_dict(self, *, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.name if self.supplier else None,
            "branch_id": self.branch_id,
            "user_id": self.user_id,
            "invoice_number": self.invoice_number,
            "subtotal_cents": self.subtotal_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "notes": self.notes,
            "received_at": to_utc_z(self.received_at) if self.received_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_invoice_id = db.Column(
        db.Integer, db.ForeignKey("purchase_invoices.id"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    purchase_invoice = db.relationship(
        "PurchaseInvoice",
        backref=db.backref("items", lazy=True, order_by="PurchaseItem.id"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_invoice_id": self.purchase_invoice_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "barcode": self.product.barcode if self.product else None,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cents": self.total_cents,
        }
