from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_VOIDED = "voided"
SALE_STATUS_RETURNED = "returned"
SALE_STATUS_PARTIAL_RETURN = "partial_return"

DISCOUNT_TYPES = {"fixed", "percentage"}
PAYMENT_METHODS = {"cash", "card", "mobile", "other", "qr", "bank"}


class Sale(db.Model):
    """
    Sale (or return) document.

    LIFECYCLE:
    - completed -> voided (terminal)
    - completed -> partial_return -> returned (terminal)
    - completed -> returned (terminal)

    RETURNS are their own Sale rows: status='returned', original_sale_id set,
    and subtotal/tax/total stored NEGATIVE so SUM-based reports net out.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_sales_invoice_number"),
        db.Index("ix_sales_branch_status_created", "branch_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # "{prefix}-{year}-{seq:06d}", sequential per branch per year
    invoice_number = db.Column(db.String(64), nullable=False)

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)

    customer_name = db.Column(db.String(255), nullable=True)

    # All amounts in cents; negative on return documents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_type = db.Column(db.String(16), nullable=False, default="fixed")
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_COMPLETED, index=True)

    # Set on return documents only
    original_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    branch = db.relationship("Branch")
    original_sale = db.relationship(
        "Sale",
        remote_side=[id],
        backref=db.backref("return_documents", lazy=True),
    )

    @property
    def is_return(self) -> bool:
        return self.original_sale_id is not None

    def to_dict(self, *, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "branch_id": self.branch_id,
            "user_id": self.user_id,
            "shift_id": self.shift_id,
            "customer_name": self.customer_name,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "discount_type": self.discount_type,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "original_sale_id": self.original_sale_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class SaleItem(db.Model):
    """
    Line snapshot taken at sale time.

    Name, price, cost and tax are copied from the request and never re-read
    from the live product. quantity/tax/total are negative on return documents.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(64), nullable=True)

    # Signed: negative on return documents
    quantity = db.Column(db.Integer, nullable=False)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_type = db.Column(db.String(16), nullable=False, default="fixed")
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, order_by="SaleItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "barcode": self.barcode,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "discount_cents": self.discount_cents,
            "discount_type": self.discount_type,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


class Payment(db.Model):
    """
    Tender recorded against a sale.

    Refunds are Payment rows on the return document with a NEGATIVE amount.
    Voids never create payment rows.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    method = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    received_cents = db.Column(db.Integer, nullable=True)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True, order_by="Payment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "reference": self.reference,
            "received_cents": self.received_cents,
            "change_cents": self.change_cents,
            "created_at": to_utc_z(self.created_at),
        }


class HeldSale(db.Model):
    """
    Parked cart. Not part of the transactional core: no stock effect and no
    validation beyond the snapshot schema. At most one autosave row per
    (user, branch), enforced by held_sale_service.
    """
    __tablename__ = "held_sales"
    __table_args__ = (
        db.Index("ix_held_sales_user_branch_autosave", "user_id", "branch_id", "is_autosave"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False)

    cart = db.Column(db.JSON, nullable=False)
    note = db.Column(db.String(255), nullable=True)
    is_autosave = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "user_id": self.user_id,
            "cart": self.cart,
            "note": self.note,
            "is_autosave": self.is_autosave,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
