from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Branch(db.Model):
    """
    A physical shop location.

    Stock, sales, shifts and purchases are all branch-scoped. invoice_prefix
    is the leading segment of every invoice number issued at the branch
    (e.g. "BR1" -> "BR1-2024-000001").
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_branches_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True)
    invoice_prefix = db.Column(db.String(16), nullable=False)
    address = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r} prefix={self.invoice_prefix!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "invoice_prefix": self.invoice_prefix,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    Products are shared by every branch; per-branch quantities live in
    branch_stock and stock_movements, never on the product row.
    Prices are stored in cents, tax rates in basis points (1500 = 15%).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    barcode = db.Column(db.String(64), nullable=True, unique=True)
    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)

    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    unit = db.Column(db.String(16), nullable=False, default="pcs")
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} barcode={self.barcode!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "barcode": self.barcode,
            "sku": self.sku,
            "name": self.name,
            "cost_price_cents": self.cost_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "unit": self.unit,
            "low_stock_threshold": self.low_stock_threshold,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
