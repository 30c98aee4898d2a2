from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


# Movement types. Sign convention: quantity < 0 means stock leaving the branch.
MOVEMENT_PURCHASE = "PURCHASE"          # +
MOVEMENT_SALE = "SALE"                  # -
MOVEMENT_RETURN = "RETURN"              # + (customer returns and sale voids)
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"      # +/-
MOVEMENT_TRANSFER_OUT = "TRANSFER_OUT"  # -
MOVEMENT_TRANSFER_IN = "TRANSFER_IN"    # +

MOVEMENT_TYPES = {
    MOVEMENT_PURCHASE,
    MOVEMENT_SALE,
    MOVEMENT_RETURN,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_TRANSFER_OUT,
    MOVEMENT_TRANSFER_IN,
}


class StockMovement(db.Model):
    """
    Append-only stock ledger.

    One row per quantity change at a (product, branch). The sum of quantity
    over all rows for a pair IS the on-hand quantity; branch_stock is only a
    cache of that sum.

    Rows are never updated or deleted. Reversals (voids, returns) are new rows
    with the opposite sign.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_branch", "product_id", "branch_id"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)

    # Signed: negative = stock leaving the branch
    quantity = db.Column(db.Integer, nullable=False)

    # Provenance: ("sale", sale_id), ("void", sale_id), ("return", return_sale_id),
    # ("purchase", purchase_id), ("transfer", None), ("adjustment", None)
    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        index=True,
    )

    product = db.relationship("Product")
    branch = db.relationship("Branch")

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} {self.type} product={self.product_id} "
            f"branch={self.branch_id} qty={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "type": self.type,
            "quantity": self.quantity,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _refuse_movement_update(mapper, connection, target):
    raise ValueError("stock movements are append-only and cannot be updated")


@event.listens_for(StockMovement, "before_delete")
def _refuse_movement_delete(mapper, connection, target):
    raise ValueError("stock movements are append-only and cannot be deleted")


class BranchStock(db.Model):
    """
    Per-(product, branch) quantity cache.

    quantity == SUM(stock_movements.quantity) for the pair. Created lazily the
    first time a pair is touched and never deleted (rows stay at 0). Disposable:
    reconciliation_service can rebuild it from the ledger at any time.
    """
    __tablename__ = "branch_stock"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", name="uq_branch_stock_product_branch"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
    )

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }
