# Overview: Stock ledger writes and the branch_stock cache kept in lockstep with them.

from __future__ import annotations

from sqlalchemy import func, update

from ..models import BranchStock, StockMovement
from ..models.inventory import MOVEMENT_TYPES
from ..time_utils import utcnow
from ..validation import StateError
"""
Stock Ledger Invariants (authoritative)

Ledger:
- stock_movements is append-only; one signed row per quantity change.
- On-hand quantity for (product, branch) is SUM(quantity) over its movements.
- Reversals are new rows with the opposite sign, never edits.
- No sign check at this layer: negative on-hand is representable and is a
  caller policy (sales may allow it, transfers never do).

Cache:
- branch_stock.quantity == SUM(stock_movements.quantity) for the pair.
- Mutated only through apply_stock_delta, in the same transaction as the
  movement it mirrors.
- The increment is done in SQL (quantity = quantity + :delta) so two writers
  cannot interleave a read-modify-write on the same row.

Transactions:
- Nothing here commits. Callers wrap these calls in concurrency.atomic().
"""


class InsufficientStockError(StateError):
    """Raised when a guarded decrement would take a branch below its floor."""


def post_movement(
    session,
    *,
    product_id: int,
    branch_id: int,
    type: str,
    quantity: int,
    reference_type: str | None = None,
    reference_id: int | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> int:
    """Append one ledger row inside the caller's transaction and return its id."""
    if type not in MOVEMENT_TYPES:
        raise ValueError(f"unknown movement type: {type}")

    movement = StockMovement(
        product_id=product_id,
        branch_id=branch_id,
        type=type,
        quantity=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        user_id=user_id,
    )
    session.add(movement)
    session.flush()
    return movement.id


def apply_stock_delta(
    session,
    *,
    product_id: int,
    branch_id: int,
    delta: int,
    floor: int | None = None,
    error_message: str = "Insufficient stock",
) -> None:
    """
    Move the cached quantity for (product, branch) by delta.

    The row is created on first touch. With a floor, the update only applies
    when the resulting quantity stays >= floor; otherwise InsufficientStockError
    is raised and nothing changes.
    """
    stmt = (
        update(BranchStock)
        .where(
            BranchStock.product_id == product_id,
            BranchStock.branch_id == branch_id,
        )
        .values(quantity=BranchStock.quantity + delta, updated_at=utcnow())
    )
    if floor is not None:
        stmt = stmt.where(BranchStock.quantity + delta >= floor)

    result = session.execute(stmt)
    if result.rowcount:
        return

    if floor is not None:
        exists = (
            session.query(BranchStock.id)
            .filter_by(product_id=product_id, branch_id=branch_id)
            .first()
        )
        if exists is not None or delta < floor:
            raise InsufficientStockError(
                error_message,
                details={"product_id": product_id, "branch_id": branch_id, "requested_delta": delta},
            )

    session.add(BranchStock(product_id=product_id, branch_id=branch_id, quantity=delta))
    session.flush()


def record_stock_change(
    session,
    *,
    product_id: int,
    branch_id: int,
    type: str,
    quantity: int,
    reference_type: str | None = None,
    reference_id: int | None = None,
    notes: str | None = None,
    user_id: int | None = None,
    floor: int | None = None,
    error_message: str = "Insufficient stock",
) -> int:
    """Post a movement and apply the same signed quantity to the cache."""
    apply_stock_delta(
        session,
        product_id=product_id,
        branch_id=branch_id,
        delta=quantity,
        floor=floor,
        error_message=error_message,
    )
    return post_movement(
        session,
        product_id=product_id,
        branch_id=branch_id,
        type=type,
        quantity=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        notes=notes,
        user_id=user_id,
    )


def get_cached_quantity(session, product_id: int, branch_id: int) -> int:
    """Cached on-hand quantity; 0 when the pair was never touched."""
    qty = (
        session.query(BranchStock.quantity)
        .filter_by(product_id=product_id, branch_id=branch_id)
        .scalar()
    )
    return int(qty or 0)


def get_ledger_quantity(session, product_id: int, branch_id: int) -> int:
    """Authoritative on-hand quantity: SUM over the ledger."""
    total = session.query(
        func.coalesce(func.sum(StockMovement.quantity), 0)
    ).filter(
        StockMovement.product_id == product_id,
        StockMovement.branch_id == branch_id,
    ).scalar()
    return int(total or 0)


def list_movements(session, product_id: int, branch_id: int, limit: int = 50) -> list[StockMovement]:
    return (
        session.query(StockMovement)
        .filter_by(product_id=product_id, branch_id=branch_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )
