# Overview: Detect and repair drift between the stock cache and the ledger, and audit shift totals.

from __future__ import annotations

from flask import current_app
from sqlalchemy import and_, func

from ..models import Branch, BranchStock, Product, Sale, StockMovement
from ..models.sales import SALE_STATUS_VOIDED
from ..time_utils import utcnow
from ..validation import NotFoundError
from .concurrency import atomic
from .shift_service import get_shift


def _require_branch(session, branch_id: int) -> None:
    if session.query(Branch.id).filter_by(id=branch_id).first() is None:
        raise NotFoundError("Branch not found")


def _ledger_totals(session, branch_id: int):
    return (
        session.query(
            StockMovement.product_id.label("product_id"),
            func.sum(StockMovement.quantity).label("total"),
        )
        .filter(StockMovement.branch_id == branch_id)
        .group_by(StockMovement.product_id)
        .subquery()
    )


def reconcile_stock(session, branch_id: int) -> list[dict]:
    """
    Active products whose cached quantity differs from the ledger sum.

    A missing cache row counts as 0. Read-only.
    """
    _require_branch(session, branch_id)
    ledger = _ledger_totals(session, branch_id)

    cached = func.coalesce(BranchStock.quantity, 0)
    actual = func.coalesce(ledger.c.total, 0)
    rows = (
        session.query(
            Product.id,
            Product.name,
            Product.barcode,
            cached.label("cached_qty"),
            actual.label("actual_qty"),
        )
        .outerjoin(
            BranchStock,
            and_(BranchStock.product_id == Product.id, BranchStock.branch_id == branch_id),
        )
        .outerjoin(ledger, ledger.c.product_id == Product.id)
        .filter(Product.is_active.is_(True))
        .filter(cached != actual)
        .order_by(Product.id.asc())
        .all()
    )

    mismatches = [
        {
            "product_id": row.id,
            "product_name": row.name,
            "barcode": row.barcode,
            "cached_qty": int(row.cached_qty),
            "actual_qty": int(row.actual_qty),
        }
        for row in rows
    ]
    if mismatches:
        current_app.logger.warning("Stock cache drift at branch %s: %d product(s)", branch_id, len(mismatches))
    return mismatches


def fix_stock_cache(session, branch_id: int) -> int:
    """
    Rewrite branch_stock from the ledger for every active product.

    Each product is committed on its own, so a failure part-way keeps the
    products already fixed. Rows that already match are not touched; running
    it twice in a row changes nothing the second time.

    Returns the number of cache rows created or changed.
    """
    _require_branch(session, branch_id)
    product_ids = [
        pid for (pid,) in session.query(Product.id)
        .filter(Product.is_active.is_(True))
        .order_by(Product.id.asc())
        .all()
    ]

    changed = 0
    for product_id in product_ids:
        with atomic(session):
            actual = session.query(
                func.coalesce(func.sum(StockMovement.quantity), 0)
            ).filter(
                StockMovement.product_id == product_id,
                StockMovement.branch_id == branch_id,
            ).scalar()
            actual = int(actual or 0)

            row = (
                session.query(BranchStock)
                .filter_by(product_id=product_id, branch_id=branch_id)
                .first()
            )
            if row is None:
                session.add(BranchStock(product_id=product_id, branch_id=branch_id, quantity=actual))
                changed += 1
            elif row.quantity != actual:
                current_app.logger.info(
                    "Fixing stock cache product=%s branch=%s: %s -> %s",
                    product_id, branch_id, row.quantity, actual,
                )
                row.quantity = actual
                row.updated_at = utcnow()
                changed += 1

    return changed


def reconcile_shift_totals(session, shift_id: int) -> dict:
    """
    Recompute a shift's running totals from its documents and compare.

    Sales count every non-voided, non-return document on the shift (a returned
    sale still counts; the refund is tracked separately). Refunds are the
    absolute totals of return documents written on the shift. Read-only.
    """
    shift = get_shift(session, shift_id)
    if shift is None:
        raise NotFoundError("Shift not found")

    sales_cents, transactions = session.query(
        func.coalesce(func.sum(Sale.total_cents), 0),
        func.count(Sale.id),
    ).filter(
        Sale.shift_id == shift_id,
        Sale.original_sale_id.is_(None),
        Sale.status != SALE_STATUS_VOIDED,
    ).one()

    refunds_cents = session.query(
        func.coalesce(func.sum(-Sale.total_cents), 0)
    ).filter(
        Sale.shift_id == shift_id,
        Sale.original_sale_id.isnot(None),
    ).scalar()

    actual = {
        "total_sales_cents": int(sales_cents or 0),
        "total_transactions": int(transactions or 0),
        "total_refunds_cents": int(refunds_cents or 0),
    }
    stored = {
        "total_sales_cents": shift.total_sales_cents,
        "total_transactions": shift.total_transactions,
        "total_refunds_cents": shift.total_refunds_cents,
    }
    mismatches = [key for key in stored if stored[key] != actual[key]]
    if mismatches:
        current_app.logger.warning("Shift %s totals drift: %s", shift_id, ", ".join(mismatches))

    return {
        "shift_id": shift_id,
        "stored": stored,
        "actual": actual,
        "mismatches": mismatches,
        "ok": not mismatches,
    }
