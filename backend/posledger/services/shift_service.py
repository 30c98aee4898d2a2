"""
Shift Management Service

Tracks cashier shifts at a branch and the cash expected in the drawer.

DESIGN PRINCIPLES:
- One open shift per (user, branch) at a time
- Running totals (sales, refunds, transaction count) are moved by the sale,
  void and return transactions via adjust_shift_totals, never recomputed here
- Expected cash is computed at close time from recorded cash payments
"""

from __future__ import annotations

from sqlalchemy import func, update

from ..models import Branch, Payment, Sale, SaleItem, Shift
from ..models.sales import SALE_STATUS_VOIDED
from ..models.shifts import SHIFT_STATUS_CLOSED, SHIFT_STATUS_OPEN
from ..time_utils import utcnow
from ..validation import NotFoundError, StateError, coerce_cents
from .concurrency import atomic, lock_for_update


class ShiftError(StateError):
    """Raised for shift management errors."""
    pass


def adjust_shift_totals(
    session,
    shift_id: int,
    *,
    sales_cents: int = 0,
    transactions: int = 0,
    refunds_cents: int = 0,
) -> None:
    """
    Move a shift's running totals inside the caller's transaction.

    Negative deltas are applied as-is; totals have no floor.
    """
    stmt = (
        update(Shift)
        .where(Shift.id == shift_id)
        .values(
            total_sales_cents=Shift.total_sales_cents + sales_cents,
            total_transactions=Shift.total_transactions + transactions,
            total_refunds_cents=Shift.total_refunds_cents + refunds_cents,
        )
    )
    result = session.execute(stmt)
    if not result.rowcount:
        raise ShiftError(f"Shift {shift_id} not found")


def get_current_shift(session, *, user_id: int, branch_id: int) -> Shift | None:
    return (
        session.query(Shift)
        .filter_by(user_id=user_id, branch_id=branch_id, status=SHIFT_STATUS_OPEN)
        .order_by(Shift.opened_at.desc(), Shift.id.desc())
        .first()
    )


def _last_closing_cash(session, branch_id: int) -> int:
    last = (
        session.query(Shift.closing_cash_cents)
        .filter_by(branch_id=branch_id, status=SHIFT_STATUS_CLOSED)
        .order_by(Shift.closed_at.desc(), Shift.id.desc())
        .first()
    )
    if last is None or last[0] is None:
        return 0
    return int(last[0])


def open_shift(session, *, branch_id: int, user_id: int, opening_cash_cents: int | None = None) -> Shift:
    """
    Open a new shift for a cashier.

    When opening cash is not given, the drawer is assumed to hold whatever the
    branch's last closed shift counted.
    """
    if opening_cash_cents is not None:
        opening_cash_cents = coerce_cents(opening_cash_cents, "opening_cash_cents")

    with atomic(session):
        if session.query(Branch.id).filter_by(id=branch_id).first() is None:
            raise NotFoundError("Branch not found")

        if get_current_shift(session, user_id=user_id, branch_id=branch_id) is not None:
            raise ShiftError("You already have an open shift. Close it first.")

        opening = opening_cash_cents
        if opening is None:
            opening = _last_closing_cash(session, branch_id)

        shift = Shift(
            branch_id=branch_id,
            user_id=user_id,
            opening_cash_cents=opening,
            status=SHIFT_STATUS_OPEN,
            opened_at=utcnow(),
        )
        session.add(shift)
    return shift


def _cash_taken(session, shift_id: int) -> int:
    total = (
        session.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .join(Sale, Sale.id == Payment.sale_id)
        .filter(
            Sale.shift_id == shift_id,
            Sale.status != SALE_STATUS_VOIDED,
            Payment.method == "cash",
        )
        .scalar()
    )
    return int(total or 0)


def close_shift(session, shift_id: int, *, closing_cash_cents: int | None = None, notes: str | None = None) -> Shift:
    """
    Close a shift and record the drawer count against the expected cash.

    expected = opening + cash payments on the shift's non-voided documents.
    Refunds paid in cash are negative payments, so they net out here.
    """
    if closing_cash_cents is not None:
        closing_cash_cents = coerce_cents(closing_cash_cents, "closing_cash_cents")

    with atomic(session):
        shift = lock_for_update(
            session.query(Shift).filter_by(id=shift_id, status=SHIFT_STATUS_OPEN)
        ).first()
        if shift is None:
            raise ShiftError("Shift not found or already closed")

        expected = shift.opening_cash_cents + _cash_taken(session, shift.id)
        closing = expected if closing_cash_cents is None else closing_cash_cents

        shift.expected_cash_cents = expected
        shift.closing_cash_cents = closing
        shift.difference_cents = closing - expected
        shift.status = SHIFT_STATUS_CLOSED
        shift.closed_at = utcnow()
        if notes:
            shift.notes = notes
    return shift


def get_shift(session, shift_id: int) -> Shift | None:
    return session.query(Shift).filter_by(id=shift_id).first()


def list_shifts(
    session,
    *,
    branch_id: int | None = None,
    user_id: int | None = None,
    status: str | None = None,
    limit: int = 50,
) -> list[Shift]:
    query = session.query(Shift)
    if branch_id is not None:
        query = query.filter(Shift.branch_id == branch_id)
    if user_id is not None:
        query = query.filter(Shift.user_id == user_id)
    if status:
        query = query.filter(Shift.status == status)
    return query.order_by(Shift.opened_at.desc(), Shift.id.desc()).limit(limit).all()


def get_shift_report(session, shift_id: int) -> dict:
    """Shift header plus payment breakdown and the best-selling products."""
    shift = get_shift(session, shift_id)
    if shift is None:
        raise NotFoundError("Shift not found")

    payments = (
        session.query(
            Payment.method,
            func.count(Payment.id),
            func.coalesce(func.sum(Payment.amount_cents), 0),
        )
        .join(Sale, Sale.id == Payment.sale_id)
        .filter(Sale.shift_id == shift_id, Sale.status != SALE_STATUS_VOIDED)
        .group_by(Payment.method)
        .order_by(Payment.method.asc())
        .all()
    )

    top_products = (
        session.query(
            SaleItem.product_id,
            SaleItem.product_name,
            func.sum(SaleItem.quantity).label("qty"),
            func.sum(SaleItem.total_cents).label("revenue"),
        )
        .join(Sale, Sale.id == SaleItem.sale_id)
        .filter(
            Sale.shift_id == shift_id,
            Sale.status != SALE_STATUS_VOIDED,
            Sale.original_sale_id.is_(None),
        )
        .group_by(SaleItem.product_id, SaleItem.product_name)
        .order_by(func.sum(SaleItem.quantity).desc())
        .limit(10)
        .all()
    )

    return {
        "shift": shift.to_dict(),
        "payments": [
            {"method": method, "count": int(count), "total_cents": int(total)}
            for method, count, total in payments
        ],
        "top_products": [
            {
                "product_id": row.product_id,
                "product_name": row.product_name,
                "quantity": int(row.qty or 0),
                "revenue_cents": int(row.revenue or 0),
            }
            for row in top_products
        ],
    }
