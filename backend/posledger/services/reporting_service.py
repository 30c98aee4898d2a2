# Overview: Branch sales reporting over the sales ledger (returns net out via negative totals).

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import and_, case, func

from ..models import Branch, BranchStock, Payment, Product, Sale, SaleItem, Shift
from ..models.sales import SALE_STATUS_VOIDED
from ..models.shifts import SHIFT_STATUS_OPEN
from ..time_utils import parse_date_bound, to_utc_z, utcnow
from ..validation import NotFoundError, ValidationError


class ReportError(ValidationError):
    """Raised when report generation fails."""
    pass


def _parse_range(date_from: str | None, date_to: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_date_bound(date_from)
        end_dt = parse_date_bound(date_to, end=True)
    except ValueError as exc:
        raise ReportError(f"Invalid date: {exc}") from exc
    if start_dt and end_dt and start_dt > end_dt:
        raise ReportError("date_from must be on or before date_to")
    return start_dt, end_dt


def _require_branch(session, branch_id: int) -> None:
    if session.query(Branch.id).filter_by(id=branch_id).first() is None:
        raise NotFoundError("Branch not found")


def _in_range(query, start_dt, end_dt):
    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)
    return query


def _range_meta(branch_id: int, start_dt, end_dt) -> dict:
    return {
        "branch_id": branch_id,
        "date_from": to_utc_z(start_dt) if start_dt else None,
        "date_to": to_utc_z(end_dt) if end_dt else None,
    }


def daily_sales(session, *, branch_id: int, date_from: str | None = None, date_to: str | None = None) -> dict:
    """Per-day sale count, gross, refunds and net (voided documents excluded)."""
    start_dt, end_dt = _parse_range(date_from, date_to)
    _require_branch(session, branch_id)

    is_return = Sale.original_sale_id.isnot(None)
    day = func.strftime("%Y-%m-%d", Sale.created_at)
    query = session.query(
        day.label("day"),
        func.sum(case((is_return, 0), else_=1)).label("sales_count"),
        func.coalesce(func.sum(case((is_return, 0), else_=Sale.total_cents)), 0).label("gross_cents"),
        func.coalesce(func.sum(case((is_return, -Sale.total_cents), else_=0)), 0).label("refunds_cents"),
        func.coalesce(func.sum(Sale.tax_cents), 0).label("tax_cents"),
        func.coalesce(func.sum(Sale.total_cents), 0).label("net_cents"),
    ).filter(
        Sale.branch_id == branch_id,
        Sale.status != SALE_STATUS_VOIDED,
    )
    rows = _in_range(query, start_dt, end_dt).group_by("day").order_by("day").all()

    return {
        **_range_meta(branch_id, start_dt, end_dt),
        "rows": [
            {
                "day": row.day,
                "sales_count": int(row.sales_count or 0),
                "gross_cents": int(row.gross_cents or 0),
                "refunds_cents": int(row.refunds_cents or 0),
                "tax_cents": int(row.tax_cents or 0),
                "net_cents": int(row.net_cents or 0),
            }
            for row in rows
        ],
    }


def sales_by_product(
    session,
    *,
    branch_id: int,
    date_from: str | None = None,
    date_to: str | None = None,
    limit: int = 50,
) -> dict:
    """Net quantity and revenue per product, best sellers first."""
    start_dt, end_dt = _parse_range(date_from, date_to)
    _require_branch(session, branch_id)

    qty = func.coalesce(func.sum(SaleItem.quantity), 0)
    query = session.query(
        SaleItem.product_id,
        func.max(SaleItem.product_name).label("product_name"),
        qty.label("quantity"),
        func.coalesce(func.sum(SaleItem.total_cents), 0).label("revenue_cents"),
    ).join(Sale, Sale.id == SaleItem.sale_id).filter(
        Sale.branch_id == branch_id,
        Sale.status != SALE_STATUS_VOIDED,
    )
    rows = (
        _in_range(query, start_dt, end_dt)
        .group_by(SaleItem.product_id)
        .order_by(qty.desc(), SaleItem.product_id.asc())
        .limit(limit)
        .all()
    )

    return {
        **_range_meta(branch_id, start_dt, end_dt),
        "rows": [
            {
                "product_id": row.product_id,
                "product_name": row.product_name,
                "quantity": int(row.quantity or 0),
                "revenue_cents": int(row.revenue_cents or 0),
            }
            for row in rows
        ],
    }


def payment_breakdown(session, *, branch_id: int, date_from: str | None = None, date_to: str | None = None) -> dict:
    """Totals per payment method; refund payments are negative and net out."""
    start_dt, end_dt = _parse_range(date_from, date_to)
    _require_branch(session, branch_id)

    query = session.query(
        Payment.method,
        func.count(Payment.id).label("count"),
        func.coalesce(func.sum(Payment.amount_cents), 0).label("total_cents"),
    ).join(Sale, Sale.id == Payment.sale_id).filter(
        Sale.branch_id == branch_id,
        Sale.status != SALE_STATUS_VOIDED,
    )
    rows = _in_range(query, start_dt, end_dt).group_by(Payment.method).order_by(Payment.method.asc()).all()

    return {
        **_range_meta(branch_id, start_dt, end_dt),
        "rows": [
            {"method": row.method, "count": int(row.count or 0), "total_cents": int(row.total_cents or 0)}
            for row in rows
        ],
        "total_cents": sum(int(row.total_cents or 0) for row in rows),
    }


def profit_report(session, *, branch_id: int, date_from: str | None = None, date_to: str | None = None) -> dict:
    """
    Revenue (ex tax) against cost, using the cost snapshot on each sale line.

    Return lines carry negative quantities and totals, so returned goods
    reduce both revenue and cost.
    """
    start_dt, end_dt = _parse_range(date_from, date_to)
    _require_branch(session, branch_id)

    query = session.query(
        func.coalesce(func.sum(SaleItem.total_cents - SaleItem.tax_cents), 0).label("revenue_cents"),
        func.coalesce(func.sum(SaleItem.cost_price_cents * SaleItem.quantity), 0).label("cost_cents"),
    ).join(Sale, Sale.id == SaleItem.sale_id).filter(
        Sale.branch_id == branch_id,
        Sale.status != SALE_STATUS_VOIDED,
    )
    row = _in_range(query, start_dt, end_dt).one()

    revenue = int(row.revenue_cents or 0)
    cost = int(row.cost_cents or 0)
    profit = revenue - cost
    margin_bps = (profit * 10000 // revenue) if revenue > 0 else None

    return {
        **_range_meta(branch_id, start_dt, end_dt),
        "revenue_cents": revenue,
        "cost_cents": cost,
        "profit_cents": profit,
        "margin_bps": margin_bps,
    }


def dashboard_summary(session, *, branch_id: int, day: date | None = None) -> dict:
    """Today-at-a-glance numbers for the branch."""
    _require_branch(session, branch_id)
    day = day or utcnow().date()
    start_dt = parse_date_bound(day.isoformat())
    end_dt = parse_date_bound(day.isoformat(), end=True)

    is_return = Sale.original_sale_id.isnot(None)
    query = session.query(
        func.coalesce(func.sum(case((is_return, 0), else_=1)), 0).label("sales_count"),
        func.coalesce(func.sum(case((is_return, 0), else_=Sale.total_cents)), 0).label("sales_cents"),
        func.coalesce(func.sum(case((is_return, -Sale.total_cents), else_=0)), 0).label("refunds_cents"),
    ).filter(
        Sale.branch_id == branch_id,
        Sale.status != SALE_STATUS_VOIDED,
    )
    totals = _in_range(query, start_dt, end_dt).one()

    level = func.coalesce(BranchStock.quantity, 0)
    low_stock_count = session.query(func.count(Product.id)).outerjoin(
        BranchStock,
        and_(BranchStock.product_id == Product.id, BranchStock.branch_id == branch_id),
    ).filter(
        Product.is_active.is_(True),
        level <= Product.low_stock_threshold,
    ).scalar()

    open_shifts = session.query(func.count(Shift.id)).filter(
        Shift.branch_id == branch_id,
        Shift.status == SHIFT_STATUS_OPEN,
    ).scalar()

    sales_count = int(totals.sales_count or 0)
    sales_cents = int(totals.sales_cents or 0)
    refunds_cents = int(totals.refunds_cents or 0)
    return {
        "branch_id": branch_id,
        "day": day.isoformat(),
        "sales_count": sales_count,
        "sales_cents": sales_cents,
        "refunds_cents": refunds_cents,
        "net_cents": sales_cents - refunds_cents,
        "average_sale_cents": (sales_cents // sales_count) if sales_count else 0,
        "low_stock_count": int(low_stock_count or 0),
        "open_shifts": int(open_shifts or 0),
    }
