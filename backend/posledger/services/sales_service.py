"""
Sales Service - one-shot sale creation and voids

A sale arrives fully priced from the register (lines, totals, payments) and is
written in a single transaction: invoice number, header, line snapshots,
payments, SALE movements, cache decrements and shift totals. Any failure
rolls back every row, including the invoice counter.
"""

from __future__ import annotations

from ..models import Sale, SaleItem, Payment
from ..models.inventory import MOVEMENT_RETURN, MOVEMENT_SALE
from ..models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_VOIDED
from ..time_utils import parse_date_bound
from ..validation import StateError, ValidationError, coerce_text
from .audit_service import append_audit_event
from .concurrency import atomic, lock_for_update
from .invoice_service import next_invoice_number
from .schemas import SaleInput
from .shift_service import adjust_shift_totals
from .stock_ledger_service import record_stock_change


# Rounding slack between line math on the register and the bill total
PAYMENT_TOLERANCE_CENTS = 1


class SaleValidationError(ValidationError):
    """Raised before the transaction when the sale request is malformed."""
    pass


class SaleStateError(StateError):
    """Raised when a sale is not in a state that allows the operation."""
    pass


def _append_note(existing: str | None, note: str) -> str:
    if not existing:
        return note
    return f"{existing}\n{note}"


def _parse_sale_input(data) -> SaleInput:
    if isinstance(data, SaleInput):
        return data
    try:
        return SaleInput.from_payload(data)
    except SaleValidationError:
        raise
    except ValidationError as exc:
        raise SaleValidationError(exc.message, details=exc.details) from exc


def create_sale(session, data, *, allow_negative_stock: bool = True) -> dict:
    """
    Record a completed sale.

    Payments must cover the total to within PAYMENT_TOLERANCE_CENTS. With
    allow_negative_stock=False a line that would take the branch below zero
    raises InsufficientStockError and the whole sale is rolled back.

    Returns {"sale_id", "invoice_number"}.
    """
    sale_input = _parse_sale_input(data)

    paid = sale_input.payment_total_cents
    if paid < sale_input.total_cents - PAYMENT_TOLERANCE_CENTS:
        raise SaleValidationError(
            "Payment total does not match bill total",
            details={"total_cents": sale_input.total_cents, "paid_cents": paid},
        )

    floor = None if allow_negative_stock else 0

    with atomic(session):
        invoice_number = next_invoice_number(session, sale_input.branch_id)

        sale = Sale(
            invoice_number=invoice_number,
            branch_id=sale_input.branch_id,
            user_id=sale_input.user_id,
            shift_id=sale_input.shift_id,
            customer_name=sale_input.customer_name,
            subtotal_cents=sale_input.subtotal_cents,
            discount_cents=sale_input.discount_cents,
            discount_type=sale_input.discount_type,
            tax_cents=sale_input.tax_cents,
            total_cents=sale_input.total_cents,
            status=SALE_STATUS_COMPLETED,
            notes=sale_input.notes,
        )
        session.add(sale)
        session.flush()
        sale_id = sale.id

        for item in sale_input.items:
            session.add(SaleItem(
                sale_id=sale_id,
                product_id=item.product_id,
                product_name=item.product_name,
                barcode=item.barcode,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                cost_price_cents=item.cost_price_cents,
                discount_cents=item.discount_cents,
                discount_type=item.discount_type,
                tax_rate_bps=item.tax_rate_bps,
                tax_cents=item.tax_cents,
                total_cents=item.total_cents,
            ))
            record_stock_change(
                session,
                product_id=item.product_id,
                branch_id=sale_input.branch_id,
                type=MOVEMENT_SALE,
                quantity=-item.quantity,
                reference_type="sale",
                reference_id=sale_id,
                user_id=sale_input.user_id,
                floor=floor,
                error_message=f"Insufficient stock for {item.product_name}",
            )

        for payment in sale_input.payments:
            session.add(Payment(
                sale_id=sale_id,
                method=payment.method,
                amount_cents=payment.amount_cents,
                reference=payment.reference,
                received_cents=payment.received_cents,
                change_cents=payment.change_cents,
            ))

        if sale_input.shift_id:
            adjust_shift_totals(
                session,
                sale_input.shift_id,
                sales_cents=sale_input.total_cents,
                transactions=1,
            )

    return {"sale_id": sale_id, "invoice_number": invoice_number}


def void_sale(session, sale_id: int, user_id: int, reason: str) -> None:
    """
    Void a completed sale and reverse its stock and shift effects.

    Stock comes back as RETURN movements referencing the void. No payment rows
    are written; a void means the money never changed hands.
    """
    reason = coerce_text(reason)
    if not reason:
        raise SaleValidationError("reason required")

    with atomic(session):
        sale = lock_for_update(
            session.query(Sale).filter_by(id=sale_id, status=SALE_STATUS_COMPLETED)
        ).first()
        if sale is None or sale.is_return:
            raise SaleStateError("Sale not found or already voided/returned")

        sale.status = SALE_STATUS_VOIDED
        sale.notes = _append_note(sale.notes, f"Void: {reason}")

        for item in sale.items:
            record_stock_change(
                session,
                product_id=item.product_id,
                branch_id=sale.branch_id,
                type=MOVEMENT_RETURN,
                quantity=item.quantity,
                reference_type="void",
                reference_id=sale.id,
                notes=f"Void {sale.invoice_number}: {reason}",
                user_id=user_id,
            )

        if sale.shift_id:
            adjust_shift_totals(
                session,
                sale.shift_id,
                sales_cents=-sale.total_cents,
                transactions=-1,
            )

        append_audit_event(
            session,
            action="void_sale",
            entity_type="sale",
            entity_id=sale.id,
            user_id=user_id,
            details={
                "invoice_number": sale.invoice_number,
                "total_cents": sale.total_cents,
                "reason": reason,
            },
        )


def get_sale(session, sale_id: int) -> Sale | None:
    return session.query(Sale).filter_by(id=sale_id).first()


def get_sale_by_invoice(session, invoice_number: str) -> Sale | None:
    return session.query(Sale).filter_by(invoice_number=invoice_number).first()


def list_sales(
    session,
    *,
    branch_id: int | None = None,
    user_id: int | None = None,
    status: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Sale], int]:
    """Sales newest first, with the unpaginated match count."""
    query = session.query(Sale)
    if branch_id is not None:
        query = query.filter(Sale.branch_id == branch_id)
    if user_id is not None:
        query = query.filter(Sale.user_id == user_id)
    if status:
        query = query.filter(Sale.status == status)

    start = parse_date_bound(date_from)
    end = parse_date_bound(date_to, end=True)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)

    total = query.count()
    rows = (
        query.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return rows, total


def get_last_sale(session, branch_id: int) -> Sale | None:
    """Most recent completed sale at a branch (receipt reprint)."""
    return (
        session.query(Sale)
        .filter(
            Sale.branch_id == branch_id,
            Sale.status == SALE_STATUS_COMPLETED,
            Sale.original_sale_id.is_(None),
        )
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .first()
    )
