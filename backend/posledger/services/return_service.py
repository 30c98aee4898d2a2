"""
Return Service - refunds against a completed sale

WHY: A return is its own sale document (status 'returned', original_sale_id
set) with NEGATIVE amounts and quantities, so SUM-based reports net out
without special cases.

PRICING:
- Returned lines are priced from the original sale, never from the live
  product. The bill's total and tax (after any bill-level discount) are
  shared over the sold products by their line totals, then pro-rated per
  unit, rounding half away from zero to the cent.
- Each return refunds the difference between the cumulative share after and
  before it, so the refunds of a fully returned sale add up to exactly what
  the customer paid.
- A product can never be returned beyond what was sold, counted across every
  return document already written against the sale.

CLASSIFICATION:
- After the return is written, the original becomes 'returned' once every
  sold product has been returned in full, otherwise 'partial_return'.
"""

from __future__ import annotations

from sqlalchemy import func

from ..models import Sale, SaleItem, Payment
from ..models.inventory import MOVEMENT_RETURN
from ..models.sales import (
    SALE_STATUS_PARTIAL_RETURN,
    SALE_STATUS_RETURNED,
    SALE_STATUS_VOIDED,
)
from ..validation import NotFoundError, StateError, ValidationError
from .audit_service import append_audit_event
from .concurrency import atomic, lock_for_update
from .invoice_service import next_invoice_number
from .schemas import ReturnInput
from .shift_service import adjust_shift_totals
from .stock_ledger_service import record_stock_change


class ReturnValidationError(ValidationError):
    pass


class ReturnNotFoundError(NotFoundError):
    pass


class ReturnStateError(StateError):
    pass


def _prorate(amount_cents: int, quantity: int, sold_quantity: int) -> int:
    """amount * quantity / sold, rounded half away from zero."""
    numerator = abs(amount_cents) * quantity * 2 + sold_quantity
    value = numerator // (2 * sold_quantity)
    return value if amount_cents >= 0 else -value


def _sold_by_product(items: list[SaleItem]) -> dict[int, dict]:
    """Aggregate the original sale's snapshot lines per product."""
    sold: dict[int, dict] = {}
    for item in items:
        entry = sold.get(item.product_id)
        if entry is None:
            sold[item.product_id] = {
                "item": item,
                "quantity": item.quantity,
                "tax_cents": item.tax_cents,
                "total_cents": item.total_cents,
            }
        else:
            entry["quantity"] += item.quantity
            entry["tax_cents"] += item.tax_cents
            entry["total_cents"] += item.total_cents
    return sold


def _split(amount_cents: int, weights: dict[int, int]) -> dict[int, int]:
    """
    Share amount across keys in proportion to weights.

    The last key takes the remainder, so the shares always sum to amount.
    """
    keys = sorted(weights)
    total_weight = sum(weights.values())
    shares: dict[int, int] = {}
    for key in keys[:-1]:
        shares[key] = _prorate(amount_cents, weights[key], total_weight) if total_weight else 0
    shares[keys[-1]] = amount_cents - sum(shares.values())
    return shares


def _bill_shares(original: Sale, sold: dict[int, dict]) -> None:
    """
    Spread the bill's total and tax over the sold products.

    Line totals are before any bill-level discount; scaling them onto the
    header total makes a full return refund exactly what was charged.
    """
    totals = {pid: entry["total_cents"] for pid, entry in sold.items()}
    taxes = {pid: entry["tax_cents"] for pid, entry in sold.items()}
    if not any(taxes.values()):
        taxes = totals
    total_shares = _split(original.total_cents, totals)
    tax_shares = _split(original.tax_cents, taxes)
    for pid, entry in sold.items():
        entry["bill_total_cents"] = total_shares[pid]
        entry["bill_tax_cents"] = tax_shares[pid]


def _refund_for(amount_cents: int, already: int, quantity: int, sold_quantity: int) -> int:
    """Refund for the next `quantity` units after `already` were returned."""
    return (
        _prorate(amount_cents, already + quantity, sold_quantity)
        - _prorate(amount_cents, already, sold_quantity)
    )


def returned_quantities(session, original_sale_id: int) -> dict[int, int]:
    """Units already returned per product across all return documents of a sale."""
    rows = (
        session.query(SaleItem.product_id, func.sum(-SaleItem.quantity))
        .join(Sale, Sale.id == SaleItem.sale_id)
        .filter(
            Sale.original_sale_id == original_sale_id,
            Sale.status == SALE_STATUS_RETURNED,
        )
        .group_by(SaleItem.product_id)
        .all()
    )
    return {product_id: int(qty or 0) for product_id, qty in rows}


def _parse_return_input(data) -> ReturnInput:
    if isinstance(data, ReturnInput):
        return data
    try:
        return ReturnInput.from_payload(data)
    except ValidationError as exc:
        raise ReturnValidationError(exc.message, details=exc.details) from exc


def return_sale(session, data) -> dict:
    """
    Create a return document against a sale.

    Returns {"return_sale_id", "invoice_number"}.
    """
    return_input = _parse_return_input(data)
    requested = return_input.quantities_by_product()

    with atomic(session):
        original = lock_for_update(
            session.query(Sale).filter_by(id=return_input.original_sale_id)
        ).first()
        if original is None:
            raise ReturnNotFoundError("Original sale not found")
        if original.is_return:
            raise ReturnStateError("Cannot return a return document")
        if original.status == SALE_STATUS_VOIDED:
            raise ReturnStateError("Cannot return a voided sale")
        if original.status == SALE_STATUS_RETURNED:
            raise ReturnStateError("Sale has already been fully returned")

        sold = _sold_by_product(original.items)
        _bill_shares(original, sold)
        already = returned_quantities(session, original.id)

        lines = []
        for product_id, qty in requested.items():
            entry = sold.get(product_id)
            if entry is None:
                raise ReturnStateError(
                    f"Product {product_id} was not sold on this sale",
                    details={"product_id": product_id},
                )
            returned_before = already.get(product_id, 0)
            remaining = entry["quantity"] - returned_before
            if qty > remaining:
                raise ReturnStateError(
                    f"Cannot return {qty} of {entry['item'].product_name}; only {remaining} returnable",
                    details={"product_id": product_id, "requested": qty, "returnable": remaining},
                )
            lines.append((
                entry["item"],
                qty,
                _refund_for(entry["bill_tax_cents"], returned_before, qty, entry["quantity"]),
                _refund_for(entry["bill_total_cents"], returned_before, qty, entry["quantity"]),
            ))

        refund_total = sum(line_total for _, _, _, line_total in lines)
        refund_tax = sum(line_tax for _, _, line_tax, _ in lines)

        branch_id = return_input.branch_id or original.branch_id
        invoice_number = next_invoice_number(session, branch_id)

        doc = Sale(
            invoice_number=invoice_number,
            branch_id=branch_id,
            user_id=return_input.user_id,
            shift_id=return_input.shift_id,
            customer_name=original.customer_name,
            subtotal_cents=-(refund_total - refund_tax),
            discount_cents=0,
            discount_type="fixed",
            tax_cents=-refund_tax,
            total_cents=-refund_total,
            status=SALE_STATUS_RETURNED,
            original_sale_id=original.id,
            notes=return_input.reason,
        )
        session.add(doc)
        session.flush()
        return_sale_id = doc.id

        for snapshot, qty, line_tax, line_total in lines:
            session.add(SaleItem(
                sale_id=return_sale_id,
                product_id=snapshot.product_id,
                product_name=snapshot.product_name,
                barcode=snapshot.barcode,
                quantity=-qty,
                unit_price_cents=snapshot.unit_price_cents,
                cost_price_cents=snapshot.cost_price_cents,
                discount_cents=0,
                discount_type="fixed",
                tax_rate_bps=snapshot.tax_rate_bps,
                tax_cents=-line_tax,
                total_cents=-line_total,
            ))
            record_stock_change(
                session,
                product_id=snapshot.product_id,
                branch_id=branch_id,
                type=MOVEMENT_RETURN,
                quantity=qty,
                reference_type="return",
                reference_id=return_sale_id,
                notes=f"Return: {return_input.reason}",
                user_id=return_input.user_id,
            )

        session.add(Payment(
            sale_id=return_sale_id,
            method=return_input.refund_method,
            amount_cents=-refund_total,
            received_cents=-refund_total,
            change_cents=0,
        ))
        session.flush()

        returned = returned_quantities(session, original.id)
        fully_returned = all(
            returned.get(product_id, 0) >= entry["quantity"]
            for product_id, entry in sold.items()
        )
        original.status = SALE_STATUS_RETURNED if fully_returned else SALE_STATUS_PARTIAL_RETURN

        if return_input.shift_id:
            adjust_shift_totals(session, return_input.shift_id, refunds_cents=refund_total)

        append_audit_event(
            session,
            action="return_sale",
            entity_type="sale",
            entity_id=original.id,
            user_id=return_input.user_id,
            details={
                "return_sale_id": return_sale_id,
                "invoice_number": invoice_number,
                "refund_cents": refund_total,
                "refund_method": return_input.refund_method,
                "reason": return_input.reason,
                "items": [{"product_id": p, "quantity": q} for p, q in requested.items()],
            },
        )

    return {"return_sale_id": return_sale_id, "invoice_number": invoice_number}


def get_sale_returns(session, sale_id: int) -> list[Sale]:
    return (
        session.query(Sale)
        .filter(Sale.original_sale_id == sale_id)
        .order_by(Sale.id.asc())
        .all()
    )
