"""
Purchase Service - supplier invoices and goods receipt

LIFECYCLE:
- create_purchase: DRAFT only, no inventory effect
- receive_purchase: DRAFT -> RECEIVED, posts PURCHASE movements
- cancel_purchase: DRAFT -> CANCELLED

Subtotal/total are always recomputed from the items (quantity x unit cost);
client-sent totals are ignored.
"""

from __future__ import annotations

from ..models import Branch, Product, PurchaseInvoice, PurchaseItem, Supplier
from ..models.inventory import MOVEMENT_PURCHASE
from ..models.purchases import (
    PURCHASE_STATUS_CANCELLED,
    PURCHASE_STATUS_DRAFT,
    PURCHASE_STATUS_RECEIVED,
)
from ..time_utils import utcnow
from ..validation import NotFoundError, StateError, ValidationError
from .audit_service import append_audit_event
from .concurrency import atomic, lock_for_update
from .schemas import PurchaseInput
from .stock_ledger_service import record_stock_change


class PurchaseValidationError(ValidationError):
    pass


class PurchaseNotFoundError(NotFoundError):
    pass


class PurchaseStateError(StateError):
    pass


def _parse_purchase_input(data) -> PurchaseInput:
    if isinstance(data, PurchaseInput):
        return data
    try:
        return PurchaseInput.from_payload(data)
    except ValidationError as exc:
        raise PurchaseValidationError(exc.message, details=exc.details) from exc


def create_purchase(session, data) -> dict:
    """Record a draft purchase invoice. Returns {"id"}."""
    purchase_input = _parse_purchase_input(data)

    with atomic(session):
        if session.query(Supplier.id).filter_by(id=purchase_input.supplier_id).first() is None:
            raise PurchaseNotFoundError("Supplier not found")
        if session.query(Branch.id).filter_by(id=purchase_input.branch_id).first() is None:
            raise PurchaseNotFoundError("Branch not found")

        product_ids = {line.product_id for line in purchase_input.items}
        found = {
            pid for (pid,) in session.query(Product.id).filter(Product.id.in_(product_ids)).all()
        }
        missing = sorted(product_ids - found)
        if missing:
            raise PurchaseNotFoundError(
                "Product not found",
                details={"product_ids": missing},
            )

        subtotal = purchase_input.subtotal_cents
        purchase = PurchaseInvoice(
            supplier_id=purchase_input.supplier_id,
            branch_id=purchase_input.branch_id,
            user_id=purchase_input.user_id,
            invoice_number=purchase_input.invoice_number,
            subtotal_cents=subtotal,
            total_cents=subtotal,
            status=PURCHASE_STATUS_DRAFT,
            notes=purchase_input.notes,
        )
        session.add(purchase)
        session.flush()
        purchase_id = purchase.id

        for line in purchase_input.items:
            session.add(PurchaseItem(
                purchase_invoice_id=purchase_id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_cost_cents=line.unit_cost_cents,
                total_cents=line.total_cents,
            ))

    return {"id": purchase_id}


def receive_purchase(session, purchase_id: int, user_id: int | None = None) -> None:
    """
    Receive a draft purchase into branch stock.

    One PURCHASE movement per item; the cache is incremented alongside.
    """
    with atomic(session):
        purchase = lock_for_update(
            session.query(PurchaseInvoice).filter_by(id=purchase_id, status=PURCHASE_STATUS_DRAFT)
        ).first()
        if purchase is None:
            raise PurchaseStateError("Purchase not found or already received")

        for item in purchase.items:
            record_stock_change(
                session,
                product_id=item.product_id,
                branch_id=purchase.branch_id,
                type=MOVEMENT_PURCHASE,
                quantity=item.quantity,
                reference_type="purchase",
                reference_id=purchase.id,
                user_id=user_id,
            )

        purchase.status = PURCHASE_STATUS_RECEIVED
        purchase.received_at = utcnow()

        append_audit_event(
            session,
            action="receive_purchase",
            entity_type="purchase_invoice",
            entity_id=purchase.id,
            user_id=user_id,
            details={
                "supplier_id": purchase.supplier_id,
                "total_cents": purchase.total_cents,
                "items": len(purchase.items),
            },
        )


def cancel_purchase(session, purchase_id: int, user_id: int | None = None) -> None:
    with atomic(session):
        purchase = lock_for_update(
            session.query(PurchaseInvoice).filter_by(id=purchase_id)
        ).first()
        if purchase is None:
            raise PurchaseNotFoundError("Purchase not found")
        if purchase.status != PURCHASE_STATUS_DRAFT:
            raise PurchaseStateError("Only draft purchases can be cancelled")

        purchase.status = PURCHASE_STATUS_CANCELLED
        append_audit_event(
            session,
            action="cancel_purchase",
            entity_type="purchase_invoice",
            entity_id=purchase.id,
            user_id=user_id,
        )


def get_purchase(session, purchase_id: int) -> PurchaseInvoice | None:
    return session.query(PurchaseInvoice).filter_by(id=purchase_id).first()


def list_purchases(
    session,
    *,
    branch_id: int | None = None,
    supplier_id: int | None = None,
    status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[PurchaseInvoice]:
    query = session.query(PurchaseInvoice)
    if branch_id is not None:
        query = query.filter(PurchaseInvoice.branch_id == branch_id)
    if supplier_id is not None:
        query = query.filter(PurchaseInvoice.supplier_id == supplier_id)
    if status:
        query = query.filter(PurchaseInvoice.status == status)
    return (
        query.order_by(PurchaseInvoice.created_at.desc(), PurchaseInvoice.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
