"""
Inventory Service - manual adjustments, branch transfers and stock read models

Quantity changes go through stock_ledger_service.record_stock_change so the
ledger row and the branch_stock cache always move together.

Transfers refuse to overdraw the source branch; adjustments take any signed
delta as long as the operator gives a reason.
"""

from __future__ import annotations

from sqlalchemy import and_, func, or_

from ..models import Branch, BranchStock, Product, StockMovement
from ..models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_TRANSFER_IN, MOVEMENT_TRANSFER_OUT
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    coerce_int,
    coerce_optional_int,
    coerce_text,
    enforce_rules_stock_adjust,
    enforce_rules_stock_transfer,
    validate_payload,
)
from .audit_service import append_audit_event
from .concurrency import atomic
from .stock_ledger_service import list_movements, record_stock_change


ADJUST_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "branch_id", "quantity", "notes", "user_id"},
    required_on_create={"product_id", "branch_id", "quantity", "notes"},
)


def _require_product(session, product_id: int) -> Product:
    product = session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise NotFoundError("Product not found")
    return product


def _require_branch(session, branch_id: int, label: str = "Branch") -> Branch:
    branch = session.query(Branch).filter_by(id=branch_id).first()
    if branch is None:
        raise NotFoundError(f"{label} not found")
    return branch


def adjust_stock(session, data: dict) -> dict:
    """
    Post one ADJUSTMENT movement with a caller-supplied signed delta.

    Returns {"movement_id", "quantity"} where quantity is the new cached level.
    """
    patch = validate_payload(model=StockMovement, payload=data, policy=ADJUST_POLICY, partial=False)
    enforce_rules_stock_adjust(patch)

    with atomic(session):
        product = _require_product(session, patch["product_id"])
        _require_branch(session, patch["branch_id"])

        movement_id = record_stock_change(
            session,
            product_id=product.id,
            branch_id=patch["branch_id"],
            type=MOVEMENT_ADJUSTMENT,
            quantity=patch["quantity"],
            reference_type="adjustment",
            notes=patch["notes"],
            user_id=patch.get("user_id"),
        )
        append_audit_event(
            session,
            action="adjust_stock",
            entity_type="product",
            entity_id=product.id,
            user_id=patch.get("user_id"),
            details={
                "branch_id": patch["branch_id"],
                "quantity": patch["quantity"],
                "notes": patch["notes"],
            },
        )
        level = (
            session.query(BranchStock.quantity)
            .filter_by(product_id=product.id, branch_id=patch["branch_id"])
            .scalar()
        )
    return {"movement_id": movement_id, "quantity": int(level or 0)}


def _parse_transfer(data) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    for key in ("product_id", "from_branch_id", "to_branch_id", "quantity"):
        if data.get(key) is None:
            raise ValidationError(f"{key} required")
    return {
        "product_id": coerce_int(data["product_id"], "product_id"),
        "from_branch_id": coerce_int(data["from_branch_id"], "from_branch_id"),
        "to_branch_id": coerce_int(data["to_branch_id"], "to_branch_id"),
        "quantity": coerce_int(data["quantity"], "quantity"),
        "notes": coerce_text(data.get("notes")),
        "user_id": coerce_optional_int(data.get("user_id"), "user_id"),
    }


def transfer_stock(session, data: dict) -> None:
    """
    Move stock between two branches: TRANSFER_OUT at the source, TRANSFER_IN
    at the destination. Both legs commit together or not at all.
    """
    patch = _parse_transfer(data)
    enforce_rules_stock_transfer(patch)

    with atomic(session):
        product = _require_product(session, patch["product_id"])
        _require_branch(session, patch["from_branch_id"], "Source branch")
        _require_branch(session, patch["to_branch_id"], "Destination branch")

        qty = patch["quantity"]
        notes = patch["notes"] or f"Transfer {patch['from_branch_id']} -> {patch['to_branch_id']}"

        out_id = record_stock_change(
            session,
            product_id=product.id,
            branch_id=patch["from_branch_id"],
            type=MOVEMENT_TRANSFER_OUT,
            quantity=-qty,
            reference_type="transfer",
            reference_id=patch["to_branch_id"],
            notes=notes,
            user_id=patch["user_id"],
            floor=0,
            error_message="Insufficient stock for transfer",
        )
        record_stock_change(
            session,
            product_id=product.id,
            branch_id=patch["to_branch_id"],
            type=MOVEMENT_TRANSFER_IN,
            quantity=qty,
            reference_type="transfer",
            reference_id=patch["from_branch_id"],
            notes=notes,
            user_id=patch["user_id"],
        )
        append_audit_event(
            session,
            action="transfer_stock",
            entity_type="product",
            entity_id=product.id,
            user_id=patch["user_id"],
            details={
                "from_branch_id": patch["from_branch_id"],
                "to_branch_id": patch["to_branch_id"],
                "quantity": qty,
                "transfer_out_movement_id": out_id,
            },
        )


def _stock_query(session, branch_id: int):
    level = func.coalesce(BranchStock.quantity, 0)
    return session.query(Product, level.label("quantity")).outerjoin(
        BranchStock,
        and_(BranchStock.product_id == Product.id, BranchStock.branch_id == branch_id),
    ).filter(Product.is_active.is_(True)), level


def _stock_row(product: Product, quantity) -> dict:
    data = product.to_dict()
    data["quantity"] = int(quantity or 0)
    data["is_low_stock"] = data["quantity"] <= product.low_stock_threshold
    return data


def get_branch_stock(
    session,
    branch_id: int,
    *,
    search: str | None = None,
    low_stock_only: bool = False,
) -> list[dict]:
    """Active products with their cached quantity at the branch (0 if never stocked)."""
    query, level = _stock_query(session, branch_id)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Product.name.ilike(like),
            Product.barcode.ilike(like),
            Product.sku.ilike(like),
        ))
    if low_stock_only:
        query = query.filter(level <= Product.low_stock_threshold)
    rows = query.order_by(Product.name.asc(), Product.id.asc()).all()
    return [_stock_row(product, quantity) for product, quantity in rows]


def get_low_stock(session, branch_id: int) -> list[dict]:
    query, level = _stock_query(session, branch_id)
    rows = (
        query.filter(level <= Product.low_stock_threshold)
        .order_by(level.asc(), Product.name.asc())
        .all()
    )
    return [_stock_row(product, quantity) for product, quantity in rows]


def get_stock_history(session, product_id: int, branch_id: int, limit: int = 50) -> list[dict]:
    return [m.to_dict() for m in list_movements(session, product_id, branch_id, limit=limit)]
