"""
Held Sales - parked carts and the per-register autosave slot

Carts are stored as a tagged, versioned snapshot (CartSnapshot.to_dict) so a
resumed cart is validated on the way back in instead of trusting whatever
blob was saved. Held sales never touch stock or invoice numbering.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from ..models import Branch, HeldSale
from ..validation import NotFoundError, ValidationError, coerce_cents, coerce_int, coerce_text
from .concurrency import atomic
from .schemas import _discount_type


CART_SNAPSHOT_KIND = "cart_snapshot"
CART_SNAPSHOT_VERSION = 1


class HeldSaleError(ValidationError):
    pass


def _cart_discount_type(value: Any) -> str:
    # Same rule the sale path applies, so a resumed cart can always be rung up
    try:
        return _discount_type(value)
    except ValidationError as exc:
        raise HeldSaleError(exc.message) from exc


@dataclass
class CartLine:
    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int
    discount_cents: int = 0
    discount_type: str = "fixed"
    tax_rate_bps: int = 0
    barcode: str | None = None

    @classmethod
    def from_dict(cls, raw: Any) -> "CartLine":
        if not isinstance(raw, dict):
            raise HeldSaleError("each cart line must be an object")
        name = coerce_text(raw.get("product_name"))
        if not name:
            raise HeldSaleError("product_name required")
        return cls(
            product_id=coerce_int(raw.get("product_id"), "product_id"),
            product_name=name,
            quantity=coerce_int(raw.get("quantity"), "quantity"),
            unit_price_cents=coerce_cents(raw.get("unit_price_cents", 0), "unit_price_cents"),
            discount_cents=coerce_cents(raw.get("discount_cents") or 0, "discount_cents"),
            discount_type=_cart_discount_type(raw.get("discount_type")),
            tax_rate_bps=coerce_int(raw.get("tax_rate_bps") or 0, "tax_rate_bps"),
            barcode=coerce_text(raw.get("barcode")),
        )


@dataclass
class CartSnapshot:
    lines: list[CartLine] = field(default_factory=list)
    customer_name: str | None = None
    discount_cents: int = 0
    discount_type: str = "fixed"

    def to_dict(self) -> dict:
        return {
            "kind": CART_SNAPSHOT_KIND,
            "version": CART_SNAPSHOT_VERSION,
            "customer_name": self.customer_name,
            "discount_cents": self.discount_cents,
            "discount_type": self.discount_type,
            "lines": [asdict(line) for line in self.lines],
        }

    @classmethod
    def from_dict(cls, raw: Any) -> "CartSnapshot":
        if not isinstance(raw, dict):
            raise HeldSaleError("cart must be an object")
        kind = raw.get("kind", CART_SNAPSHOT_KIND)
        if kind != CART_SNAPSHOT_KIND:
            raise HeldSaleError(f"unexpected cart kind: {kind}")
        version = raw.get("version", CART_SNAPSHOT_VERSION)
        if version != CART_SNAPSHOT_VERSION:
            raise HeldSaleError(f"unsupported cart version: {version}")
        lines = raw.get("lines") or []
        if not isinstance(lines, list):
            raise HeldSaleError("lines must be a list")
        return cls(
            lines=[CartLine.from_dict(line) for line in lines],
            customer_name=coerce_text(raw.get("customer_name")),
            discount_cents=coerce_cents(raw.get("discount_cents") or 0, "discount_cents"),
            discount_type=_cart_discount_type(raw.get("discount_type")),
        )


def load_cart(held: HeldSale) -> CartSnapshot:
    return CartSnapshot.from_dict(held.cart)


def hold_sale(
    session,
    *,
    branch_id: int,
    user_id: int,
    cart,
    note: str | None = None,
    is_autosave: bool = False,
) -> HeldSale:
    """
    Park a cart. An autosave replaces the user's previous autosave at the branch.
    """
    snapshot = cart if isinstance(cart, CartSnapshot) else CartSnapshot.from_dict(cart)
    if not snapshot.lines and not is_autosave:
        raise HeldSaleError("Cannot hold an empty cart")

    with atomic(session):
        if session.query(Branch.id).filter_by(id=branch_id).first() is None:
            raise NotFoundError("Branch not found")

        held = None
        if is_autosave:
            held = get_autosave(session, user_id=user_id, branch_id=branch_id)

        if held is None:
            held = HeldSale(branch_id=branch_id, user_id=user_id, is_autosave=is_autosave)
            session.add(held)

        held.cart = snapshot.to_dict()
        held.note = coerce_text(note)
    return held


def list_held_sales(session, branch_id: int, *, user_id: int | None = None) -> list[HeldSale]:
    query = session.query(HeldSale).filter(
        HeldSale.branch_id == branch_id,
        HeldSale.is_autosave.is_(False),
    )
    if user_id is not None:
        query = query.filter(HeldSale.user_id == user_id)
    return query.order_by(HeldSale.created_at.desc(), HeldSale.id.desc()).all()


def get_held_sale(session, held_id: int) -> HeldSale | None:
    return session.query(HeldSale).filter_by(id=held_id).first()


def get_autosave(session, *, user_id: int, branch_id: int) -> HeldSale | None:
    return (
        session.query(HeldSale)
        .filter_by(user_id=user_id, branch_id=branch_id, is_autosave=True)
        .order_by(HeldSale.id.desc())
        .first()
    )


def delete_held_sale(session, held_id: int) -> bool:
    with atomic(session):
        held = session.query(HeldSale).filter_by(id=held_id).first()
        if held is None:
            return False
        session.delete(held)
    return True
