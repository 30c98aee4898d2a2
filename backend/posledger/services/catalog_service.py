from __future__ import annotations

from sqlalchemy import or_

from ..models import Branch, Product, Supplier
from ..validation import NotFoundError, ValidationError, coerce_cents, coerce_int, coerce_text, require_text
from .concurrency import atomic


class CatalogError(ValidationError):
    pass


def create_branch(session, *, name: str, invoice_prefix: str, code: str | None = None, address: str | None = None) -> Branch:
    name = require_text(name, "name")
    invoice_prefix = require_text(invoice_prefix, "invoice_prefix")
    if "-" in invoice_prefix:
        raise CatalogError("invoice_prefix cannot contain '-'")

    with atomic(session):
        if code and session.query(Branch.id).filter_by(code=code).first() is not None:
            raise CatalogError(f"Branch code '{code}' already exists")
        branch = Branch(name=name, invoice_prefix=invoice_prefix, code=coerce_text(code), address=coerce_text(address))
        session.add(branch)
    return branch


def create_product(
    session,
    *,
    name: str,
    selling_price_cents: int,
    cost_price_cents: int = 0,
    barcode: str | None = None,
    sku: str | None = None,
    tax_rate_bps: int = 0,
    unit: str = "pcs",
    low_stock_threshold: int = 5,
) -> Product:
    product = Product(
        name=require_text(name, "name"),
        barcode=coerce_text(barcode),
        sku=coerce_text(sku),
        selling_price_cents=coerce_cents(selling_price_cents, "selling_price_cents"),
        cost_price_cents=coerce_cents(cost_price_cents, "cost_price_cents"),
        tax_rate_bps=coerce_int(tax_rate_bps, "tax_rate_bps"),
        unit=coerce_text(unit) or "pcs",
        low_stock_threshold=coerce_int(low_stock_threshold, "low_stock_threshold"),
    )
    with atomic(session):
        if product.barcode and session.query(Product.id).filter_by(barcode=product.barcode).first() is not None:
            raise CatalogError(f"Barcode '{product.barcode}' already exists")
        session.add(product)
    return product


def create_supplier(session, *, name: str, phone: str | None = None) -> Supplier:
    supplier = Supplier(name=require_text(name, "name"), phone=coerce_text(phone))
    with atomic(session):
        session.add(supplier)
    return supplier


def get_product_by_barcode(session, barcode: str) -> Product | None:
    return session.query(Product).filter_by(barcode=barcode, is_active=True).first()


def list_branches(session, *, active_only: bool = True) -> list[Branch]:
    query = session.query(Branch)
    if active_only:
        query = query.filter(Branch.is_active.is_(True))
    return query.order_by(Branch.id.asc()).all()


PRODUCT_PRICE_FIELDS = ("selling_price_cents", "cost_price_cents")


def get_product(session, product_id: int) -> Product | None:
    return session.query(Product).filter_by(id=product_id).first()


def list_products(
    session,
    *,
    search: str | None = None,
    active_only: bool = True,
    limit: int = 100,
    offset: int = 0,
) -> list[Product]:
    """Products by name; search matches name, barcode or SKU."""
    query = session.query(Product)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    term = coerce_text(search)
    if term:
        like = f"%{term}%"
        query = query.filter(or_(Product.name.ilike(like), Product.barcode.ilike(like), Product.sku.ilike(like)))
    return query.order_by(Product.name.asc(), Product.id.asc()).offset(offset).limit(limit).all()


def update_product(session, product_id: int, patch: dict) -> Product:
    """
    Apply a validated partial update.

    Existing sale lines keep their snapshot; only future sales see the change.
    """
    product = get_product(session, product_id)
    if product is None:
        raise NotFoundError("Product not found")

    for key in PRODUCT_PRICE_FIELDS:
        if key in patch:
            patch[key] = coerce_cents(patch[key], key)
    for key in ("barcode", "sku"):
        if key in patch:
            patch[key] = coerce_text(patch[key])
    if "name" in patch:
        patch["name"] = require_text(patch["name"], "name")

    with atomic(session):
        barcode = patch.get("barcode")
        if barcode and barcode != product.barcode:
            taken = session.query(Product.id).filter(Product.barcode == barcode, Product.id != product.id).first()
            if taken is not None:
                raise CatalogError(f"Barcode '{barcode}' already exists")
        for key, value in patch.items():
            setattr(product, key, value)
    return product


def list_suppliers(session, *, active_only: bool = True) -> list[Supplier]:
    query = session.query(Supplier)
    if active_only:
        query = query.filter(Supplier.is_active.is_(True))
    return query.order_by(Supplier.name.asc()).all()
