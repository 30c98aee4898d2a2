# backend/posledger/routes/products.py
"""
Product catalog routes.

- Read operations require VIEW_INVENTORY permission
- Write operations require MANAGE_PRODUCTS permission

Price changes only affect future sales; sale lines keep their own snapshot.
"""
from flask import Blueprint, current_app, request

from ..extensions import db
from ..decorators import require_permission
from ..models import Product
from ..services import catalog_service
from ..validation import ModelValidationPolicy, PosError, validate_payload
from . import error_response, failure, int_arg, success


PRODUCT_FIELDS = {
    "name",
    "barcode",
    "sku",
    "selling_price_cents",
    "cost_price_cents",
    "tax_rate_bps",
    "unit",
    "low_stock_threshold",
}

CREATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_FIELDS,
    required_on_create={"name", "selling_price_cents"},
)

UPDATE_POLICY = ModelValidationPolicy(writable_fields=PRODUCT_FIELDS | {"is_active"})

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/")
@require_permission("VIEW_INVENTORY")
def list_products_route():
    """
    Query params:
    - search: matches name, barcode or SKU
    - include_inactive: "1" to list deactivated products too
    - limit / offset
    """
    args = request.args
    rows = catalog_service.list_products(
        db.session,
        search=args.get("search"),
        active_only=args.get("include_inactive") != "1",
        limit=min(int_arg(args, "limit", 100), 500),
        offset=int_arg(args, "offset", 0),
    )
    return success([p.to_dict() for p in rows])


@products_bp.get("/<int:product_id>")
@require_permission("VIEW_INVENTORY")
def get_product_route(product_id: int):
    product = catalog_service.get_product(db.session, product_id)
    if product is None:
        return failure("Product not found", 404)
    return success(product.to_dict())


@products_bp.get("/barcode/<barcode>")
@require_permission("VIEW_INVENTORY")
def get_product_by_barcode_route(barcode: str):
    """Scanner lookup; inactive products are not returned."""
    product = catalog_service.get_product_by_barcode(db.session, barcode)
    if product is None:
        return failure("Product not found", 404)
    return success(product.to_dict())


@products_bp.post("/")
@require_permission("MANAGE_PRODUCTS")
def create_product_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=CREATE_POLICY, partial=False)
        product = catalog_service.create_product(db.session, **patch)
        return success(product.to_dict(), 201)
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return failure("Internal server error", 500)


@products_bp.put("/<int:product_id>")
@require_permission("MANAGE_PRODUCTS")
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=UPDATE_POLICY, partial=True)
        product = catalog_service.update_product(db.session, product_id, patch)
        return success(product.to_dict())
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return failure("Internal server error", 500)
