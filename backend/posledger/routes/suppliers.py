# backend/posledger/routes/suppliers.py
"""
Supplier routes. Suppliers are referenced by purchase invoices.
"""
from flask import Blueprint, current_app, request

from ..extensions import db
from ..decorators import require_permission
from ..services import catalog_service
from ..validation import PosError
from . import error_response, failure, success


suppliers_bp = Blueprint("suppliers", __name__, url_prefix="/api/suppliers")


@suppliers_bp.get("/")
@require_permission("VIEW_PURCHASES")
def list_suppliers_route():
    rows = catalog_service.list_suppliers(
        db.session, active_only=request.args.get("include_inactive") != "1",
    )
    return success([s.to_dict() for s in rows])


@suppliers_bp.post("/")
@require_permission("MANAGE_SUPPLIERS")
def create_supplier_route():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return failure("Invalid JSON payload", 400)
    try:
        supplier = catalog_service.create_supplier(db.session, name=data.get("name"), phone=data.get("phone"))
        return success(supplier.to_dict(), 201)
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create supplier")
        return failure("Internal server error", 500)
