# backend/posledger/routes/inventory.py
"""
Inventory routes: adjustments, transfers, stock levels and cache reconciliation.

- View operations require VIEW_INVENTORY permission
- Adjust operations require ADJUST_INVENTORY permission
- Transfers require TRANSFER_INVENTORY permission
- Cache repair requires SYSTEM_ADMIN
"""
from flask import Blueprint, current_app, g, request

from ..extensions import db
from ..decorators import require_permission
from ..services import inventory_service, reconciliation_service
from ..validation import PosError
from . import error_response, failure, int_arg, success


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _payload_with_user() -> dict:
    data = request.get_json(silent=True) or {}
    if isinstance(data, dict) and data.get("user_id") is None and g.get("user_id") is not None:
        data["user_id"] = g.user_id
    return data


@inventory_bp.post("/adjust")
@require_permission("ADJUST_INVENTORY")
def adjust_stock_route():
    """Post a signed ADJUSTMENT movement. notes (the reason) is required."""
    try:
        result = inventory_service.adjust_stock(db.session, _payload_with_user())
        return success(result)
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return failure("Internal server error", 500)


@inventory_bp.post("/transfer")
@require_permission("TRANSFER_INVENTORY")
def transfer_stock_route():
    """Move stock between branches; refuses to overdraw the source."""
    try:
        inventory_service.transfer_stock(db.session, _payload_with_user())
        return success()
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return failure("Internal server error", 500)


@inventory_bp.get("/stock")
@require_permission("VIEW_INVENTORY")
def branch_stock_route():
    branch_id = int_arg(request.args, "branch_id")
    if branch_id is None:
        return failure("branch_id required", 400)
    low_only = request.args.get("low_stock", "").lower() in {"1", "true", "yes"}
    rows = inventory_service.get_branch_stock(
        db.session, branch_id, search=request.args.get("search"), low_stock_only=low_only
    )
    return success(rows)


@inventory_bp.get("/low-stock")
@require_permission("VIEW_INVENTORY")
def low_stock_route():
    branch_id = int_arg(request.args, "branch_id")
    if branch_id is None:
        return failure("branch_id required", 400)
    return success(inventory_service.get_low_stock(db.session, branch_id))


@inventory_bp.get("/history")
@require_permission("VIEW_INVENTORY")
def stock_history_route():
    product_id = int_arg(request.args, "product_id")
    branch_id = int_arg(request.args, "branch_id")
    if product_id is None or branch_id is None:
        return failure("product_id and branch_id required", 400)
    limit = min(int_arg(request.args, "limit", 50), 500)
    return success(inventory_service.get_stock_history(db.session, product_id, branch_id, limit=limit))


@inventory_bp.get("/reconcile")
@require_permission("VIEW_INVENTORY")
def reconcile_route():
    """Products whose cached quantity differs from the ledger. Read-only."""
    branch_id = int_arg(request.args, "branch_id")
    if branch_id is None:
        return failure("branch_id required", 400)
    try:
        return success(reconciliation_service.reconcile_stock(db.session, branch_id))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile stock")
        return failure("Internal server error", 500)


@inventory_bp.post("/fix-cache")
@require_permission("SYSTEM_ADMIN")
def fix_cache_route():
    """Rewrite the branch stock cache from the ledger."""
    data = request.get_json(silent=True) or {}
    branch_id = data.get("branch_id") if isinstance(data, dict) else None
    if branch_id is None:
        branch_id = int_arg(request.args, "branch_id")
    if branch_id is None:
        return failure("branch_id required", 400)
    try:
        fixed = reconciliation_service.fix_stock_cache(db.session, int(branch_id))
        current_app.logger.info("Stock cache rebuilt for branch %s: %d row(s) changed", branch_id, fixed)
        return success({"fixed": fixed})
    except PosError as e:
        return error_response(e)
    except (TypeError, ValueError):
        return failure("branch_id must be an integer", 400)
    except Exception:
        current_app.logger.exception("Failed to fix stock cache")
        return failure("Internal server error", 500)
