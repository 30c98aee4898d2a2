# Overview: Flask API routes for sales, voids, returns and held sales; parses input and returns JSON responses.

# backend/posledger/routes/sales.py
"""Sales API routes with permission enforcement"""

from flask import Blueprint, current_app, g, request

from ..extensions import db
from ..decorators import require_permission
from ..services import held_sale_service, return_service, sales_service
from ..validation import PosError
from . import error_response, failure, int_arg, success


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _payload_with_user() -> dict:
    data = request.get_json(silent=True) or {}
    if isinstance(data, dict) and data.get("user_id") is None and g.get("user_id") is not None:
        data["user_id"] = g.user_id
    return data


@sales_bp.post("/")
@require_permission("CREATE_SALE")
def create_sale_route():
    """
    Record a completed sale: lines, payments, stock and shift totals in one transaction.

    Requires: CREATE_SALE permission
    """
    try:
        result = sales_service.create_sale(
            db.session,
            _payload_with_user(),
            allow_negative_stock=current_app.config["ALLOW_NEGATIVE_STOCK_ON_SALE"],
        )
        return success(result, 201)
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return failure("Internal server error", 500)


@sales_bp.get("/")
@require_permission("VIEW_SALES")
def list_sales_route():
    args = request.args
    try:
        rows, total = sales_service.list_sales(
            db.session,
            branch_id=int_arg(args, "branch_id"),
            user_id=int_arg(args, "user_id"),
            status=args.get("status"),
            date_from=args.get("date_from"),
            date_to=args.get("date_to"),
            limit=min(int_arg(args, "limit", 50), 500),
            offset=int_arg(args, "offset", 0),
        )
    except ValueError:
        return failure("Invalid date filter", 400)
    return success({"sales": [s.to_dict() for s in rows], "total": total})


@sales_bp.get("/last")
@require_permission("VIEW_SALES")
def last_sale_route():
    branch_id = int_arg(request.args, "branch_id")
    if branch_id is None:
        return failure("branch_id required", 400)
    sale = sales_service.get_last_sale(db.session, branch_id)
    if sale is None:
        return failure("No sales yet", 404)
    return success(sale.to_dict(include_lines=True))


@sales_bp.get("/invoice/<string:invoice_number>")
@require_permission("VIEW_SALES")
def get_sale_by_invoice_route(invoice_number: str):
    sale = sales_service.get_sale_by_invoice(db.session, invoice_number)
    if sale is None:
        return failure("Sale not found", 404)
    return success(sale.to_dict(include_lines=True))


@sales_bp.get("/<int:sale_id>")
@require_permission("VIEW_SALES")
def get_sale_route(sale_id: int):
    """Sale with items and payments."""
    sale = sales_service.get_sale(db.session, sale_id)
    if sale is None:
        return failure("Sale not found", 404)
    data = sale.to_dict(include_lines=True)
    data["returns"] = [r.to_dict() for r in return_service.get_sale_returns(db.session, sale_id)]
    return success(data)


@sales_bp.post("/<int:sale_id>/void")
@require_permission("VOID_SALE")
def void_sale_route(sale_id: int):
    """
    Void a completed sale and reverse its stock and shift effects.

    Requires: VOID_SALE permission
    """
    data = _payload_with_user()
    try:
        sales_service.void_sale(db.session, sale_id, data.get("user_id"), data.get("reason"))
        return success({"sale_id": sale_id})
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void sale")
        return failure("Internal server error", 500)


@sales_bp.post("/returns")
@require_permission("PROCESS_RETURN")
def return_sale_route():
    """
    Refund some or all of a sale as a new return document.

    Requires: PROCESS_RETURN permission
    """
    try:
        result = return_service.return_sale(db.session, _payload_with_user())
        return success(result, 201)
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create return")
        return failure("Internal server error", 500)


# =============================================================================
# HELD SALES
# =============================================================================

@sales_bp.post("/held")
@require_permission("CREATE_SALE")
def hold_sale_route():
    data = _payload_with_user()
    branch_id = data.get("branch_id")
    user_id = data.get("user_id")
    if branch_id is None or user_id is None:
        return failure("branch_id and user_id required", 400)
    try:
        held = held_sale_service.hold_sale(
            db.session,
            branch_id=int(branch_id),
            user_id=int(user_id),
            cart=data.get("cart") or {},
            note=data.get("note"),
            is_autosave=bool(data.get("is_autosave", False)),
        )
        return success(held.to_dict(), 201)
    except PosError as e:
        return error_response(e)
    except (TypeError, ValueError):
        return failure("branch_id and user_id must be integers", 400)
    except Exception:
        current_app.logger.exception("Failed to hold sale")
        return failure("Internal server error", 500)


@sales_bp.get("/held")
@require_permission("CREATE_SALE")
def list_held_sales_route():
    branch_id = int_arg(request.args, "branch_id")
    if branch_id is None:
        return failure("branch_id required", 400)
    rows = held_sale_service.list_held_sales(
        db.session, branch_id, user_id=int_arg(request.args, "user_id")
    )
    return success([h.to_dict() for h in rows])


@sales_bp.get("/held/autosave")
@require_permission("CREATE_SALE")
def get_autosave_route():
    branch_id = int_arg(request.args, "branch_id")
    user_id = int_arg(request.args, "user_id", g.get("user_id"))
    if branch_id is None or user_id is None:
        return failure("branch_id and user_id required", 400)
    held = held_sale_service.get_autosave(db.session, user_id=user_id, branch_id=branch_id)
    return success(held.to_dict() if held else None)


@sales_bp.delete("/held/<int:held_id>")
@require_permission("CREATE_SALE")
def delete_held_sale_route(held_id: int):
    if not held_sale_service.delete_held_sale(db.session, held_id):
        return failure("Held sale not found", 404)
    return success({"id": held_id})
