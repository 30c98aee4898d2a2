# backend/posledger/routes/purchases.py
"""
Purchase invoice routes.

Draft purchases have no stock effect; receiving posts PURCHASE movements.
"""
from flask import Blueprint, current_app, g, request

from ..extensions import db
from ..decorators import require_permission
from ..services import purchase_service
from ..validation import PosError
from . import error_response, failure, int_arg, success


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


def _request_user_id():
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id") if isinstance(data, dict) else None
    return user_id if user_id is not None else g.get("user_id")


@purchases_bp.post("/")
@require_permission("CREATE_PURCHASE")
def create_purchase_route():
    data = request.get_json(silent=True) or {}
    if isinstance(data, dict) and data.get("user_id") is None and g.get("user_id") is not None:
        data["user_id"] = g.user_id
    try:
        return success(purchase_service.create_purchase(db.session, data), 201)
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create purchase")
        return failure("Internal server error", 500)


@purchases_bp.get("/")
@require_permission("VIEW_PURCHASES")
def list_purchases_route():
    args = request.args
    rows = purchase_service.list_purchases(
        db.session,
        branch_id=int_arg(args, "branch_id"),
        supplier_id=int_arg(args, "supplier_id"),
        status=args.get("status"),
        limit=min(int_arg(args, "limit", 50), 500),
        offset=int_arg(args, "offset", 0),
    )
    return success([p.to_dict() for p in rows])


@purchases_bp.get("/<int:purchase_id>")
@require_permission("VIEW_PURCHASES")
def get_purchase_route(purchase_id: int):
    purchase = purchase_service.get_purchase(db.session, purchase_id)
    if purchase is None:
        return failure("Purchase not found", 404)
    return success(purchase.to_dict(include_items=True))


@purchases_bp.post("/<int:purchase_id>/receive")
@require_permission("RECEIVE_INVENTORY")
def receive_purchase_route(purchase_id: int):
    """Receive a draft purchase into branch stock."""
    try:
        purchase_service.receive_purchase(db.session, purchase_id, _request_user_id())
        return success({"id": purchase_id})
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to receive purchase")
        return failure("Internal server error", 500)


@purchases_bp.post("/<int:purchase_id>/cancel")
@require_permission("CREATE_PURCHASE")
def cancel_purchase_route(purchase_id: int):
    try:
        purchase_service.cancel_purchase(db.session, purchase_id, _request_user_id())
        return success({"id": purchase_id})
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel purchase")
        return failure("Internal server error", 500)
