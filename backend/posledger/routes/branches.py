# backend/posledger/routes/branches.py
"""
Branch routes.

invoice_prefix is fixed at creation; it is the first segment of every
invoice number the branch issues.
"""
from flask import Blueprint, current_app, request

from ..extensions import db
from ..decorators import require_permission
from ..services import catalog_service
from ..validation import PosError
from . import error_response, failure, success


branches_bp = Blueprint("branches", __name__, url_prefix="/api/branches")


@branches_bp.get("/")
@require_permission("VIEW_INVENTORY")
def list_branches_route():
    rows = catalog_service.list_branches(
        db.session, active_only=request.args.get("include_inactive") != "1",
    )
    return success([b.to_dict() for b in rows])


@branches_bp.post("/")
@require_permission("MANAGE_BRANCHES")
def create_branch_route():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return failure("Invalid JSON payload", 400)
    try:
        branch = catalog_service.create_branch(
            db.session,
            name=data.get("name"),
            invoice_prefix=data.get("invoice_prefix"),
            code=data.get("code"),
            address=data.get("address"),
        )
        return success(branch.to_dict(), 201)
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create branch")
        return failure("Internal server error", 500)
