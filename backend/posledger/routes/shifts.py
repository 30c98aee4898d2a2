# backend/posledger/routes/shifts.py
"""Cashier shift routes: open, close, current, report, list."""

from flask import Blueprint, current_app, g, request

from ..extensions import db
from ..decorators import require_permission
from ..services import reconciliation_service, shift_service
from ..validation import PosError
from . import error_response, failure, int_arg, success


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


@shifts_bp.post("/open")
@require_permission("MANAGE_SHIFT")
def open_shift_route():
    data = request.get_json(silent=True) or {}
    branch_id = data.get("branch_id")
    user_id = data.get("user_id", g.get("user_id"))
    if branch_id is None or user_id is None:
        return failure("branch_id and user_id required", 400)
    try:
        shift = shift_service.open_shift(
            db.session,
            branch_id=int(branch_id),
            user_id=int(user_id),
            opening_cash_cents=data.get("opening_cash_cents"),
        )
        return success(shift.to_dict(), 201)
    except PosError as e:
        return error_response(e)
    except (TypeError, ValueError):
        return failure("branch_id and user_id must be integers", 400)
    except Exception:
        current_app.logger.exception("Failed to open shift")
        return failure("Internal server error", 500)


@shifts_bp.post("/<int:shift_id>/close")
@require_permission("MANAGE_SHIFT")
def close_shift_route(shift_id: int):
    data = request.get_json(silent=True) or {}
    try:
        shift = shift_service.close_shift(
            db.session,
            shift_id,
            closing_cash_cents=data.get("closing_cash_cents"),
            notes=data.get("notes"),
        )
        return success(shift.to_dict())
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return failure("Internal server error", 500)


@shifts_bp.get("/current")
@require_permission("MANAGE_SHIFT")
def current_shift_route():
    branch_id = int_arg(request.args, "branch_id")
    user_id = int_arg(request.args, "user_id", g.get("user_id"))
    if branch_id is None or user_id is None:
        return failure("branch_id and user_id required", 400)
    shift = shift_service.get_current_shift(db.session, user_id=user_id, branch_id=branch_id)
    return success(shift.to_dict() if shift else None)


@shifts_bp.get("/")
@require_permission("VIEW_REPORTS")
def list_shifts_route():
    args = request.args
    rows = shift_service.list_shifts(
        db.session,
        branch_id=int_arg(args, "branch_id"),
        user_id=int_arg(args, "user_id"),
        status=args.get("status"),
        limit=min(int_arg(args, "limit", 50), 500),
    )
    return success([s.to_dict() for s in rows])


@shifts_bp.get("/<int:shift_id>/report")
@require_permission("VIEW_REPORTS")
def shift_report_route(shift_id: int):
    try:
        report = shift_service.get_shift_report(db.session, shift_id)
        report["reconciliation"] = reconciliation_service.reconcile_shift_totals(db.session, shift_id)
        return success(report)
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build shift report")
        return failure("Internal server error", 500)
