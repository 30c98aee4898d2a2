# backend/posledger/routes/reports.py
"""
Reporting routes.

All reports are per branch; date_from/date_to are inclusive YYYY-MM-DD bounds.
"""
from flask import Blueprint, current_app, request

from ..extensions import db
from ..decorators import require_permission
from ..services import reporting_service
from ..validation import PosError
from . import error_response, failure, int_arg, success


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _run(report_fn, **extra):
    branch_id = int_arg(request.args, "branch_id")
    if branch_id is None:
        return failure("branch_id required", 400)
    try:
        data = report_fn(
            db.session,
            branch_id=branch_id,
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            **extra,
        )
        return success(data)
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build report %s", report_fn.__name__)
        return failure("Internal server error", 500)


@reports_bp.get("/daily-sales")
@require_permission("VIEW_REPORTS")
def daily_sales_route():
    return _run(reporting_service.daily_sales)


@reports_bp.get("/sales-by-product")
@require_permission("VIEW_REPORTS")
def sales_by_product_route():
    return _run(reporting_service.sales_by_product, limit=min(int_arg(request.args, "limit", 50), 500))


@reports_bp.get("/payments")
@require_permission("VIEW_REPORTS")
def payment_breakdown_route():
    return _run(reporting_service.payment_breakdown)


@reports_bp.get("/profit")
@require_permission("VIEW_REPORTS")
def profit_route():
    return _run(reporting_service.profit_report)


@reports_bp.get("/dashboard")
@require_permission("VIEW_REPORTS")
def dashboard_route():
    branch_id = int_arg(request.args, "branch_id")
    if branch_id is None:
        return failure("branch_id required", 400)
    try:
        return success(reporting_service.dashboard_summary(db.session, branch_id=branch_id))
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build dashboard")
        return failure("Internal server error", 500)
