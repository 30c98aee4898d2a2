# backend/posledger/routes/system.py
"""
System health and audit trail endpoints.

Reports database connectivity and basic table counts for deployment debugging.
"""

import time

from flask import Blueprint, current_app, jsonify, request

from ..extensions import db
from ..decorators import require_permission
from ..models import Branch, Product, StockMovement
from ..services.audit_service import list_audit_events
from ..time_utils import to_utc_z, utcnow
from . import int_arg, success

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        branch_count = db.session.query(Branch).count()
        product_count = db.session.query(Product).count()
        movement_count = db.session.query(StockMovement).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "branches": branch_count,
                "products": product_count,
                "stock_movements": movement_count,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "success": healthy,
        "data": {
            "status": "healthy" if healthy else "unhealthy",
            "checked_at": to_utc_z(utcnow()),
            "database": database,
        },
    }
    return jsonify(body), 200 if healthy else 503


@system_bp.get("/api/audit")
@require_permission("VIEW_AUDIT_LOG")
def audit_log_route():
    """Newest first; filter by entity_type and entity_id."""
    args = request.args
    rows = list_audit_events(
        db.session,
        entity_type=args.get("entity_type") or None,
        entity_id=int_arg(args, "entity_id"),
        limit=min(int_arg(args, "limit", 100), 500),
    )
    return success([entry.to_dict() for entry in rows])
