# backend/posledger/routes/settings.py
from flask import Blueprint, current_app, request

from ..extensions import db
from ..decorators import require_permission
from ..services import settings_service
from ..validation import PosError
from . import error_response, failure, success


settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("/")
@require_permission("VIEW_SETTINGS")
def list_settings_route():
    return success(settings_service.get_all_settings(db.session))


@settings_bp.get("/<string:key>")
@require_permission("VIEW_SETTINGS")
def get_setting_route(key: str):
    value = settings_service.get_setting(db.session, key)
    if value is None:
        return failure("Setting not found", 404)
    return success({"key": key, "value": value})


@settings_bp.put("/")
@require_permission("MANAGE_SETTINGS")
def update_settings_route():
    """Write several key/value pairs in one transaction."""
    data = request.get_json(silent=True)
    try:
        count = settings_service.set_many_settings(db.session, data)
        return success({"updated": count})
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update settings")
        return failure("Internal server error", 500)


@settings_bp.put("/<string:key>")
@require_permission("MANAGE_SETTINGS")
def set_setting_route(key: str):
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict) or "value" not in data:
        return failure("value required", 400)
    try:
        settings_service.set_setting(db.session, key, data["value"])
        return success({"key": key, "value": settings_service.get_setting(db.session, key)})
    except PosError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update setting")
        return failure("Internal server error", 500)
