# Overview: Request and permission decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request


def _request_user_id() -> int | None:
    """
    Acting user for the request.

    Authentication lives outside this service; the caller passes the user id
    in the X-User-Id header or the JSON body.
    """
    raw = request.headers.get("X-User-Id")
    if raw is None:
        data = request.get_json(silent=True) or {}
        raw = data.get("user_id") if isinstance(data, dict) else None
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def require_permission(permission_code: str):
    """
    Require a capability flag from the configured permission checker.

    PERMISSION_CHECKER is a callable (user_id, permission_code) -> bool.
    When unset every request is allowed.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            g.user_id = _request_user_id()
            checker = current_app.config.get("PERMISSION_CHECKER")
            if checker is not None and not checker(g.user_id, permission_code):
                current_app.logger.warning(
                    "Permission denied: user=%s permission=%s path=%s",
                    g.user_id, permission_code, request.path,
                )
                return jsonify({
                    "success": False,
                    "error": "Permission denied",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
