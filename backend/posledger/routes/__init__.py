# backend/posledger/routes/__init__.py
from flask import jsonify

from ..validation import NotFoundError, PosError


def success(data=None, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def failure(message: str, status: int = 400, details: dict | None = None):
    body = {"success": False, "error": message}
    if details:
        body["details"] = details
    return jsonify(body), status


def error_response(exc: PosError):
    """Business-rule failure -> 404 for missing records, 400 otherwise."""
    status = 404 if isinstance(exc, NotFoundError) else 400
    return failure(exc.message, status, exc.details)


def int_arg(args, name: str, default: int | None = None) -> int | None:
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default
