from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999


class PosError(Exception):
    """Base for business-rule failures reported back to the caller."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PosError, ValueError):
    """400-level input problem, raised before any transaction opens."""


class StateError(PosError):
    """Precondition failed inside the transaction (wrong status, not enough stock)."""


class NotFoundError(PosError):
    """Referenced record does not exist."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return coerce_int(value, field)


def coerce_cents(value: Any, field: str, *, allow_negative: bool = False) -> int:
    cents = coerce_int(value, field)
    if not allow_negative and cents < 0:
        raise ValidationError(f"{field} must be >= 0")
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    return cents


def coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def require_text(value: Any, field: str) -> str:
    text = coerce_text(value)
    if text is None:
        raise ValidationError(f"{field} required")
    return text


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_stock_adjust(patch: dict) -> None:
    # Any signed delta is accepted; only the operator's reason is mandatory
    if not patch.get("notes"):
        raise ValidationError("notes required for stock adjustment")


def enforce_rules_stock_transfer(patch: dict) -> None:
    if patch["quantity"] <= 0:
        raise ValidationError("quantity must be > 0 for transfer")
    if patch["from_branch_id"] == patch["to_branch_id"]:
        raise ValidationError("Cannot transfer to the same branch")
