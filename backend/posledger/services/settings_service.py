from __future__ import annotations

from typing import Any

from ..models import Setting
from ..time_utils import utcnow
from ..validation import ValidationError
from .concurrency import atomic
from .invoice_service import INVOICE_SEQ_KEY_PREFIX


class SettingsError(ValidationError):
    pass


def _normalize_key(key: Any) -> str:
    if not isinstance(key, str) or not key.strip():
        raise SettingsError("setting key required")
    key = key.strip()
    if len(key) > 128:
        raise SettingsError("setting key exceeds max length 128")
    if key.startswith(INVOICE_SEQ_KEY_PREFIX):
        raise SettingsError("Invoice counters are managed by the system")
    return key


def _normalize_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def get_setting(session, key: str, default: str | None = None) -> str | None:
    row = session.query(Setting).filter_by(key=key).first()
    if row is None or row.value is None:
        return default
    return row.value


def get_all_settings(session) -> dict[str, str | None]:
    rows = session.query(Setting).order_by(Setting.key.asc()).all()
    return {row.key: row.value for row in rows}


def _upsert(session, key: str, value: str | None) -> None:
    row = session.query(Setting).filter_by(key=key).first()
    if row is None:
        session.add(Setting(key=key, value=value))
    else:
        row.value = value
        row.updated_at = utcnow()


def set_setting(session, key: str, value: Any) -> None:
    key = _normalize_key(key)
    with atomic(session):
        _upsert(session, key, _normalize_value(value))


def set_many_settings(session, entries: dict[str, Any]) -> int:
    """Write several settings in one transaction; all or none."""
    if not isinstance(entries, dict) or not entries:
        raise SettingsError("settings payload must be a non-empty object")

    normalized = {_normalize_key(k): _normalize_value(v) for k, v in entries.items()}
    with atomic(session):
        for key, value in normalized.items():
            _upsert(session, key, value)
    return len(normalized)
