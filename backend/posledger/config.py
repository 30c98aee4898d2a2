# backend/posledger/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///posledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Milliseconds SQLite waits on a locked database before raising
    SQLITE_BUSY_TIMEOUT_MS = int(os.environ.get("SQLITE_BUSY_TIMEOUT_MS", "5000"))

    # Sales may drive branch stock below zero (back-order tolerance).
    # Transfers always refuse to overdraw the source branch.
    ALLOW_NEGATIVE_STOCK_ON_SALE = _env_flag("ALLOW_NEGATIVE_STOCK_ON_SALE", True)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Callable (user_id, permission_code) -> bool; None allows everything
    PERMISSION_CHECKER = None


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"
