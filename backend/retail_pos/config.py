# backend/retail_pos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retail_pos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retail_pos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Bounded retry for transient DB failures (locks, deadlocks, stale versions)
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.1"))

    # Fresh invoice numbers drawn when the unique index rejects one
    INVOICE_RETRY_ATTEMPTS = int(os.environ.get("INVOICE_RETRY_ATTEMPTS", "3"))

    # Audit events are queued and written by a background thread unless disabled
    AUDIT_ASYNC = _env_bool("AUDIT_ASYNC", True)
    AUDIT_QUEUE_SIZE = int(os.environ.get("AUDIT_QUEUE_SIZE", "1000"))
