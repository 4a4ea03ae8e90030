# Overview: Row locking and bounded retry helpers shared by the sale pipeline services.

from __future__ import annotations

import logging
import time

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Callers that must be exactly-once on SQLite also rely on version_id_col.
    """
    return query.with_for_update()


def _retry_settings(attempts: int | None, backoff_base: float | None) -> tuple[int, float]:
    if has_app_context():
        if attempts is None:
            attempts = current_app.config.get("DB_RETRY_ATTEMPTS")
        if backoff_base is None:
            backoff_base = current_app.config.get("DB_RETRY_BACKOFF")
    return max(int(attempts or 3), 1), float(0.1 if backoff_base is None else backoff_base)


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks, timeouts) and
    StaleDataError (optimistic locking conflicts). Every other exception,
    including business rule errors, propagates on the first attempt.
    """
    attempts, backoff_base = _retry_settings(attempts, backoff_base)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except TRANSIENT_ERRORS as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "Transient database error (attempt %d/%d): %s",
                attempt + 1, attempts, type(exc).__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc
