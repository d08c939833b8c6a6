# Overview: Concurrency helpers shared by every mutating service (row locks + retry).

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the version_id columns turn lost updates into StaleDataError.
    """
    return query.with_for_update()


def _retry_policy(attempts: int | None, backoff_base: float | None) -> tuple[int, float]:
    if has_app_context():
        config = current_app.config
        if attempts is None:
            attempts = config.get("DB_RETRY_ATTEMPTS", 3)
        if backoff_base is None:
            backoff_base = config.get("DB_RETRY_BACKOFF_SECONDS", 0.1)
    return attempts or 3, 0.1 if backoff_base is None else backoff_base


def run_with_retry(session, func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). func is re-run from scratch, so every
    validation inside it is re-evaluated against fresh rows.

    Any other exception rolls the session back and propagates unchanged.
    """
    attempts, backoff_base = _retry_policy(attempts, backoff_base)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            session.rollback()
            raise
    if last_exc:
        raise last_exc
