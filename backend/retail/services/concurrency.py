# Overview: Service-layer operations for concurrency; row locks, SQLite write serialization, retry.

from __future__ import annotations

import time

from flask import current_app, has_app_context
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_immediate_if_sqlite()
    serializes writers there instead.
    """
    return query.with_for_update()


def begin_immediate_if_sqlite(session=None) -> None:
    """
    On SQLite, take the database write lock at transaction start.

    Two read-modify-write transactions on the same stock row would otherwise
    both read the old quantity before either writes.
    """
    session = session or db.session
    if session.get_bind().dialect.name != "sqlite":
        return
    dbapi_connection = session.connection().connection.dbapi_connection
    if not dbapi_connection.in_transaction:
        session.execute(text("BEGIN IMMEDIATE"))


def _retry_policy() -> tuple[int, float]:
    if has_app_context():
        return (
            int(current_app.config.get("TX_RETRY_ATTEMPTS", 3)),
            float(current_app.config.get("TX_RETRY_BACKOFF", 0.1)),
        )
    return 3, 0.1


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Business errors are never retried.
    """
    default_attempts, default_backoff = _retry_policy()
    attempts = attempts or default_attempts
    backoff_base = default_backoff if backoff_base is None else backoff_base

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying after concurrency conflict (attempt %s/%s): %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
