# Overview: Unit-of-work helpers; retries, row locking and SQLite write locks.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class PersistenceError(Exception):
    """Raised when the database refuses a unit of work after all retries."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def begin_immediate() -> None:
    """
    Take the SQLite write lock up front.

    Without it two checkouts can both read stock under a shared lock and the
    second one fails on upgrade with "database is locked" instead of waiting.
    No-op on other dialects and when a transaction is already open.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on: tuple = ()):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts), plus any extra exception types in
    retry_on (checkout passes IntegrityError for number collisions).

    The session is rolled back before every retry. Database errors that
    survive the last attempt surface as PersistenceError; domain errors
    raised by func propagate untouched.
    """
    retryable = (OperationalError, StaleDataError) + tuple(retry_on)
    for attempt in range(attempts):
        try:
            return func()
        except retryable as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.error(
                    "Unit of work failed after %s attempts: %s", attempts, exc.__class__.__name__
                )
                raise PersistenceError(
                    "Database operation failed after retries",
                    {"attempts": attempts, "error": exc.__class__.__name__},
                ) from exc
            current_app.logger.warning(
                "Retrying unit of work (attempt %s/%s) after %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(
                "Database operation failed",
                {"error": exc.__class__.__name__},
            ) from exc

