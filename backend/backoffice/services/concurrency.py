# Overview: Unit-of-work helpers; row locking, retry on concurrency failures, commit/rollback.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import ConflictError, PersistenceError

# Failures that mean "someone else got there first": redo the whole unit.
# OperationalError only qualifies when is_lock_conflict() says so.
RETRYABLE_ERRORS = (OperationalError, StaleDataError, ConflictError)

# SQLSTATE serialization_failure / deadlock_detected (PostgreSQL), 40001 also on MySQL
LOCK_CONFLICT_SQLSTATES = {"40001", "40P01"}
# MySQL deadlock / lock wait timeout
LOCK_CONFLICT_ERRNOS = {1205, 1213}
LOCK_CONFLICT_MESSAGES = ("database is locked", "database table is locked", "deadlock")


def is_lock_conflict(exc: OperationalError) -> bool:
    """True for lock, deadlock and serialization failures; False for other store errors."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in LOCK_CONFLICT_SQLSTATES:
        return True
    args = getattr(orig, "args", ()) or ()
    if args and args[0] in LOCK_CONFLICT_ERRNOS:
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(marker in message for marker in LOCK_CONFLICT_MESSAGES)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, OperationalError):
        return is_lock_conflict(exc)
    return isinstance(exc, RETRYABLE_ERRORS)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(
    func,
    *,
    attempts: int | None = None,
    backoff_base: float | None = None,
    operation: str = "operation",
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on lock, deadlock and serialization OperationalErrors,
    StaleDataError (optimistic locking conflicts) and ConflictError (stock
    CAS or document number collisions). Any other OperationalError is
    re-raised after rollback. The session is rolled back before each retry.
    Exhaustion is reported as ConflictError.
    """
    if attempts is None:
        attempts = current_app.config.get("RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("RETRY_BACKOFF_BASE", 0.05)

    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if not is_retryable(exc):
                raise
            last_exc = exc
            if attempt >= attempts - 1:
                break
            current_app.logger.warning(
                "%s hit a concurrency conflict (attempt %d/%d): %s",
                operation, attempt + 1, attempts, exc,
            )
            if backoff_base:
                time.sleep(backoff_base * (2 ** attempt))

    if isinstance(last_exc, ConflictError):
        raise last_exc
    raise ConflictError(
        f"{operation} could not complete because of concurrent updates",
        details={"attempts": attempts},
    ) from last_exc


def run_atomic(func, *, operation: str):
    """
    Run func as one unit of work: commit on success, roll back on any failure.

    Core errors (ValidationError, StateError, ...) propagate unchanged.
    Unexpected SQLAlchemy errors are logged and surfaced as an opaque
    PersistenceError so storage internals never reach callers.
    """
    def _unit():
        try:
            result = func()
            db.session.commit()
            return result
        except (StaleDataError, ConflictError):
            raise
        except SQLAlchemyError as exc:
            if isinstance(exc, OperationalError) and is_lock_conflict(exc):
                raise
            db.session.rollback()
            current_app.logger.exception("%s failed", operation)
            raise PersistenceError(f"{operation} failed") from exc
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_unit, operation=operation)
