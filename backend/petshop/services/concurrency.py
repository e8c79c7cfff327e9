# Overview: Unit-of-work helpers; every stock-affecting operation runs inside run_in_transaction.

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, PersistenceError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() takes the
    database write lock up front there instead. populate_existing() makes sure
    an object already in the identity map is refreshed from the locked row.
    """
    return query.with_for_update().populate_existing()


def begin_write() -> None:
    """
    On SQLite, start the unit of work with BEGIN IMMEDIATE so the
    read-check-write sequence holds the write lock from the first read.
    """
    if db.engine.dialect.name != "sqlite":
        return
    db.session.flush()
    raw = db.session.connection().connection.dbapi_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_in_transaction(func):
    """
    Execute func as a single all-or-nothing unit of work.

    Commits on success. On any failure the whole unit is rolled back and the
    error re-raised; database errors are translated so raw driver errors never
    reach callers. Never retries; resubmission is up to the caller.
    """
    try:
        begin_write()
        result = func()
        db.session.commit()
        return result
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictError(
            "Record was modified concurrently; reload and resubmit",
            details={"reason": "stale_version"},
        ) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError(
            "Database operation failed",
            details={"error_type": type(exc).__name__},
        ) from exc
    except Exception:
        db.session.rollback()
        raise
