# Overview: Transaction scoping, row locking and storage error translation for the ledger services.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import LedgerError, StorageConflict, StorageUnavailable

_CONFLICT_MARKERS = ("locked", "busy", "deadlock", "could not serialize", "lock wait timeout")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write() takes the
    database write lock up front instead.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Start the unit of work as a writer.

    On SQLite this issues BEGIN IMMEDIATE so the write lock is held before
    any balance is read. Two concurrent sales of the same product therefore
    serialize instead of both passing the stock check. Other databases rely
    on lock_for_update() row locks.
    """
    session = db.session
    if session.get_bind().dialect.name != "sqlite":
        return
    driver_conn = session.connection().connection.driver_connection
    if not driver_conn.in_transaction:
        session.execute(text("BEGIN IMMEDIATE"))


def translate_storage_error(exc: SQLAlchemyError) -> LedgerError:
    """Map a SQLAlchemy failure onto StorageConflict / StorageUnavailable."""
    if isinstance(exc, StaleDataError):
        return StorageConflict("Record was modified concurrently", details={"cause": str(exc)})
    if isinstance(exc, OperationalError):
        message = str(exc.orig if exc.orig is not None else exc).lower()
        if any(marker in message for marker in _CONFLICT_MARKERS):
            return StorageConflict("Storage is busy, retry the operation", details={"cause": message})
    return StorageUnavailable("Storage operation failed", details={"cause": str(exc)})


@contextmanager
def write_transaction():
    """
    One atomic unit of work.

    Commits when the block finishes, rolls back on any exception so no
    partial state is ever persisted. Storage failures are re-raised as
    ledger errors; ledger errors pass through untouched.
    """
    try:
        begin_write()
        yield db.session
        db.session.commit()
    except LedgerError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise translate_storage_error(exc) from exc
    except BaseException:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Caller-side retry for operations that failed with StorageConflict.

    The services never call this themselves: each operation fully rolls back
    before raising, so re-running it cannot apply side effects twice.
    """
    for attempt in range(attempts):
        try:
            return func()
        except StorageConflict:
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
