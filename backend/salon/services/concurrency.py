# Overview: Transaction and locking helpers shared by the sale services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking to a read that precedes a write.

    Stock and customer aggregates are read-modify-written; FOR UPDATE makes a
    concurrent sale on the same product/customer wait for this transaction.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; the version_id columns on
    Product/Customer/Sale still turn a lost update into StaleDataError,
    which run_with_retry handles.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). func must reload everything it touches.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run func as one unit of work: commit on success, roll back on any error.

    Business errors (SaleError subclasses) propagate after rollback without
    retry; concurrency conflicts are retried via run_with_retry.
    """
    def _op():
        try:
            result = func()
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
