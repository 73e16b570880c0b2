from __future__ import annotations

import time

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical reads.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Correctness never depends on the lock: every write that matters is a
    conditional update (see compare_and_swap).
    """
    return query.with_for_update()


def compare_and_swap(model, row_id: int, *, expected: dict, values: dict) -> bool:
    """
    UPDATE <model> SET <values> WHERE id = :row_id AND <expected columns match>.

    Returns True only if exactly one row was changed. The identity map is not
    synchronized; callers re-read what they need.
    """
    stmt = update(model).where(model.id == row_id)
    for key, value in expected.items():
        stmt = stmt.where(getattr(model, key) == value)
    stmt = stmt.values(**values).execution_options(synchronize_session=False)
    result = db.session.execute(stmt)
    return result.rowcount == 1


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, "database is locked") and
    StaleDataError.
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
