# Overview: Transaction boundary, row locking and conflict retry for inventory actions.

from __future__ import annotations

import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import PersistenceError


@contextmanager
def unit_of_work():
    """
    All-or-nothing boundary for one inventory action.

    Item, batch, company and ledger writes made inside the block are flushed
    into the same DB transaction and committed together on exit. Any exception
    rolls back every write and propagates unchanged.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Item and Company rows also carry version_id, so SQLite still detects lost
    updates as StaleDataError.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a whole action with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Other persistence failures, and conflicts
    left after the last attempt, surface as PersistenceError. Business errors
    pass through untouched.
    """
    if attempts is None:
        attempts = current_app.config.get("PERSISTENCE_RETRY_ATTEMPTS", 3)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise PersistenceError(
                    "Could not apply the change because of concurrent updates",
                    {"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError("Database error while applying the change") from exc
