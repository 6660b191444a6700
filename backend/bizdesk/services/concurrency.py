# Overview: Transaction boundaries, row locking and retry for contended writes.

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError
from ..extensions import db

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; atomic() takes the database
    write lock up front there instead. Other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def atomic():
    """
    One all-or-nothing unit of work on db.session.

    Commits when the block exits normally. Any exception (business error,
    stale version, driver failure) rolls back everything the block wrote
    and propagates.

    On SQLite the block starts with BEGIN IMMEDIATE so concurrent writers
    serialize on the database lock rather than interleaving read-check-write.
    """
    try:
        if db.engine.dialect.name == "sqlite":
            db.session.execute(text("BEGIN IMMEDIATE"))
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). The whole unit is re-run from the start,
    so every read is fresh. When attempts are exhausted the failure surfaces
    as ConflictError, which callers may retry later.
    """
    if attempts is None:
        attempts = current_app.config.get("SALE_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("SALE_RETRY_BACKOFF", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.warning("Giving up after %d attempts: %s", attempts, exc)
                raise ConflictError(
                    "Concurrent modification detected, please retry",
                    details={"attempts": attempts},
                ) from exc
            logger.info("Retrying after concurrency failure (attempt %d): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
