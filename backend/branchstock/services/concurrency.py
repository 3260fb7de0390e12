# Overview: Service-layer operations for concurrency; encapsulates business logic and database work.

from __future__ import annotations

import logging
import time

from flask import current_app, has_app_context
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import WriteConflictError
from ..extensions import db


logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _configured_attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("WRITE_RETRY_ATTEMPTS", DEFAULT_ATTEMPTS))
    return DEFAULT_ATTEMPTS


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic version_id check failed). Any other exception rolls the
    session back and propagates unchanged so no partial write survives.

    After the last attempt the conflict is surfaced as WriteConflictError.
    """
    if attempts is None:
        attempts = _configured_attempts()
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.warning("write conflict not resolved after %s attempts: %s", attempts, exc)
                raise WriteConflictError(details={"attempts": attempts}) from exc
            logger.warning("write conflict on attempt %s/%s, retrying: %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
