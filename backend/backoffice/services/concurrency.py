# Overview: Unit-of-work, row locking and retry helpers shared by every mutating service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Conflict
from ..extensions import db, events

_DEPTH_KEY = "backoffice.uow_depth"

RETRYABLE_ERRORS = (OperationalError, StaleDataError, Conflict)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the unit of work takes
    the database write lock up front instead (BEGIN IMMEDIATE).
    """
    return query.with_for_update()


def in_unit_of_work() -> bool:
    return bool(db.session.info.get(_DEPTH_KEY))


def _begin_immediate(session) -> None:
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_connection = session.connection().connection.dbapi_connection
    if not dbapi_connection.in_transaction:
        session.execute(text("BEGIN IMMEDIATE"))


def run_in_transaction(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute ``func`` as one all-or-nothing unit of work.

    - Commits when ``func`` returns, rolls back on any exception
    - Retries on OperationalError (lock/statement timeouts, deadlocks),
      StaleDataError (optimistic version conflicts) and retryable Conflict
    - Raises Conflict(retryable) once the attempts are exhausted
    - Publishes staged side-channel events only after a successful commit

    Nested calls join the outer unit of work instead of committing early.
    """
    session = db.session
    if session.info.get(_DEPTH_KEY):
        return func()

    config = current_app.config
    if attempts is None:
        attempts = config.get("DB_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = config.get("DB_RETRY_BACKOFF", 0.05)

    for attempt in range(attempts):
        session.info[_DEPTH_KEY] = 1
        try:
            _begin_immediate(session)
            result = func()
            session.commit()
        except RETRYABLE_ERRORS as exc:
            session.rollback()
            events.discard_staged(session)
            if attempt >= attempts - 1:
                current_app.logger.warning("Unit of work gave up after %s attempts: %s", attempts, exc)
                if isinstance(exc, Conflict):
                    raise
                raise Conflict("Concurrent update detected, please retry") from exc
            time.sleep(backoff_base * (2 ** attempt))
            continue
        except Exception:
            session.rollback()
            events.discard_staged(session)
            raise
        finally:
            session.info.pop(_DEPTH_KEY, None)

        events.publish_staged(session)
        return result
