# Overview: Service-layer helpers for locking, write transactions and retries.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import insert, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import LockTimeout
from ..settings import EngineSettings, resolve_settings


_CONTENTION_MARKERS = ("locked", "busy", "deadlock", "could not obtain lock", "lock timeout", "serialize")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    populate_existing() makes the locked read refresh rows already in the session.
    """
    return query.with_for_update().populate_existing()


def begin_write() -> None:
    """
    Take the database write lock at the start of a unit of work.

    SQLite has no row locks, so writers serialize on BEGIN IMMEDIATE; the
    connection's busy timeout bounds the wait. Other dialects rely on
    lock_for_update() and this is a no-op.
    """
    if db.engine.dialect.name != "sqlite":
        return
    connection = db.session.connection()
    if not connection.connection.dbapi_connection.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def insert_if_absent(model, values: dict, index_elements: list[str]) -> None:
    """INSERT a row unless one with the same unique key exists (ON CONFLICT DO NOTHING)."""
    dialect = db.engine.dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    else:
        exists = db.session.query(model).filter_by(**{k: values[k] for k in index_elements}).first()
        if exists is None:
            db.session.execute(insert(model).values(**values))
        return
    stmt = dialect_insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    db.session.execute(stmt)


def _is_contention(exc: Exception) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    return any(marker in message for marker in _CONTENTION_MARKERS)


def run_with_retry(
    func,
    *,
    attempts: int | None = None,
    backoff_base: float = 0.05,
    settings: EngineSettings | None = None,
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on lock contention (OperationalError) and StaleDataError
    (optimistic locking conflicts). Any failure rolls the session back; once
    the attempts are spent the conflict surfaces as LockTimeout.
    """
    if attempts is None:
        attempts = resolve_settings(settings).lock_attempts
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if not _is_contention(exc):
                raise
            if attempt >= attempts - 1:
                current_app.logger.warning("Giving up after %s attempts: %s", attempts, exc)
                raise LockTimeout(
                    "Could not acquire lock, retry later",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
