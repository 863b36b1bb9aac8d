# Overview: Transaction boundary and row-locking helpers shared by the services.

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..validation import ServiceError, InternalError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the products.version_id check is what rejects a stale writer.

    populate_existing() makes the locked read overwrite any copy already in
    the identity map, so checks run against the row as locked.
    """
    return query.with_for_update().populate_existing()


def run_in_transaction(func, *, failure_message: str = "Database operation failed"):
    """
    Execute func as one unit of work: commit when it returns, roll back
    everything when it raises.

    ServiceError subclasses propagate unchanged so callers see the most
    specific failure kind. SQLAlchemy failures (constraint violations,
    lock timeouts, stale version rows) become InternalError. Nothing is
    retried.
    """
    try:
        result = func()
        db.session.commit()
        return result
    except ServiceError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise InternalError(failure_message) from exc
    except Exception:
        db.session.rollback()
        raise
