# Overview: Row locking and unit-of-work helpers shared by the financial services.

from __future__ import annotations

from functools import wraps

from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConflictError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def unit_of_work(func):
    """
    Run a service operation as one all-or-nothing transaction.

    Any exception rolls back everything the operation flushed. There is no
    retry: every caller of this is a financial write where replaying could
    double-charge or double-number. Optimistic-lock failures surface as
    ConflictError so the caller can reload and decide.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except StaleDataError as exc:
            db.session.rollback()
            raise ConflictError("Record was modified concurrently; reload and retry") from exc
        except Exception:
            db.session.rollback()
            raise
    return wrapper
