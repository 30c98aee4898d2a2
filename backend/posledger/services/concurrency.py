# Overview: Transaction helpers shared by every mutating service.

from __future__ import annotations

from contextlib import contextmanager


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def atomic(session):
    """
    One unit of work: commit when the block finishes, roll back on any exception.

    Nothing written inside the block is visible afterwards unless every
    statement in it succeeded. Lock contention that outlasts SQLite's
    busy_timeout surfaces as OperationalError; retrying is up to the caller.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
