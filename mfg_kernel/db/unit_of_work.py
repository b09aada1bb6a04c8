"""
Module: mfg_kernel.db.unit_of_work
Responsibility: Re-entrant commit-or-rollback boundary for service operations,
    translating optimistic lock failures into the typed kernel exception, and
    deferring post-commit side effects (business events) until the outermost
    boundary has committed.
Architecture position: Kernel > DB.

Invariants enforced:
    - Only the outermost unit of work on a session commits or rolls back.
      A service operation invoked from inside another service operation
      joins the caller's transaction, so e.g. approving an MO from the
      approval workflow lands atomically with the approval request update.
    - A StaleDataError raised while flushing a versioned row surfaces as
      OptimisticLockError(entity_type, entity_id); the session is rolled
      back so no partial write of the losing operation survives.
    - Callbacks registered with ``after_commit`` run once, in registration
      order, after the outermost commit.  They are discarded on rollback.

Failure modes:
    - Any exception propagates after rollback at the outermost level.
      Nested levels re-raise without rolling back; the outermost level
      owns cleanup.
"""

from contextlib import contextmanager
from typing import Any, Callable, Generator

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from mfg_kernel.exceptions import OptimisticLockError
from mfg_kernel.logging_config import get_logger

logger = get_logger("db.unit_of_work")

_DEPTH_KEY = "mfg_uow_depth"
_AFTER_COMMIT_KEY = "mfg_after_commit"


def _run_after_commit(session: Session) -> None:
    callbacks = session.info.pop(_AFTER_COMMIT_KEY, [])
    for callback in callbacks:
        try:
            callback()
        except Exception:
            logger.warning("after_commit_callback_failed", exc_info=True)


@contextmanager
def unit_of_work(
    session: Session,
    entity_type: str = "entity",
    entity_id: Any = None,
) -> Generator[Session, None, None]:
    depth = session.info.get(_DEPTH_KEY, 0)
    session.info[_DEPTH_KEY] = depth + 1
    outermost = depth == 0
    committed = False
    try:
        yield session
        if outermost:
            session.commit()
            committed = True
        else:
            session.flush()
    except StaleDataError as exc:
        if outermost:
            session.rollback()
            session.info.pop(_AFTER_COMMIT_KEY, None)
        logger.warning(
            "optimistic_lock_conflict",
            extra={"entity_type": entity_type, "entity_id": str(entity_id)},
        )
        raise OptimisticLockError(entity_type, entity_id) from exc
    except Exception:
        if outermost:
            session.rollback()
            session.info.pop(_AFTER_COMMIT_KEY, None)
        raise
    finally:
        session.info[_DEPTH_KEY] = depth

    if committed:
        _run_after_commit(session)


def in_unit_of_work(session: Session) -> bool:
    """True when called from inside another service operation."""
    return session.info.get(_DEPTH_KEY, 0) > 0


def after_commit(session: Session, callback: Callable[[], None]) -> None:
    """Run ``callback`` once the enclosing transaction commits.

    Outside any unit of work the callback runs immediately.
    """
    if in_unit_of_work(session):
        session.info.setdefault(_AFTER_COMMIT_KEY, []).append(callback)
    else:
        callback()
