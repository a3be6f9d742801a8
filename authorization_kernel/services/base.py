"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer, plus ``storage_operation``, the one
    place where SQLAlchemy errors are turned into ``StorageFailure``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Services flush within the caller's transaction and never commit or
    roll back themselves.  The caller (AuthorizationService or a test
    harness) owns commit/rollback.

Failure modes:
    - Any ``SQLAlchemyError`` escaping a wrapped block is logged at ERROR
      with traceback and re-raised as ``StorageFailure``.  OperationalError
      (lock timeouts, deadlocks, serialization failures, SQLite busy) is
      marked retryable.
"""

from abc import ABC
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from authorization_kernel.db.base import Base
from authorization_kernel.exceptions import StorageFailure
from authorization_kernel.logging_config import get_logger

logger = get_logger("services.storage")

ModelType = TypeVar("ModelType", bound=Base)

# Recorded as created_by_id when a write arrives without an actor
SYSTEM_ACTOR_ID = UUID(int=0)


@contextmanager
def storage_operation(
    operation: str, entity: str, entity_id: Any = None
) -> Generator[None, None, None]:
    """Wrap a block of persistence calls; SQLAlchemy errors become StorageFailure."""
    try:
        yield
    except SQLAlchemyError as exc:
        retryable = isinstance(exc, OperationalError)
        logger.error(
            "storage_failure",
            extra={
                "operation": operation,
                "entity": entity,
                "entity_id": str(entity_id) if entity_id is not None else None,
                "retryable": retryable,
                "error_type": type(exc).__name__,
            },
            exc_info=True,
        )
        raise StorageFailure(
            operation,
            entity,
            entity_id=entity_id,
            detail=str(exc.orig) if getattr(exc, "orig", None) is not None else str(exc),
            retryable=retryable,
        ) from exc


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide listing queries -- those belong in
          ``authorization_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
