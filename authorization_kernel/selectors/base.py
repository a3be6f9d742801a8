"""
Module: authorization_kernel.selectors.base
Responsibility: Abstract base class for read-only query selectors.  Selectors
    are the query side of the kernel: structured read access to
    authorizations and utilization without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/ (DTOs and pure arithmetic only).  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller but MUST NOT
      call session.add(), session.delete(), session.commit(), or session.flush().
    - DTO return convention: selectors return frozen dataclasses, never ORM
      instances.
    - Session ownership: the caller owns the session and its transaction scope.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from authorization_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session
