"""
Module: access_kernel.selectors.base
Responsibility: Base class for read-only query objects.

Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/.  Selectors never create, modify, or delete data.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller and
      never call add(), delete(), flush() or commit().
    - DTO return convention: selectors return frozen domain objects, not
      ORM instances.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """Selectors keep the caller's session and only read through it."""

    def __init__(self, session: Session):
        self.session = session
