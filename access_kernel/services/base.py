"""
BaseService -- abstract base for hub services that write.

Responsibility:
    Common constructor and session contract.  Concrete services receive a
    SQLAlchemy ``Session`` and persist with ``session.flush()``.

Invariants enforced:
    Transaction boundaries -- services flush within the caller's
    transaction.  ``ApprovalRequestService`` may additionally commit via
    ``_commit()`` when it was constructed with ``auto_commit=True``.
    Side effects registered with ``_after_commit()`` never run before the
    state change they report is committed.
"""

from abc import ABC
from collections.abc import Callable

from sqlalchemy.orm import Session

from access_kernel.db.engine import defer_until_commit


class BaseService(ABC):
    """
    Abstract base class for hub services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.
    """

    def __init__(self, session: Session, auto_commit: bool = False):
        self.session = session
        self._auto_commit = auto_commit

    def _commit(self) -> None:
        """Commit when auto-committing, otherwise just flush."""
        if self._auto_commit:
            self.session.commit()
        else:
            self.session.flush()

    def _after_commit(self, effect: Callable[[], None]) -> None:
        """Run ``effect`` now if ``_commit()`` committed, else once the caller commits."""
        if self._auto_commit:
            effect()
        else:
            defer_until_commit(self.session, effect)
