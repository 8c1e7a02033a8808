"""
BaseService -- abstract base for all write-side services.

Every service receives the caller's Session and uses ``session.flush()``
and savepoints (``session.begin_nested()``), never ``session.commit()``.
The caller's unit of work (ledger_kernel.services.unit_of_work or the
route handler) owns commit and rollback, so a multi-step operation such
as record_entry is all-or-nothing.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base
from ledger_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Contract:
        Persists within the active transaction.  Never commits or rolls
        back the outer transaction.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
