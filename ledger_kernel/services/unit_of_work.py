"""
Unit of work -- one database transaction around a piece of ledger work.

    with ledger_unit_of_work() as uow:
        uow.post_double_entry(debit, credit)
        ReconciliationService(uow.session, uow.clock).record_entry(request)

Acquires a session, hands the caller a bound posting API, commits on normal
exit, rolls back on any exception (re-raised) and closes the session on
every path.  with_ledger_transaction(fn) is the callback form: fn receives
the session and a post_entry function.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from ledger_kernel.db.engine import session_scope
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import DoubleEntryResult, EntrySpec, PostedEntry
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.posting_engine import LedgerTransaction, PostingEngine

logger = get_logger("services.unit_of_work")

T = TypeVar("T")


@dataclass
class LedgerUnitOfWork:
    session: Session
    clock: Clock
    engine: PostingEngine

    def post_entry(self, spec: EntrySpec) -> PostedEntry:
        return self.engine.post_entry(spec)

    def post_double_entry(
        self, debit: EntrySpec, credit: EntrySpec, idempotency_key: str | None = None
    ) -> DoubleEntryResult:
        return self.engine.post_double_entry(debit, credit, idempotency_key)


@contextmanager
def ledger_unit_of_work(
    session_factory: sessionmaker[Session] | None = None,
    clock: Clock | None = None,
) -> Iterator[LedgerUnitOfWork]:
    """
    Postconditions:
        Normal exit commits.  Any exception rolls the whole unit back, and
        is re-raised.  The session is closed either way.
    """
    clock = clock or SystemClock()
    with session_scope(session_factory) as session:
        yield LedgerUnitOfWork(session=session, clock=clock, engine=PostingEngine(session, clock))


def with_ledger_transaction(
    fn: Callable[[Session, Callable[[EntrySpec], PostedEntry]], T],
    session_factory: sessionmaker[Session] | None = None,
    clock: Clock | None = None,
) -> T:
    """
    Run fn(session, post_entry) in one committed-or-rolled-back transaction.

    Every entry fn posts shares one transaction_id, and together they must
    balance; an unbalanced set raises UnbalancedEntryError and nothing is
    committed.
    """
    with ledger_unit_of_work(session_factory, clock) as uow:
        with uow.engine.transaction() as txn:
            result = fn(uow.session, txn.post_entry)
        logger.info(
            "ledger_transaction_completed",
            extra={
                "transaction_id": str(txn.transaction_id),
                "entries": len(txn.entries),
            },
        )
        return result


__all__ = [
    "LedgerTransaction",
    "LedgerUnitOfWork",
    "ledger_unit_of_work",
    "with_ledger_transaction",
]
