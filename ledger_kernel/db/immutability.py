"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

A ledger is append-only.  Posted entries are never edited or deleted: the
only correction is to VOID them (keeping the row for audit) and post new
entries.  A finalized reconciliation is a signed-off statement of fact and
cannot drift afterwards.

The entry store exposes no delete operation at all; these listeners catch
everything that goes around the services through the ORM.

    session.flush()
         |
         v
    [before_flush]  --> deleted LedgerEntry / Account / frozen recon rows
         |                                   --> ImmutabilityViolationError
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Rule
--------------------|--------------------------------------------------------
LedgerEntry         | Never deleted.  Only POSTED -> VOID with void_* fields
Account             | Never deleted.  code/account_type/normal_balance frozen
                    | once any entry references the account
Reconciliation      | Frozen once FINALIZED (no update, no delete)
ReconciliationLine  | Frozen once its reconciliation is FINALIZED

updated_at is audit metadata and may always change.

===============================================================================
USAGE
===============================================================================

    from ledger_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to bypass the rules call unregister_immutability_listeners().
"""

from sqlalchemy import event, exists, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.domain.values import EntryStatus, ReconciliationStatus
from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Columns that may change when an entry is voided
VOID_FIELDS = frozenset({"status", "void_reason", "voided_by", "voided_at"})

# Always allowed to change
AUDIT_FIELDS = frozenset({"updated_at"})

ACCOUNT_STRUCTURAL_FIELDS = frozenset({"code", "account_type", "normal_balance"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
            **extra,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type, entity_id=str(entity_id), reason=reason
    )


def _old_value(target, key: str):
    """Value as loaded from the database, before pending changes."""
    history = get_history(target, key)
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return getattr(target, key)


def _changed_fields(target) -> list[str]:
    from sqlalchemy import inspect

    return [
        attr.key
        for attr in inspect(target).attrs
        if attr.key not in AUDIT_FIELDS and attr.history.has_changes()
    ]


def _reconciliation_is_finalized(connection, reconciliation_id) -> bool:
    from ledger_kernel.models.reconciliation import Reconciliation

    status = connection.execute(
        select(Reconciliation.status).where(Reconciliation.id == reconciliation_id)
    ).scalar_one_or_none()
    return status == ReconciliationStatus.FINALIZED


def _check_deletions_before_flush(session, flush_context, instances):
    """
    Block deletes of ledger rows before the flush plan is built.

    Mapper-level before_delete fires after the flush plan is fixed, so
    deletions are inspected here instead.
    """
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.ledger_entry import LedgerEntry
    from ledger_kernel.models.reconciliation import Reconciliation, ReconciliationLine

    for obj in list(session.deleted):
        if isinstance(obj, LedgerEntry):
            raise _blocked(
                "LedgerEntry", obj.id, "DELETE",
                "Ledger entries are never deleted; void the entry instead",
            )
        if isinstance(obj, Account):
            raise _blocked(
                "Account", obj.code, "DELETE",
                "Accounts are never deleted; deactivate the account instead",
            )
        if isinstance(obj, Reconciliation) and _old_value(obj, "status") == ReconciliationStatus.FINALIZED:
            raise _blocked(
                "Reconciliation", obj.id, "DELETE",
                "Finalized reconciliations are immutable",
            )
        if isinstance(obj, ReconciliationLine):
            with session.no_autoflush:
                finalized = _reconciliation_is_finalized(
                    session.connection(), obj.reconciliation_id
                )
            if finalized:
                raise _blocked(
                    "ReconciliationLine", obj.id, "DELETE",
                    "Lines of a finalized reconciliation are immutable",
                )


def _check_ledger_entry_immutability(mapper, connection, target):
    """
    Allow exactly one mutation of a ledger entry: POSTED -> VOID.

    Logic:
        1. status changing POSTED -> VOID: status and void_* may change.
        2. status changing any other way (VOID -> POSTED, ...): block.
        3. status unchanged: nothing but audit metadata may change.
    """
    status_history = get_history(target, "status")
    allowed = AUDIT_FIELDS
    if status_history.deleted:
        old_status = status_history.deleted[0]
        if old_status == EntryStatus.POSTED and target.status == EntryStatus.VOID:
            allowed = AUDIT_FIELDS | VOID_FIELDS
        else:
            raise _blocked(
                "LedgerEntry", target.id, "UPDATE",
                f"Illegal status transition {old_status} -> {target.status}",
            )

    for field in _changed_fields(target):
        if field not in allowed:
            raise _blocked(
                "LedgerEntry", target.id, "UPDATE",
                f"Cannot modify field '{field}' on a ledger entry",
                field=field,
            )


def _check_account_structural_immutability(mapper, connection, target):
    """code, account_type and normal_balance are frozen once referenced."""
    from ledger_kernel.models.ledger_entry import LedgerEntry

    changed = sorted(
        field for field in ACCOUNT_STRUCTURAL_FIELDS
        if get_history(target, field).has_changes()
    )
    if not changed:
        return

    original_code = _old_value(target, "code")
    referenced = connection.execute(
        select(exists().where(LedgerEntry.account_code == original_code))
    ).scalar()
    if referenced:
        raise _blocked(
            "Account", original_code, "UPDATE",
            f"Cannot modify structural field(s) {changed} on an account "
            "referenced by ledger entries",
            fields=changed,
        )


def _check_reconciliation_immutability(mapper, connection, target):
    if _old_value(target, "status") != ReconciliationStatus.FINALIZED:
        return
    changed = _changed_fields(target)
    if changed:
        raise _blocked(
            "Reconciliation", target.id, "UPDATE",
            "Finalized reconciliations are immutable",
            fields=changed,
        )


def _check_reconciliation_line_immutability(mapper, connection, target):
    changed = _changed_fields(target)
    if not changed:
        return
    if _reconciliation_is_finalized(connection, _old_value(target, "reconciliation_id")):
        raise _blocked(
            "ReconciliationLine", target.id, "UPDATE",
            "Lines of a finalized reconciliation are immutable",
            fields=changed,
        )


def _listeners():
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.ledger_entry import LedgerEntry
    from ledger_kernel.models.reconciliation import Reconciliation, ReconciliationLine

    return [
        (Session, "before_flush", _check_deletions_before_flush),
        (LedgerEntry, "before_update", _check_ledger_entry_immutability),
        (Account, "before_update", _check_account_structural_immutability),
        (Reconciliation, "before_update", _check_reconciliation_immutability),
        (ReconciliationLine, "before_update", _check_reconciliation_line_immutability),
    ]


def register_immutability_listeners():
    """
    Register all immutability listeners.  Safe to call more than once.

    Call after the models are importable and before any session is used.
    """
    for target, name, fn in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


def unregister_immutability_listeners():
    """
    Remove the listeners.

    WARNING: only for tests that must violate the rules on purpose.
    """
    for target, name, fn in _listeners():
        if event.contains(target, name, fn):
            event.remove(target, name, fn)
