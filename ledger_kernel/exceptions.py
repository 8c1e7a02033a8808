"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (payment handlers, webhook adapters, the reconciliation
screens) have to react differently to "you sent a bad request", "that thing
does not exist" and "that thing is in the wrong state". Parsing message text
for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        service.record_entry(request)
    except InvalidStateError as e:
        return api_response(status=409, code=e.code)
    except NotFoundError as e:
        return api_response(status=404, code=e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidSideError
    |   +-- UnbalancedEntryError
    |   +-- DuplicateAccountError
    |   +-- StatementParseError
    |   +-- ConfigurationError
    |
    +-- NotFoundError
    |   +-- UnknownAccountError
    |   +-- EntryNotFoundError
    |   +-- ReconciliationNotFoundError
    |   +-- ReconciliationLineNotFoundError
    |   +-- BankAccountNotFoundError
    |   +-- VendorNotFoundError
    |   +-- ScheduledChargeNotFoundError
    |
    +-- MismatchError
    |
    +-- InvalidStateError
    |   +-- ReconciliationFinalizedError
    |   +-- LineAlreadyMatchedError
    |   +-- LineStateError
    |   +-- UnmatchedLinesRemainError
    |   +-- EntryAlreadyVoidError
    |   +-- TransferNotInFlightError
    |
    +-- IdempotencyConflictError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|------------------------------------
Validation   | VALIDATION_ERROR              | Required field missing for the op
             | INVALID_AMOUNT                | Amount <= 0, float, not a number
             | INVALID_SIDE                  | DR spec not DR / CR spec not CR
             | UNBALANCED_ENTRY              | Debits != Credits
             | DUPLICATE_ACCOUNT             | Account code already exists
             | STATEMENT_PARSE_ERROR         | Bank CSV unusable
             | CONFIGURATION_ERROR           | Invalid settings file
-------------|-------------------------------|------------------------------------
Not found    | UNKNOWN_ACCOUNT               | Code not in the chart of accounts
             | ENTRY_NOT_FOUND               | Ledger entry id unknown
             | RECONCILIATION_NOT_FOUND      | Reconciliation id unknown
             | RECONCILIATION_LINE_NOT_FOUND | Line id unknown
             | BANK_ACCOUNT_NOT_FOUND        | Bank account id unknown
             | VENDOR_NOT_FOUND              | Vendor id unknown
             | SCHEDULED_CHARGE_NOT_FOUND    | Scheduled charge id unknown
-------------|-------------------------------|------------------------------------
Mismatch     | MISMATCH                      | Line belongs to another recon
-------------|-------------------------------|------------------------------------
State        | RECONCILIATION_FINALIZED      | Finalized reconciliations are frozen
             | LINE_ALREADY_MATCHED          | Line is not UNMATCHED
             | LINE_STATE                    | Line in wrong state for the op
             | UNMATCHED_LINES_REMAIN        | Finalize with open lines
             | ENTRY_ALREADY_VOID            | Voiding a VOID entry
             | TRANSFER_NOT_IN_FLIGHT        | Settle/reverse with nothing pending
-------------|-------------------------------|------------------------------------
Idempotency  | IDEMPOTENCY_CONFLICT          | Same key, different entry fields
-------------|-------------------------------|------------------------------------
Immutability | IMMUTABILITY_VIOLATION        | Delete/modify of a frozen record

===============================================================================
PROPAGATION
===============================================================================

All of these are raised synchronously and must abort the enclosing unit of
work. The kernel never retries and never catches them to continue; safety
under caller retries comes from idempotency keys, not from error handling.
"""


class LedgerError(Exception):
    """
    Base exception for all ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_ERROR"


# Validation


class ValidationError(LedgerError):
    """A request is missing a field or carries an invalid value."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidAmountError(ValidationError):
    """Amount is not a positive decimal."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: object, reason: str):
        self.amount = str(amount)
        self.reason = reason
        super().__init__(f"Invalid amount {amount!r}: {reason}", field="amount")


class InvalidSideError(ValidationError):
    """Debit spec is not DR, or credit spec is not CR."""

    code: str = "INVALID_SIDE"

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Expected {expected} entry, got {actual}", field="debit_credit"
        )


class UnbalancedEntryError(ValidationError):
    """Total debits do not equal total credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: str, credits: str):
        self.debits = debits
        self.credits = credits
        super().__init__(f"Entry is unbalanced: debits={debits}, credits={credits}")


class DuplicateAccountError(ValidationError):
    """An account with this code already exists."""

    code: str = "DUPLICATE_ACCOUNT"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account already exists: {account_code}", field="code")


class StatementParseError(ValidationError):
    """A bank statement file could not be turned into lines."""

    code: str = "STATEMENT_PARSE_ERROR"

    def __init__(self, message: str, row_number: int | None = None):
        self.row_number = row_number
        super().__init__(message)


class ConfigurationError(ValidationError):
    """Ledger settings are missing or malformed."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        super().__init__(message)


# Not found


class NotFoundError(LedgerError):
    """A referenced record does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


class UnknownAccountError(NotFoundError):
    """Posting references a code that is not in the chart of accounts."""

    code: str = "UNKNOWN_ACCOUNT"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__("Account", account_code)


class EntryNotFoundError(NotFoundError):
    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        super().__init__("LedgerEntry", entry_id)


class ReconciliationNotFoundError(NotFoundError):
    code: str = "RECONCILIATION_NOT_FOUND"

    def __init__(self, reconciliation_id: str):
        super().__init__("Reconciliation", reconciliation_id)


class ReconciliationLineNotFoundError(NotFoundError):
    code: str = "RECONCILIATION_LINE_NOT_FOUND"

    def __init__(self, line_id: str):
        super().__init__("ReconciliationLine", line_id)


class BankAccountNotFoundError(NotFoundError):
    code: str = "BANK_ACCOUNT_NOT_FOUND"

    def __init__(self, bank_account_id: str):
        super().__init__("BankAccount", bank_account_id)


class VendorNotFoundError(NotFoundError):
    code: str = "VENDOR_NOT_FOUND"

    def __init__(self, vendor_id: str):
        super().__init__("Vendor", vendor_id)


class ScheduledChargeNotFoundError(NotFoundError):
    code: str = "SCHEDULED_CHARGE_NOT_FOUND"

    def __init__(self, charge_id: str):
        super().__init__("ScheduledCharge", charge_id)


# Mismatch


class MismatchError(LedgerError):
    """A reconciliation line does not belong to the stated reconciliation."""

    code: str = "MISMATCH"

    def __init__(self, line_id: str, reconciliation_id: str, actual_reconciliation_id: str):
        self.line_id = str(line_id)
        self.reconciliation_id = str(reconciliation_id)
        self.actual_reconciliation_id = str(actual_reconciliation_id)
        super().__init__(
            f"Line {line_id} does not belong to reconciliation {reconciliation_id}"
        )


# State


class InvalidStateError(LedgerError):
    """The target record is in a state that forbids the operation."""

    code: str = "INVALID_STATE"

    def __init__(self, message: str, current_state: str | None = None):
        self.current_state = current_state
        super().__init__(message)


class ReconciliationFinalizedError(InvalidStateError):
    """Finalized reconciliations are immutable."""

    code: str = "RECONCILIATION_FINALIZED"

    def __init__(self, reconciliation_id: str):
        self.reconciliation_id = str(reconciliation_id)
        super().__init__(
            f"Reconciliation {reconciliation_id} is finalized; "
            "finalized reconciliations are immutable",
            current_state="FINALIZED",
        )


class LineAlreadyMatchedError(InvalidStateError):
    code: str = "LINE_ALREADY_MATCHED"

    def __init__(self, line_id: str, current_state: str):
        self.line_id = str(line_id)
        super().__init__(
            f"Line {line_id} is already matched", current_state=current_state
        )


class LineStateError(InvalidStateError):
    """Line is not in the state the requested transition starts from."""

    code: str = "LINE_STATE"

    def __init__(self, line_id: str, current_state: str, required_state: str):
        self.line_id = str(line_id)
        self.required_state = required_state
        super().__init__(
            f"Line {line_id} is {current_state}, expected {required_state}",
            current_state=current_state,
        )


class UnmatchedLinesRemainError(InvalidStateError):
    code: str = "UNMATCHED_LINES_REMAIN"

    def __init__(self, reconciliation_id: str, unmatched_count: int):
        self.reconciliation_id = str(reconciliation_id)
        self.unmatched_count = unmatched_count
        super().__init__(
            f"Cannot finalize reconciliation {reconciliation_id}: "
            f"{unmatched_count} unmatched line(s) remain",
            current_state="IN_PROGRESS",
        )


class EntryAlreadyVoidError(InvalidStateError):
    code: str = "ENTRY_ALREADY_VOID"

    def __init__(self, entry_id: str):
        self.entry_id = str(entry_id)
        super().__init__(f"Entry {entry_id} is already void", current_state="VOID")


class TransferNotInFlightError(InvalidStateError):
    """Settle or reverse requested for a transfer with no pending initiation."""

    code: str = "TRANSFER_NOT_IN_FLIGHT"

    def __init__(self, reference: str, current_state: str):
        self.reference = reference
        super().__init__(
            f"Transfer {reference} is not in flight (state: {current_state})",
            current_state=current_state,
        )


# Idempotency


class IdempotencyConflictError(LedgerError):
    """
    An explicit idempotency key was reused for a different entry.

    The stored entry wins; the new request is rejected rather than silently
    returning a row that does not match what the caller asked for.
    """

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, existing_entry_id: str, field: str):
        self.idempotency_key = idempotency_key
        self.existing_entry_id = str(existing_entry_id)
        self.field = field
        super().__init__(
            f"Idempotency key {idempotency_key} already used by entry "
            f"{existing_entry_id} with a different {field}"
        )


# Immutability


class ImmutabilityViolationError(LedgerError):
    """Attempt to delete or modify a record that is frozen."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
