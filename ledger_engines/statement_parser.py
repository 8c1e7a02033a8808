"""
Module: ledger_engines.statement_parser
Responsibility:
    Turn a bank's CSV export into statement lines ready for
    reconciliation.  Handles the two layouts banks actually ship: a single
    signed "Amount" column, or separate "Debit"/"Credit" (or
    "Withdrawal"/"Deposit") columns.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import ledger_kernel/domain/values and ledger_kernel.exceptions.

Invariants enforced:
    - Amounts are signed, cent-quantized Decimals: positive = deposit,
      negative = withdrawal.  Floats never appear.
    - Zero-amount rows and rows whose amount or date cannot be read are
      skipped, never guessed at.
    - Output order is file order.

Failure modes:
    - StatementParseError when the text has no header plus data row, when
      a required column (date, description, amount) cannot be found, or
      when no row survives parsing.

Usage:
    from ledger_engines.statement_parser import parse_statement_csv

    lines = parse_statement_csv(uploaded_text)
    # [ParsedStatementLine(line_date=date(2025, 1, 5), description="ACH DEPOSIT",
    #                      amount=Decimal("2500.00"), reference="88412"), ...]
"""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from ledger_kernel.domain.values import ZERO, to_amount
from ledger_kernel.exceptions import InvalidAmountError, StatementParseError
from ledger_kernel.logging_config import get_logger
from ledger_engines.tracer import traced_engine

logger = get_logger("engines.statement_parser")

_DESCRIPTION_HINTS = ("description", "memo", "payee", "details")
_AMOUNT_HEADERS = ("amount", "transaction amount")
_DEBIT_HEADERS = ("debit", "withdrawal", "withdrawals")
_CREDIT_HEADERS = ("credit", "deposit", "deposits")
_REFERENCE_HINTS = ("reference", "check", "number", "ref")

# MM/DD/YYYY, M/D/YYYY, MM-DD-YYYY
_US_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
# YYYY-MM-DD, YYYY/MM/DD
_ISO_DATE = re.compile(r"^(\d{4})[/-](\d{1,2})[/-](\d{1,2})$")


@dataclass(frozen=True)
class ParsedStatementLine:
    line_date: date
    description: str
    amount: Decimal
    reference: str | None = None


@dataclass(frozen=True)
class _Columns:
    date: int
    description: int
    amount: int | None
    debit: int | None
    credit: int | None
    reference: int | None


def _find(header: list[str], predicate) -> int | None:
    for index, name in enumerate(header):
        if predicate(name):
            return index
    return None


def _detect_columns(header: list[str]) -> _Columns:
    date_idx = _find(header, lambda h: "date" in h)
    if date_idx is None:
        raise StatementParseError('CSV must have a date column (e.g., "Date")', row_number=1)

    desc_idx = _find(header, lambda h: any(hint in h for hint in _DESCRIPTION_HINTS))
    if desc_idx is None:
        raise StatementParseError(
            'CSV must have a description column (e.g., "Description", "Memo", "Payee")',
            row_number=1,
        )

    amount_idx = _find(header, lambda h: h in _AMOUNT_HEADERS)
    debit_idx = _find(header, lambda h: h in _DEBIT_HEADERS)
    credit_idx = _find(header, lambda h: h in _CREDIT_HEADERS)
    if amount_idx is None and (debit_idx is None or credit_idx is None):
        raise StatementParseError(
            'CSV must have an "Amount" column, or separate "Debit"/"Credit" columns',
            row_number=1,
        )

    taken = {date_idx, desc_idx, amount_idx, debit_idx, credit_idx}
    ref_idx = _find(
        header,
        lambda h: h not in _AMOUNT_HEADERS and any(hint in h for hint in _REFERENCE_HINTS),
    )
    if ref_idx in taken:
        ref_idx = None

    return _Columns(date_idx, desc_idx, amount_idx, debit_idx, credit_idx, ref_idx)


def parse_currency(value: str | None) -> Decimal:
    """
    Read a bank-formatted money cell.

    "$1,250.00" -> 1250.00, "(500.00)" -> -500.00, "" -> 0.

    Raises:
        InvalidAmountError: The cell is not a number.
    """
    if value is None or not value.strip():
        return ZERO
    cleaned = value.strip()
    if cleaned.startswith("(") and cleaned.endswith(")"):
        return -to_amount(cleaned[1:-1])
    return to_amount(cleaned)


def parse_statement_date(value: str) -> date | None:
    """Read MM/DD/YYYY, M/D/YYYY, MM-DD-YYYY or YYYY-MM-DD.  None if unreadable."""
    text = (value or "").strip()
    if match := _US_DATE.match(text):
        month, day, year = (int(g) for g in match.groups())
    elif match := _ISO_DATE.match(text):
        year, month, day = (int(g) for g in match.groups())
    else:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _cell(row: list[str], index: int | None) -> str | None:
    if index is None or index >= len(row):
        return None
    return row[index].strip()


@traced_engine("statement_parser", "1.0")
def parse_statement_csv(text: str) -> list[ParsedStatementLine]:
    """
    Parse a bank statement export.

    Preconditions:
        text is the decoded file content; the first non-blank row is the
        header.

    Postconditions:
        At least one line is returned, each with a non-zero amount.

    Raises:
        StatementParseError: See module docstring.
    """
    rows = [
        row for row in csv.reader(io.StringIO(text or ""), skipinitialspace=True)
        if any(cell.strip() for cell in row)
    ]
    if len(rows) < 2:
        raise StatementParseError("CSV must have a header row and at least one data row")

    header = [h.strip().lower() for h in rows[0]]
    cols = _detect_columns(header)

    results: list[ParsedStatementLine] = []
    skipped = 0
    for row_number, row in enumerate(rows[1:], start=2):
        if len(row) <= max(cols.date, cols.description):
            skipped += 1
            continue

        try:
            if cols.amount is not None:
                amount = parse_currency(_cell(row, cols.amount))
            else:
                amount = parse_currency(_cell(row, cols.credit)) - parse_currency(
                    _cell(row, cols.debit)
                )
        except InvalidAmountError:
            logger.warning(
                "statement_row_skipped",
                extra={"row_number": row_number, "reason": "unreadable_amount"},
            )
            skipped += 1
            continue

        if amount == ZERO:
            skipped += 1
            continue

        line_date = parse_statement_date(_cell(row, cols.date) or "")
        if line_date is None:
            logger.warning(
                "statement_row_skipped",
                extra={"row_number": row_number, "reason": "unreadable_date"},
            )
            skipped += 1
            continue

        results.append(ParsedStatementLine(
            line_date=line_date,
            description=_cell(row, cols.description) or "",
            amount=amount,
            reference=_cell(row, cols.reference) or None,
        ))

    if not results:
        raise StatementParseError("No valid transactions found in CSV")

    logger.info(
        "statement_parsed",
        extra={"lines": len(results), "skipped": skipped},
    )
    return results
