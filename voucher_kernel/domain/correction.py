"""
Correction rules -- pure validation and reversal construction.

Responsibility:
    The I/O-free half of a voucher correction: header completeness, row
    shape, double-entry balance at currency precision, and the debit/credit
    swap that produces reversal rows.  CorrectionService and
    TransactionWriter call these; account and currency lookups stay in the
    services.

Invariants enforced:
    - Header completeness: record_uuid, user_id, project_id, currency_id and
      trans_id are all non-null.
    - Row shape: amounts are non-negative and exactly one side is non-zero.
    - Balance: round(sum(debit)) == round(sum(credit)) at the currency's
      decimal places.
    - Reversal fidelity: reversal rows mirror the original row-for-row with
      debit and credit swapped, preserving account, magnitude, entity and
      reference.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal

from voucher_kernel.db.types import ZERO, round_money
from voucher_kernel.domain.dtos import TransactionHeader, TransactionRow
from voucher_kernel.exceptions import (
    EmptyCorrectionError,
    HeaderIncompleteError,
    InvalidCorrectionRequestError,
    UnbalancedCorrectionError,
)


def validate_header(header: TransactionHeader) -> None:
    """Raise HeaderIncompleteError listing every missing header field."""
    missing = header.missing_fields()
    if missing:
        raise HeaderIncompleteError(missing)


def validate_rows_present(rows: Sequence[TransactionRow], record_uuid: object) -> None:
    if not rows:
        raise EmptyCorrectionError(str(record_uuid))


def validate_row_shapes(rows: Iterable[TransactionRow]) -> None:
    """
    Check every row carries a single positive amount on one side.

    Raises:
        InvalidCorrectionRequestError: missing account, negative amount,
            both sides filled or both sides zero.
    """
    for index, row in enumerate(rows):
        if row.account_id is None:
            raise InvalidCorrectionRequestError(f"row {index} has no account_id")
        if row.debit < ZERO or row.credit < ZERO:
            raise InvalidCorrectionRequestError(f"row {index} has a negative amount")
        if (row.debit == ZERO) == (row.credit == ZERO):
            raise InvalidCorrectionRequestError(
                f"row {index} must carry exactly one of debit or credit"
            )


def totals(rows: Iterable[TransactionRow]) -> tuple[Decimal, Decimal]:
    """Return (sum of debits, sum of credits)."""
    debits = ZERO
    credits = ZERO
    for row in rows:
        debits += row.debit
        credits += row.credit
    return debits, credits


def validate_balance(
    rows: Sequence[TransactionRow],
    decimal_places: int,
    currency_id: int,
) -> None:
    """
    Raise UnbalancedCorrectionError unless debits equal credits once both
    totals are rounded to the currency's precision.
    """
    debits, credits = totals(rows)
    rounded_debits = round_money(debits, decimal_places)
    rounded_credits = round_money(credits, decimal_places)
    if rounded_debits != rounded_credits:
        raise UnbalancedCorrectionError(
            debits=str(rounded_debits),
            credits=str(rounded_credits),
            currency_id=currency_id,
        )


def reverse_rows(
    rows: Iterable[TransactionRow],
    description: str | None = None,
) -> tuple[TransactionRow, ...]:
    """Swap debit and credit on every row, keeping order."""
    return tuple(row.reversed(description) for row in rows)
