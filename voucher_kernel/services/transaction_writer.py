"""
TransactionWriter -- atomic posting of one balanced transaction.

Responsibility:
    Turns a header and a list of TransactionRow into persisted Transaction
    and TransactionLine rows.  Handles currency lookup, row shape and
    balance validation at currency precision, account postability, and
    trans_id allocation.

Architecture position:
    Kernel > Services -- imperative shell.  Called by CorrectionService;
    delegates trans_id allocation to SequenceService and the pure checks
    to domain.correction.

Invariants enforced:
    - Debits = credits at the currency's decimal places for every written
      transaction.
    - Every line targets an existing account; request rows additionally
      target postable accounts (validate_accounts).
    - trans_id comes from SequenceService, never from max()+1.
    - A transaction is added together with all of its lines, so the flush
      only inserts and never updates a posted row.

Failure modes:
    - InvalidCorrectionRequestError: unknown currency or malformed rows.
    - UnbalancedCorrectionError: debits != credits after rounding.
    - InvalidAccountError: missing, title or locked account.
    - IntegrityError: duplicate trans_id / reversal_of_uuid /
      correction_of_uuid (raised from flush, interpreted by the caller).

Non-goals:
    - Does NOT manage the transaction boundary (caller's responsibility).
    - Does NOT decide what to post; CorrectionService builds the rows.
"""

from collections.abc import Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.domain.correction import (
    totals,
    validate_balance,
    validate_row_shapes,
)
from voucher_kernel.domain.dtos import TransactionRow
from voucher_kernel.exceptions import (
    InvalidAccountError,
    InvalidCorrectionRequestError,
)
from voucher_kernel.logging_config import get_logger
from voucher_kernel.models.account import Account, Currency
from voucher_kernel.models.transaction import Transaction, TransactionLine
from voucher_kernel.services.sequence_service import SequenceService

logger = get_logger("services.transaction_writer")


class TransactionWriter:
    """
    Writes balanced transactions.

    Contract:
        ``validate`` runs every row check without touching the database
        beyond reads; ``write`` re-checks shape and balance, allocates a
        trans_id and flushes the transaction with its lines.
    """

    def __init__(
        self,
        session: Session,
        sequence_service: SequenceService | None = None,
        clock: Clock | None = None,
        default_decimal_places: int = 2,
    ):
        self._session = session
        self._sequence_service = sequence_service or SequenceService(session)
        self._clock = clock or SystemClock()
        self._default_decimal_places = default_decimal_places

    # =========================================================================
    # Validation
    # =========================================================================

    def get_currency(self, currency_id: int) -> Currency:
        """
        Load a currency by id.

        Raises:
            InvalidCorrectionRequestError: If the currency does not exist.
        """
        currency = self._session.get(Currency, currency_id)
        if currency is None:
            raise InvalidCorrectionRequestError(f"unknown currency {currency_id}")
        return currency

    def validate_balance(self, rows: Sequence[TransactionRow], currency_id: int) -> None:
        """Check row shapes, then balance at the currency's precision."""
        validate_row_shapes(rows)
        currency = self.get_currency(currency_id)
        decimal_places = (
            self._default_decimal_places
            if currency.decimal_places is None
            else currency.decimal_places
        )
        validate_balance(rows, decimal_places, currency_id)

    def validate_accounts(self, rows: Sequence[TransactionRow]) -> None:
        """
        Check that every row targets an existing, postable account.

        Raises:
            InvalidAccountError: For the first offending row.
        """
        account_ids = {row.account_id for row in rows}
        accounts = {
            account.id: account
            for account in self._session.execute(
                select(Account).where(Account.id.in_(account_ids))
            ).scalars()
        }

        for row in rows:
            account = accounts.get(row.account_id)
            if account is None:
                raise InvalidAccountError(row.account_id, "account does not exist")
            reason = account.unpostable_reason()
            if reason is not None:
                raise InvalidAccountError(row.account_id, reason)

    def validate(self, rows: Sequence[TransactionRow], currency_id: int) -> None:
        """Shape, balance, then account checks."""
        self.validate_balance(rows, currency_id)
        self.validate_accounts(rows)

    # =========================================================================
    # Writing
    # =========================================================================

    def write(
        self,
        *,
        user_id: int,
        project_id: int,
        currency_id: int,
        rows: Sequence[TransactionRow],
        description: str | None = None,
        reversal_of_uuid: UUID | None = None,
        correction_of_uuid: UUID | None = None,
    ) -> Transaction:
        """
        Persist one transaction and its lines.

        Preconditions:
            - rows is non-empty.

        Postconditions:
            - The transaction is flushed with a freshly allocated trans_id
              and lines in row order (line_seq 0..n-1).

        Raises:
            UnbalancedCorrectionError: If the rows do not balance.
            IntegrityError: On a uniqueness violation during flush.
        """
        self.validate_balance(rows, currency_id)

        trans_id = self._sequence_service.next_value(SequenceService.TRANSACTION)
        transaction = Transaction(
            record_uuid=uuid4(),
            trans_id=trans_id,
            user_id=user_id,
            project_id=project_id,
            currency_id=currency_id,
            description=description,
            posted_at=self._clock.now(),
            reversal_of_uuid=reversal_of_uuid,
            correction_of_uuid=correction_of_uuid,
            lines=[
                TransactionLine(
                    uuid=uuid4(),
                    line_seq=seq,
                    account_id=row.account_id,
                    debit=row.debit,
                    credit=row.credit,
                    description=row.description,
                    entity_uuid=_as_uuid(row.entity_uuid),
                    reference_uuid=_as_uuid(row.reference_uuid),
                )
                for seq, row in enumerate(rows)
            ],
        )
        self._session.add(transaction)
        self._session.flush()

        debits, _ = totals(rows)
        logger.info(
            "transaction_written",
            extra={
                "transaction_uuid": str(transaction.record_uuid),
                "trans_id": trans_id,
                "line_count": len(rows),
                "total": debits,
                "currency_id": currency_id,
                "reversal_of_uuid": _uuid_str(reversal_of_uuid),
                "correction_of_uuid": _uuid_str(correction_of_uuid),
            },
        )
        return transaction


def _as_uuid(value: UUID | str | None) -> UUID | None:
    if value is None or isinstance(value, UUID):
        return value
    return UUID(str(value))


def _uuid_str(value: UUID | None) -> str | None:
    return None if value is None else str(value)
