"""
CorrectionService -- atomic reversal + correction of a posted transaction.

Responsibility:
    Validates a CorrectionRequest, then in one unit of work posts the
    reversal of the original transaction, posts the replacement
    (correction) transaction and appends a CORRECT notification to the
    outbox.  The original transaction is never touched.

Architecture position:
    Kernel > Services -- imperative shell, owns transaction boundaries.
    Delegates posting to TransactionWriter, notifications to Topic and
    post-commit delivery to OutboxRelay.

Correction flow:
    correct_transaction(original_id, request)
      1. Header completeness
      2. original_id matches transactionDetails.record_uuid
      3. At least one correction row
      4. Row shape (one non-negative side per row)
      5. Balance at the currency's decimal places
      6. Every account exists and is postable
      7. Original exists (locked FOR UPDATE)
      8. Original has no reversal/correction yet
      9. Write reversal, write correction, publish CORRECT event
     10. Commit, then drain the outbox (best-effort)

Invariants enforced:
    - Nothing is written unless every check passes; any failure after the
      first write rolls back the whole unit.
    - Reversal lines mirror the original lines one-for-one with debit and
      credit swapped (same account, entity and reference).
    - At most one correction per original: per-record lock in-process,
      row lock plus UNIQUE(reversal_of_uuid, correction_of_uuid) across
      processes.
    - Outbox delivery failures never undo a committed correction.

Failure modes:
    - VALIDATION_HEADER_INCOMPLETE / VALIDATION_EMPTY_ROWS /
      VALIDATION_UNBALANCED / VALIDATION_INVALID_ACCOUNT /
      VALIDATION_INVALID_REQUEST: request rejected, nothing persisted.
    - NOT_FOUND: the original transaction does not exist.
    - CONFLICT_ALREADY_CORRECTED: the original was corrected earlier or by
      a concurrent request that won the race.
    - PERSISTENCE_FAILURE: storage error; the unit was rolled back.

Audit relevance:
    Every invocation is logged with correlation_id, record_uuid, user_id
    and timing.  Rejections log the error code.
"""

from __future__ import annotations

import time
from dataclasses import replace
from uuid import UUID, uuid4

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.domain.correction import (
    reverse_rows,
    validate_header,
    validate_rows_present,
)
from voucher_kernel.domain.dtos import (
    CorrectionRequest,
    CorrectionResult,
    TransactionRow,
)
from voucher_kernel.exceptions import (
    AlreadyCorrectedError,
    InvalidCorrectionRequestError,
    PersistenceFailureError,
    TransactionNotFoundError,
    VoucherKernelError,
)
from voucher_kernel.logging_config import LogContext, get_logger
from voucher_kernel.models.transaction import Transaction
from voucher_kernel.services.locks import RecordLockRegistry, default_registry
from voucher_kernel.services.topic import Channel, Entity, Event, OutboxRelay, Topic
from voucher_kernel.services.transaction_writer import TransactionWriter

logger = get_logger("services.correction")

_PRODUCER = "voucher_kernel.correction_service"


class CorrectionService:
    """
    Reverses and replaces posted transactions.

    Contract:
        ``correct_transaction`` either returns a CorrectionResult naming
        both new transactions, or raises a VoucherKernelError whose
        ``code`` the client shows verbatim.

    Guarantees:
        - Commit on success, rollback on failure and outbox delivery after
          commit, all only when auto_commit=True; otherwise the caller owns
          the transaction and drains the outbox after committing it.
        - Two concurrent corrections of one original yield exactly one
          success and one CONFLICT_ALREADY_CORRECTED.

    Non-goals:
        - Does NOT authorise the caller.
        - Does NOT retry; a rejected request must be resubmitted.
    """

    def __init__(
        self,
        session: Session,
        writer: TransactionWriter | None = None,
        topic: Topic | None = None,
        relay: OutboxRelay | None = None,
        locks: RecordLockRegistry | None = None,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._writer = writer or TransactionWriter(session, clock=self._clock)
        self._topic = topic or Topic(session, self._clock)
        self._relay = relay
        self._locks = locks or default_registry
        self._auto_commit = auto_commit

    def correct_transaction(
        self,
        original_id: UUID | str | None,
        request: CorrectionRequest,
    ) -> CorrectionResult:
        """
        Reverse the original transaction and post its replacement.

        Preconditions:
            - ``original_id`` identifies the transaction being corrected
              and equals ``request.transaction_details.record_uuid``.

        Postconditions:
            - On success the reversal, the correction and the CORRECT
              outbox event are committed together (when auto_commit=True).
            - On failure no row has been persisted.

        Raises:
            VoucherKernelError: A coded subclass for every rejection.
        """
        details = request.transaction_details
        correlation_id = str(uuid4())

        with LogContext.bind(
            correlation_id=correlation_id,
            record_uuid=None if original_id is None else str(original_id),
            user_id=None if details.user_id is None else str(details.user_id),
            producer=_PRODUCER,
        ):
            logger.info(
                "correction_started",
                extra={
                    "trans_id": details.trans_id,
                    "row_count": len(request.correction),
                },
            )
            t0 = time.monotonic()

            try:
                validate_header(details)
                original_uuid = _coerce_uuid(original_id, "original_id")
                with self._locks.hold(original_uuid):
                    result = self._correct_and_commit(original_uuid, request)

            except VoucherKernelError as exc:
                if self._auto_commit:
                    self._session.rollback()
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.warning(
                    "correction_rejected",
                    extra={
                        "code": exc.code,
                        "reason": str(exc),
                        "duration_ms": duration_ms,
                    },
                )
                raise

            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.error(
                    "correction_failed",
                    extra={"duration_ms": duration_ms},
                    exc_info=True,
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info(
                "correction_completed",
                extra={
                    "reversal_record_uuid": str(result.reversal_record_uuid),
                    "reversal_trans_id": result.reversal_trans_id,
                    "correction_record_uuid": str(result.correction_record_uuid),
                    "correction_trans_id": result.correction_trans_id,
                    "duration_ms": duration_ms,
                },
            )

            if self._auto_commit:
                self._drain_outbox()
            return result

    # =========================================================================
    # Internal Implementation
    # =========================================================================

    def _correct_and_commit(
        self,
        original_uuid: UUID,
        request: CorrectionRequest,
    ) -> CorrectionResult:
        """
        Validate, write and commit; storage errors become coded errors.

        With auto_commit off the caller owns the transaction: nothing is
        rolled back here, and an IntegrityError is reported as
        PERSISTENCE_FAILURE because the failed transaction cannot be
        queried for an existing correction.
        """
        try:
            result = self._do_correct(original_uuid, request)
            if self._auto_commit:
                self._session.commit()
            return result

        except IntegrityError as exc:
            if not self._auto_commit:
                raise PersistenceFailureError(
                    str(original_uuid), str(exc.orig)
                ) from exc
            self._session.rollback()
            if self._find_existing(original_uuid) is not None:
                raise AlreadyCorrectedError(str(original_uuid)) from exc
            raise PersistenceFailureError(str(original_uuid), str(exc.orig)) from exc

        except SQLAlchemyError as exc:
            if self._auto_commit:
                self._session.rollback()
            raise PersistenceFailureError(str(original_uuid), str(exc)) from exc

    def _do_correct(
        self,
        original_uuid: UUID,
        request: CorrectionRequest,
    ) -> CorrectionResult:
        """Correction logic without transaction management."""
        details = request.transaction_details
        rows = request.correction

        if _coerce_uuid(details.record_uuid, "record_uuid") != original_uuid:
            raise InvalidCorrectionRequestError(
                f"record_uuid {details.record_uuid} does not match {original_uuid}"
            )

        validate_rows_present(rows, original_uuid)
        self._writer.validate(rows, details.currency_id)

        original = self._load_original(original_uuid)

        reversal = self._writer.write(
            user_id=details.user_id,
            project_id=original.project_id,
            currency_id=original.currency_id,
            rows=self.build_reversal_rows(original, details.description),
            description=details.description,
            reversal_of_uuid=original.record_uuid,
        )

        correction = self._writer.write(
            user_id=details.user_id,
            project_id=details.project_id,
            currency_id=details.currency_id,
            rows=_with_default_description(rows, details.correction_description),
            description=details.correction_description,
            correction_of_uuid=original.record_uuid,
        )

        self._topic.publish(
            Channel.FINANCE,
            Event.CORRECT,
            Entity.VOUCHER,
            user_id=details.user_id,
            original_record_uuid=str(original.record_uuid),
            reversal_id=str(reversal.record_uuid),
            correction_id=str(correction.record_uuid),
        )

        return CorrectionResult(
            original_record_uuid=original.record_uuid,
            reversal_record_uuid=reversal.record_uuid,
            reversal_trans_id=reversal.trans_id,
            correction_record_uuid=correction.record_uuid,
            correction_trans_id=correction.trans_id,
        )

    def _load_original(self, original_uuid: UUID) -> Transaction:
        """
        Load the original with a row lock and check it is uncorrected.

        Raises:
            TransactionNotFoundError: If no transaction has that record_uuid.
            AlreadyCorrectedError: If a reversal or correction already
                points at it.
        """
        original = self._session.execute(
            select(Transaction)
            .where(Transaction.record_uuid == original_uuid)
            .with_for_update()
        ).scalar_one_or_none()

        if original is None:
            raise TransactionNotFoundError(str(original_uuid))

        if self._find_existing(original_uuid) is not None:
            raise AlreadyCorrectedError(str(original_uuid))

        return original

    def _find_existing(self, original_uuid: UUID) -> Transaction | None:
        """Any reversal or correction already linked to the original."""
        return self._session.execute(
            select(Transaction)
            .where(
                or_(
                    Transaction.reversal_of_uuid == original_uuid,
                    Transaction.correction_of_uuid == original_uuid,
                )
            )
            .limit(1)
        ).scalar_one_or_none()

    @staticmethod
    def build_reversal_rows(
        original: Transaction,
        description: str | None,
    ) -> tuple[TransactionRow, ...]:
        """The original's lines with debit and credit swapped, in order."""
        return reverse_rows(
            (TransactionRow.from_line(line) for line in original.lines),
            description,
        )

    def _drain_outbox(self) -> None:
        """Deliver pending notifications; failures are logged, not raised."""
        if self._relay is None:
            return
        try:
            self._relay.drain()
        except Exception:
            self._session.rollback()
            logger.warning("outbox_drain_failed", exc_info=True)


def _coerce_uuid(value: UUID | str | None, field_name: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise InvalidCorrectionRequestError(
            f"{field_name} is not a valid uuid: {value!r}"
        ) from exc


def _with_default_description(
    rows: tuple[TransactionRow, ...],
    description: str | None,
) -> tuple[TransactionRow, ...]:
    """Rows without a description take the correction description."""
    return tuple(
        row if row.description is not None else replace(row, description=description)
        for row in rows
    )
