"""
Tests for CorrectionService.

Covers the successful reversal + correction pair, every rejection code,
atomicity (nothing persisted on failure), the outbox notification and the
structured log trail.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError

from tests.conftest import (
    CASH_ACCOUNT,
    FC,
    JPY,
    LOCKED_ACCOUNT,
    ORIGINAL_TRANS_ID,
    SALES_ACCOUNT,
    SERVICES_ACCOUNT,
    TEST_PROJECT_ID,
    TEST_USER_ID,
    TITLE_ACCOUNT,
    USD,
    count_transactions,
    make_correction_request as make_request,
    post_original,
)
from voucher_kernel.domain.dtos import TransactionRow
from voucher_kernel.exceptions import (
    AlreadyCorrectedError,
    EmptyCorrectionError,
    HeaderIncompleteError,
    InvalidAccountError,
    InvalidCorrectionRequestError,
    PersistenceFailureError,
    TransactionNotFoundError,
    UnbalancedCorrectionError,
)
from voucher_kernel.models.outbox import OutboxEvent
from voucher_kernel.models.transaction import Transaction
from voucher_kernel.services.correction_service import CorrectionService
from voucher_kernel.services.sequence_service import SequenceService
from voucher_kernel.services.topic import OutboxRelay
from voucher_kernel.services.transaction_writer import TransactionWriter

REVERSAL_TEXT = f"Reversal of transaction {ORIGINAL_TRANS_ID}"
CORRECTION_TEXT = f"Correction of transaction {ORIGINAL_TRANS_ID}"


def outbox_events(session) -> list[OutboxEvent]:
    return list(session.execute(select(OutboxEvent)).scalars())


class TestSuccessfulCorrection:
    def test_returns_linked_reversal_and_correction(
        self, session, correction_service, original_transaction
    ):
        result = correction_service.correct_transaction(
            original_transaction.record_uuid, make_request(original_transaction)
        )

        reversal = session.get(Transaction, result.reversal_record_uuid)
        correction = session.get(Transaction, result.correction_record_uuid)

        assert result.original_record_uuid == original_transaction.record_uuid
        assert reversal.reversal_of_uuid == original_transaction.record_uuid
        assert reversal.correction_of_uuid is None
        assert correction.correction_of_uuid == original_transaction.record_uuid
        assert correction.reversal_of_uuid is None
        assert count_transactions(session) == 3

    def test_trans_ids_follow_the_original(self, correction_service, original_transaction):
        result = correction_service.correct_transaction(
            original_transaction.record_uuid, make_request(original_transaction)
        )

        assert result.reversal_trans_id == ORIGINAL_TRANS_ID + 1
        assert result.correction_trans_id == ORIGINAL_TRANS_ID + 2

    def test_reversal_mirrors_original_lines(
        self, session, correction_service, original_transaction
    ):
        result = correction_service.correct_transaction(
            original_transaction.record_uuid, make_request(original_transaction)
        )
        reversal = session.get(Transaction, result.reversal_record_uuid)

        assert len(reversal.lines) == len(original_transaction.lines)
        for original_line, reversal_line in zip(original_transaction.lines, reversal.lines):
            assert reversal_line.account_id == original_line.account_id
            assert reversal_line.debit == original_line.credit
            assert reversal_line.credit == original_line.debit
            assert reversal_line.entity_uuid == original_line.entity_uuid
            assert reversal_line.reference_uuid == original_line.reference_uuid
            assert reversal_line.description == REVERSAL_TEXT
        assert reversal.description == REVERSAL_TEXT
        assert reversal.is_balanced

    def test_reversal_keeps_entity_and_reference(
        self, session, reference_data, deterministic_clock, lock_registry
    ):
        entity = uuid4()
        reference = uuid4()
        original = post_original(
            session,
            clock=deterministic_clock,
            rows=(
                TransactionRow(
                    account_id=CASH_ACCOUNT,
                    debit=Decimal("40.00"),
                    entity_uuid=entity,
                    reference_uuid=reference,
                ),
                TransactionRow(account_id=SALES_ACCOUNT, credit=Decimal("40.00")),
            ),
        )
        service = CorrectionService(session, clock=deterministic_clock, locks=lock_registry)

        result = service.correct_transaction(
            original.record_uuid,
            make_request(
                original,
                rows=(
                    TransactionRow(account_id=CASH_ACCOUNT, debit=Decimal("40.00")),
                    TransactionRow(account_id=SERVICES_ACCOUNT, credit=Decimal("40.00")),
                ),
            ),
        )

        first_line = session.get(Transaction, result.reversal_record_uuid).lines[0]
        assert first_line.entity_uuid == entity
        assert first_line.reference_uuid == reference
        assert first_line.credit == Decimal("40.00")

    def test_correction_rows_take_default_description(
        self, session, correction_service, original_transaction
    ):
        rows = (
            TransactionRow(account_id=CASH_ACCOUNT, debit=Decimal("100.00")),
            TransactionRow(
                account_id=SERVICES_ACCOUNT,
                credit=Decimal("100.00"),
                description="Consultation fee",
            ),
        )

        result = correction_service.correct_transaction(
            original_transaction.record_uuid, make_request(original_transaction, rows)
        )
        correction = session.get(Transaction, result.correction_record_uuid)

        assert correction.description == CORRECTION_TEXT
        assert [line.description for line in correction.lines] == [
            CORRECTION_TEXT,
            "Consultation fee",
        ]
        assert [line.account_id for line in correction.lines] == [
            CASH_ACCOUNT,
            SERVICES_ACCOUNT,
        ]

    def test_original_is_untouched(self, session, correction_service, original_transaction):
        before = [
            (line.account_id, line.debit, line.credit, line.description)
            for line in original_transaction.lines
        ]

        correction_service.correct_transaction(
            original_transaction.record_uuid, make_request(original_transaction)
        )
        session.expire_all()
        original = session.get(Transaction, original_transaction.record_uuid)

        assert original.description == "Cash sale"
        assert original.reversal_of_uuid is None
        assert original.correction_of_uuid is None
        assert [
            (line.account_id, line.debit, line.credit, line.description)
            for line in original.lines
        ] == before

    def test_accepts_string_original_id(self, correction_service, original_transaction):
        result = correction_service.correct_transaction(
            str(original_transaction.record_uuid), make_request(original_transaction)
        )

        assert result.original_record_uuid == original_transaction.record_uuid

    def test_correction_may_change_currency_and_project(
        self, session, correction_service, original_transaction
    ):
        rows = (
            TransactionRow(account_id=CASH_ACCOUNT, debit=Decimal("250")),
            TransactionRow(account_id=SERVICES_ACCOUNT, credit=Decimal("250")),
        )

        result = correction_service.correct_transaction(
            original_transaction.record_uuid,
            make_request(original_transaction, rows, currency_id=JPY, project_id=2),
        )
        reversal = session.get(Transaction, result.reversal_record_uuid)
        correction = session.get(Transaction, result.correction_record_uuid)

        assert (reversal.currency_id, reversal.project_id) == (USD, TEST_PROJECT_ID)
        assert (correction.currency_id, correction.project_id) == (JPY, 2)

    def test_null_currency_precision_uses_ledger_default(
        self, session, deterministic_clock, lock_registry, original_transaction
    ):
        writer = TransactionWriter(
            session, clock=deterministic_clock, default_decimal_places=0
        )
        service = CorrectionService(
            session, writer=writer, clock=deterministic_clock, locks=lock_registry
        )
        rows = (
            TransactionRow(account_id=CASH_ACCOUNT, debit=Decimal("100.4")),
            TransactionRow(account_id=SERVICES_ACCOUNT, credit=Decimal("100")),
        )

        result = service.correct_transaction(
            original_transaction.record_uuid,
            make_request(original_transaction, rows, currency_id=FC),
        )

        assert result.correction_trans_id == ORIGINAL_TRANS_ID + 2


class TestOutbox:
    def test_publishes_one_correct_event(self, session, correction_service, original_transaction):
        result = correction_service.correct_transaction(
            original_transaction.record_uuid, make_request(original_transaction)
        )

        events = outbox_events(session)

        assert len(events) == 1
        event = events[0]
        assert (event.channel, event.event, event.entity) == ("finance", "correct", "voucher")
        assert event.payload == {
            "user_id": TEST_USER_ID,
            "original_record_uuid": str(original_transaction.record_uuid),
            "reversal_id": str(result.reversal_record_uuid),
            "correction_id": str(result.correction_record_uuid),
        }
        assert len(event.payload_hash) == 64
        assert event.is_pending

    def test_relay_delivers_after_commit(
        self, session, deterministic_clock, lock_registry, original_transaction
    ):
        received = []
        relay = OutboxRelay(session, clock=deterministic_clock)
        relay.subscribe("finance", received.append)
        service = CorrectionService(
            session, relay=relay, clock=deterministic_clock, locks=lock_registry
        )

        result = service.correct_transaction(
            original_transaction.record_uuid, make_request(original_transaction)
        )

        assert len(received) == 1
        assert received[0]["event"] == "correct"
        assert received[0]["correction_id"] == str(result.correction_record_uuid)
        assert not outbox_events(session)[0].is_pending

    def test_failing_subscriber_does_not_undo_correction(
        self, session, deterministic_clock, lock_registry, original_transaction, captured_logs
    ):
        def explode(message):
            raise RuntimeError("subscriber down")

        relay = OutboxRelay(session, clock=deterministic_clock)
        relay.subscribe("finance", explode)
        service = CorrectionService(
            session, relay=relay, clock=deterministic_clock, locks=lock_registry
        )

        result = service.correct_transaction(
            original_transaction.record_uuid, make_request(original_transaction)
        )

        assert session.get(Transaction, result.correction_record_uuid) is not None
        assert count_transactions(session) == 3
        event = outbox_events(session)[0]
        assert event.is_pending
        assert event.attempts == 1
        assert "subscriber down" in event.last_error
        assert any(r["message"] == "outbox_delivery_failed" for r in captured_logs())

    def test_caller_rollback_undoes_correction_and_nothing_is_delivered(
        self, session, deterministic_clock, lock_registry, original_transaction
    ):
        received = []
        relay = OutboxRelay(session, clock=deterministic_clock)
        relay.subscribe("finance", received.append)
        service = CorrectionService(
            session,
            relay=relay,
            clock=deterministic_clock,
            locks=lock_registry,
            auto_commit=False,
        )

        service.correct_transaction(
            original_transaction.record_uuid, make_request(original_transaction)
        )

        assert received == []
        session.rollback()
        assert count_transactions(session) == 1
        assert outbox_events(session) == []

    def test_caller_drains_after_its_own_commit(
        self, session, deterministic_clock, lock_registry, original_transaction
    ):
        received = []
        relay = OutboxRelay(session, clock=deterministic_clock)
        relay.subscribe("finance", received.append)
        service = CorrectionService(
            session,
            relay=relay,
            clock=deterministic_clock,
            locks=lock_registry,
            auto_commit=False,
        )

        result = service.correct_transaction(
            original_transaction.record_uuid, make_request(original_transaction)
        )
        session.commit()
        assert received == []

        assert relay.drain() == 1
        assert received[0]["correction_id"] == str(result.correction_record_uuid)


class TestRejections:
    def test_incomplete_header(self, correction_service, original_transaction):
        request = make_request(original_transaction, user_id=None, currency_id=None)

        with pytest.raises(HeaderIncompleteError) as exc_info:
            correction_service.correct_transaction(original_transaction.record_uuid, request)

        assert exc_info.value.code == "VALIDATION_HEADER_INCOMPLETE"
        assert exc_info.value.missing_fields == ["user_id", "currency_id"]

    def test_missing_record_uuid_is_a_header_error(self, correction_service, original_transaction):
        request = make_request(original_transaction, record_uuid=None)

        with pytest.raises(HeaderIncompleteError):
            correction_service.correct_transaction(None, request)

    def test_id_mismatch(self, correction_service, original_transaction):
        with pytest.raises(InvalidCorrectionRequestError):
            correction_service.correct_transaction(uuid4(), make_request(original_transaction))

    def test_malformed_original_id(self, correction_service, original_transaction):
        with pytest.raises(InvalidCorrectionRequestError):
            correction_service.correct_transaction("TX42", make_request(original_transaction))

    def test_empty_rows(self, correction_service, original_transaction):
        with pytest.raises(EmptyCorrectionError) as exc_info:
            correction_service.correct_transaction(
                original_transaction.record_uuid, make_request(original_transaction, rows=())
            )

        assert exc_info.value.code == "VALIDATION_EMPTY_ROWS"

    def test_unbalanced(self, correction_service, original_transaction):
        rows = (
            TransactionRow(account_id=CASH_ACCOUNT, debit=Decimal("100.00")),
            TransactionRow(account_id=SERVICES_ACCOUNT, credit=Decimal("90.00")),
        )

        with pytest.raises(UnbalancedCorrectionError) as exc_info:
            correction_service.correct_transaction(
                original_transaction.record_uuid, make_request(original_transaction, rows)
            )

        assert exc_info.value.debits == "100.00"
        assert exc_info.value.credits == "90.00"

    @pytest.mark.parametrize(
        "account_id,reason",
        [
            (TITLE_ACCOUNT, "title accounts cannot receive postings"),
            (LOCKED_ACCOUNT, "account is locked"),
            (999, "account does not exist"),
        ],
        ids=["title", "locked", "missing"],
    )
    def test_invalid_account(self, correction_service, original_transaction, account_id, reason):
        rows = (
            TransactionRow(account_id=CASH_ACCOUNT, debit=Decimal("100.00")),
            TransactionRow(account_id=account_id, credit=Decimal("100.00")),
        )

        with pytest.raises(InvalidAccountError) as exc_info:
            correction_service.correct_transaction(
                original_transaction.record_uuid, make_request(original_transaction, rows)
            )

        assert exc_info.value.account_id == account_id
        assert exc_info.value.reason == reason

    def test_unknown_currency(self, correction_service, original_transaction):
        with pytest.raises(InvalidCorrectionRequestError):
            correction_service.correct_transaction(
                original_transaction.record_uuid,
                make_request(original_transaction, currency_id=99),
            )

    def test_original_not_found(self, correction_service, reference_data):
        missing = uuid4()

        class Missing:
            record_uuid = missing

        with pytest.raises(TransactionNotFoundError) as exc_info:
            correction_service.correct_transaction(missing, make_request(Missing))

        assert exc_info.value.code == "NOT_FOUND"

    def test_second_correction_conflicts(self, session, correction_service, original_transaction):
        correction_service.correct_transaction(
            original_transaction.record_uuid, make_request(original_transaction)
        )

        with pytest.raises(AlreadyCorrectedError) as exc_info:
            correction_service.correct_transaction(
                original_transaction.record_uuid, make_request(original_transaction)
            )

        assert exc_info.value.code == "CONFLICT_ALREADY_CORRECTED"
        assert count_transactions(session) == 3


class TestAtomicity:
    @pytest.mark.parametrize(
        "overrides,rows",
        [
            ({"trans_id": None}, None),
            ({}, ()),
            ({}, (TransactionRow(account_id=CASH_ACCOUNT, debit=Decimal("1")),)),
            (
                {},
                (
                    TransactionRow(account_id=CASH_ACCOUNT, debit=Decimal("5")),
                    TransactionRow(account_id=TITLE_ACCOUNT, credit=Decimal("5")),
                ),
            ),
        ],
        ids=["header", "empty", "unbalanced", "account"],
    )
    def test_rejection_persists_nothing(
        self, session, correction_service, original_transaction, overrides, rows
    ):
        request = make_request(original_transaction, rows, **overrides)

        with pytest.raises(Exception):
            correction_service.correct_transaction(original_transaction.record_uuid, request)

        assert count_transactions(session) == 1
        assert outbox_events(session) == []
        assert SequenceService(session).current_value(SequenceService.TRANSACTION) == (
            ORIGINAL_TRANS_ID
        )

    def test_same_invalid_request_gives_same_code(self, correction_service, original_transaction):
        request = make_request(
            original_transaction,
            rows=(TransactionRow(account_id=CASH_ACCOUNT, debit=Decimal("1")),),
        )

        codes = []
        for _ in range(2):
            with pytest.raises(UnbalancedCorrectionError) as exc_info:
                correction_service.correct_transaction(original_transaction.record_uuid, request)
            codes.append(exc_info.value.code)

        assert codes == ["VALIDATION_UNBALANCED", "VALIDATION_UNBALANCED"]

    def test_storage_error_after_reversal_rolls_back(
        self, session, deterministic_clock, lock_registry, original_transaction
    ):
        class FailingSecondWrite(TransactionWriter):
            calls = 0

            def write(self, **kwargs):
                FailingSecondWrite.calls += 1
                if FailingSecondWrite.calls == 2:
                    raise OperationalError("INSERT INTO transactions", {}, Exception("disk full"))
                return super().write(**kwargs)

        service = CorrectionService(
            session,
            writer=FailingSecondWrite(session, clock=deterministic_clock),
            clock=deterministic_clock,
            locks=lock_registry,
        )

        with pytest.raises(PersistenceFailureError) as exc_info:
            service.correct_transaction(
                original_transaction.record_uuid, make_request(original_transaction)
            )

        assert exc_info.value.code == "PERSISTENCE_FAILURE"
        assert count_transactions(session) == 1
        assert outbox_events(session) == []

    def test_integrity_error_without_existing_correction(
        self, session, deterministic_clock, lock_registry, original_transaction
    ):
        class BrokenWriter(TransactionWriter):
            def write(self, **kwargs):
                raise IntegrityError("INSERT INTO transactions", {}, Exception("boom"))

        service = CorrectionService(
            session,
            writer=BrokenWriter(session, clock=deterministic_clock),
            clock=deterministic_clock,
            locks=lock_registry,
        )

        with pytest.raises(PersistenceFailureError) as exc_info:
            service.correct_transaction(
                original_transaction.record_uuid, make_request(original_transaction)
            )

        assert exc_info.value.reason == "boom"
        assert count_transactions(session) == 1

    @pytest.mark.parametrize(
        "error",
        [
            IntegrityError("INSERT INTO transactions", {}, Exception("boom")),
            OperationalError("INSERT INTO transactions", {}, Exception("boom")),
        ],
        ids=["integrity", "operational"],
    )
    def test_caller_managed_storage_error_leaves_rollback_to_caller(
        self, session, deterministic_clock, lock_registry, original_transaction, monkeypatch, error
    ):
        class BrokenWriter(TransactionWriter):
            def write(self, **kwargs):
                raise error

        rollbacks = []
        monkeypatch.setattr(session, "rollback", lambda: rollbacks.append("rollback"))
        service = CorrectionService(
            session,
            writer=BrokenWriter(session, clock=deterministic_clock),
            clock=deterministic_clock,
            locks=lock_registry,
            auto_commit=False,
        )

        with pytest.raises(PersistenceFailureError) as exc_info:
            service.correct_transaction(
                original_transaction.record_uuid, make_request(original_transaction)
            )

        assert exc_info.value.code == "PERSISTENCE_FAILURE"
        assert rollbacks == []
        assert not lock_registry.is_held(original_transaction.record_uuid)

    def test_lock_released_after_rejection(
        self, correction_service, lock_registry, original_transaction
    ):
        with pytest.raises(EmptyCorrectionError):
            correction_service.correct_transaction(
                original_transaction.record_uuid, make_request(original_transaction, rows=())
            )

        assert not lock_registry.is_held(original_transaction.record_uuid)


class TestLogging:
    def test_success_trail(self, correction_service, original_transaction, captured_logs):
        correction_service.correct_transaction(
            original_transaction.record_uuid, make_request(original_transaction)
        )

        records = captured_logs()
        messages = [r["message"] for r in records]
        assert "correction_started" in messages
        assert "outbox_event_appended" in messages

        original_uuid = str(original_transaction.record_uuid)
        written = [r for r in records if r["message"] == "transaction_written"]
        assert [r["reversal_of_uuid"] for r in written if r["reversal_of_uuid"]] == [original_uuid]
        assert [r["correction_of_uuid"] for r in written if r["correction_of_uuid"]] == [
            original_uuid
        ]

        completed = next(r for r in records if r["message"] == "correction_completed")
        assert completed["record_uuid"] == str(original_transaction.record_uuid)
        assert completed["user_id"] == str(TEST_USER_ID)
        assert "correlation_id" in completed
        assert "duration_ms" in completed

    def test_rejection_logs_code(self, correction_service, original_transaction, captured_logs):
        with pytest.raises(EmptyCorrectionError):
            correction_service.correct_transaction(
                original_transaction.record_uuid, make_request(original_transaction, rows=())
            )

        rejected = [r for r in captured_logs() if r["message"] == "correction_rejected"]
        assert len(rejected) == 1
        assert rejected[0]["code"] == "VALIDATION_EMPTY_ROWS"
        assert rejected[0]["level"] == "WARNING"

    def test_unexpected_error_is_logged_and_raised(
        self, session, deterministic_clock, lock_registry, original_transaction, captured_logs
    ):
        class ExplodingWriter(TransactionWriter):
            def validate(self, rows, currency_id):
                raise RuntimeError("bug")

        service = CorrectionService(
            session,
            writer=ExplodingWriter(session, clock=deterministic_clock),
            clock=deterministic_clock,
            locks=lock_registry,
        )

        with pytest.raises(RuntimeError):
            service.correct_transaction(
                original_transaction.record_uuid, make_request(original_transaction)
            )

        assert any(r["message"] == "correction_failed" for r in captured_logs())
