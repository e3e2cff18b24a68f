"""
Posted transactions and their lines are append-only.

The ORM listeners on Transaction and TransactionLine must refuse updates
and deletes at flush time.
"""

from decimal import Decimal

import pytest

from voucher_kernel.exceptions import ImmutabilityViolationError
from voucher_kernel.models.transaction import Transaction


class TestTransactionImmutability:
    def test_update_header_rejected(self, session, original_transaction):
        original_transaction.description = "edited"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "Transaction"
        session.rollback()

    def test_update_line_rejected(self, session, original_transaction):
        original_transaction.lines[0].debit = Decimal("1.00")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "TransactionLine"
        session.rollback()

    def test_delete_rejected(self, session, original_transaction):
        session.delete(original_transaction)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_rejected_update_leaves_row_intact(self, session, original_transaction):
        record_uuid = original_transaction.record_uuid
        original_transaction.description = "edited"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

        session.expire_all()
        assert session.get(Transaction, record_uuid).description == "Cash sale"
