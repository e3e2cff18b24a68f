"""
Module: voucher_kernel.models.transaction
Responsibility: ORM persistence for posted transactions (vouchers) and their
    lines -- the financial record that corrections reverse and replace.
Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions.py only.

Invariants enforced:
    - Balance: sum(debit) == sum(credit) per transaction (checked by
      TransactionWriter before flush; is_balanced is a read-side check).
    - Append-only: a posted Transaction and its lines are never updated or
      deleted (ORM listeners below raise ImmutabilityViolationError).
    - At most one reversal and one correction per original: UNIQUE
      constraints on reversal_of_uuid and correction_of_uuid.
    - trans_id is unique and allocated by SequenceService.

Failure modes:
    - IntegrityError on duplicate trans_id, reversal_of_uuid or
      correction_of_uuid (the latter two mean a concurrent correction won).
    - ImmutabilityViolationError on UPDATE/DELETE of posted rows.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from voucher_kernel.db.base import Base, UUIDString
from voucher_kernel.exceptions import ImmutabilityViolationError


class Transaction(Base):
    """
    Posted transaction header -- the atomic unit of double-entry posting.

    Contract:
        Identified by record_uuid.  A reversal sets reversal_of_uuid and a
        correction sets correction_of_uuid to the original's record_uuid;
        the original row itself is never touched.
    """

    __tablename__ = "transactions"

    __table_args__ = (
        UniqueConstraint("trans_id", name="uq_transaction_trans_id"),
        UniqueConstraint("reversal_of_uuid", name="uq_transaction_reversal_of"),
        UniqueConstraint("correction_of_uuid", name="uq_transaction_correction_of"),
        Index("idx_transaction_project", "project_id"),
    )

    record_uuid: Mapped[UUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )

    # Human-facing sequence number
    trans_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    user_id: Mapped[int] = mapped_column(Integer, nullable=False)

    project_id: Mapped[int] = mapped_column(Integer, nullable=False)

    currency_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("currencies.id"),
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    posted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Set on reversal transactions
    reversal_of_uuid: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("transactions.record_uuid"),
        nullable=True,
    )

    # Set on correction transactions
    correction_of_uuid: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("transactions.record_uuid"),
        nullable=True,
    )

    lines: Mapped[list["TransactionLine"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionLine.line_seq",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Transaction {self.trans_id} {self.record_uuid}>"

    @property
    def is_reversal(self) -> bool:
        return self.reversal_of_uuid is not None

    @property
    def is_correction(self) -> bool:
        return self.correction_of_uuid is not None

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


class TransactionLine(Base):
    """
    One ledger line of a posted transaction.

    Contract:
        Exactly one of debit/credit is non-zero and both are non-negative.
        line_seq gives deterministic ordering (reversal lines mirror the
        original's order).
    """

    __tablename__ = "transaction_lines"

    __table_args__ = (
        Index("idx_line_transaction", "record_uuid"),
        Index("idx_line_account", "account_id"),
    )

    uuid: Mapped[UUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )

    record_uuid: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("transactions.record_uuid"),
        nullable=False,
    )

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    account_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("accounts.id"),
        nullable=False,
    )

    debit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    credit: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=Decimal("0"))

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Payer/payee entity
    entity_uuid: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Source document
    reference_uuid: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    transaction: Mapped["Transaction"] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<TransactionLine {self.account_id} D={self.debit} C={self.credit}>"


# =============================================================================
# ORM-Level Immutability Protection
# =============================================================================


def _has_column_changes(target) -> bool:
    session = Session.object_session(target)
    return session is not None and session.is_modified(target, include_collections=False)


@event.listens_for(Transaction, "before_update")
def prevent_transaction_update(mapper, connection, target):
    if _has_column_changes(target):
        raise ImmutabilityViolationError("Transaction", str(target.record_uuid))


@event.listens_for(Transaction, "before_delete")
def prevent_transaction_delete(mapper, connection, target):
    raise ImmutabilityViolationError("Transaction", str(target.record_uuid))


@event.listens_for(TransactionLine, "before_update")
def prevent_line_update(mapper, connection, target):
    if _has_column_changes(target):
        raise ImmutabilityViolationError("TransactionLine", str(target.uuid))


@event.listens_for(TransactionLine, "before_delete")
def prevent_line_delete(mapper, connection, target):
    raise ImmutabilityViolationError("TransactionLine", str(target.uuid))
