"""
Module: voucher_kernel.models.account
Responsibility: ORM persistence for the chart of accounts and the currency
    table -- the reference data every transaction line points at.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - An account is postable iff it exists, is not a title account and is
      not locked (checked by TransactionWriter and CorrectionService).
    - Currency.decimal_places defines the precision at which balance is
      compared for transactions in that currency.

Failure modes:
    - InvalidAccountError when a posting targets a missing, title or locked
      account.
"""

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from voucher_kernel.db.base import Base


class Currency(Base):
    """A currency supported by the enterprise."""

    __tablename__ = "currencies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Display symbol (e.g., "$", "FC")
    symbol: Mapped[str] = mapped_column(String(15), nullable=False)

    # Minor unit precision used for balance comparisons (null = ledger default)
    decimal_places: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Currency {self.id}: {self.symbol}>"


class Account(Base):
    """
    Chart of accounts entry.

    Contract:
        Account.number is unique.  Title accounts group other accounts and
        never receive postings; locked accounts are closed for posting.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("number", name="uq_account_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Human-readable account number
    number: Mapped[str] = mapped_column(String(50), nullable=False)

    label: Mapped[str] = mapped_column(String(255), nullable=False)

    # Grouping account that cannot receive postings
    is_title: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Closed for posting
    locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Currency restriction (null = any currency)
    currency_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("currencies.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Account {self.number}: {self.label}>"

    @property
    def is_postable(self) -> bool:
        """Postconditions: True iff the account may receive journal lines."""
        return not self.is_title and not self.locked

    def unpostable_reason(self) -> str | None:
        """Return why the account cannot be posted to, or None if it can."""
        if self.is_title:
            return "title accounts cannot receive postings"
        if self.locked:
            return "account is locked"
        return None
