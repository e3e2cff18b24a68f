"""
Module: voucher_kernel.models.cashbox
Responsibility: ORM persistence for cashboxes and the per-currency accounts
    each cashbox holds.

Every cashbox has a label and one (account, transfer account) pair per
currency it supports.  Cashboxes are plain reference data: they may be
updated and deleted, unlike posted transactions.
"""

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from voucher_kernel.db.base import TrackedBase


class Cashbox(TrackedBase):
    """A cash-holding point of sale or auxiliary till."""

    __tablename__ = "cash_boxes"

    __table_args__ = (
        UniqueConstraint("label", "project_id", name="uq_cash_box_label_project"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    label: Mapped[str] = mapped_column(String(100), nullable=False)

    project_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Auxiliary cashboxes collect payments but do not hold the primary float
    is_auxiliary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    currencies: Mapped[list["CashboxAccountCurrency"]] = relationship(
        back_populates="cashbox",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Cashbox {self.id}: {self.label}>"


class CashboxAccountCurrency(TrackedBase):
    """The cash and transfer accounts of a cashbox for one currency."""

    __tablename__ = "cash_box_account_currency"

    __table_args__ = (
        UniqueConstraint("cash_box_id", "currency_id", name="uq_cash_box_currency"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    cash_box_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("cash_boxes.id"),
        nullable=False,
    )

    currency_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("currencies.id"),
        nullable=False,
    )

    account_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("accounts.id"),
        nullable=False,
    )

    transfer_account_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("accounts.id"),
        nullable=False,
    )

    cashbox: Mapped["Cashbox"] = relationship(back_populates="currencies")
