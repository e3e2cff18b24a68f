"""
CashboxService -- create, read, update and delete cashboxes.

Responsibility:
    Persistence for cashboxes and the per-currency (cash account, transfer
    account) rows they hold.  Every mutation publishes a FINANCE
    notification on CASHBOX through the outbox in the caller's
    transaction: CREATE, UPDATE or DELETE for the cashbox itself and
    UPDATE (with the currency_id) when a currency row is added or changed.

Architecture position:
    Kernel > Services -- flush-only, the caller commits.  Independent of
    the correction flow.

Invariants enforced:
    - Only known columns are written; anything else is rejected.
    - (label, project_id) is unique.
    - A cashbox holds at most one row per currency, and the currency and
      both accounts of that row exist.

Failure modes:
    - CashboxNotFoundError (NOT_FOUND): no cashbox with that id.
    - CashboxCurrencyNotFoundError (NOT_FOUND): the cashbox does not hold
      that currency.
    - InvalidCashboxError (VALIDATION_INVALID_CASHBOX): unknown column,
      missing required column, duplicate label within a project, duplicate
      currency or unknown currency/account.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import select

from voucher_kernel.exceptions import (
    CashboxCurrencyNotFoundError,
    CashboxNotFoundError,
    InvalidCashboxError,
)
from voucher_kernel.logging_config import get_logger
from voucher_kernel.models.account import Account, Currency
from voucher_kernel.models.cashbox import Cashbox, CashboxAccountCurrency
from voucher_kernel.services.base import BaseService
from voucher_kernel.services.topic import Channel, Entity, Event, Topic

logger = get_logger("services.cashbox")

_WRITABLE_COLUMNS = frozenset({"label", "project_id", "is_auxiliary"})
_REQUIRED_COLUMNS = ("label", "project_id")
_CURRENCY_ACCOUNT_COLUMNS = ("account_id", "transfer_account_id")
_CURRENCY_COLUMNS = ("currency_id", *_CURRENCY_ACCOUNT_COLUMNS)


class CashboxService(BaseService):
    """
    Cashbox persistence with change notifications.

    Non-goals:
        - Does NOT call session.commit() -- caller controls boundaries.
    """

    def __init__(self, session, topic: Topic | None = None):
        super().__init__(session)
        self._topic = topic or Topic(session)

    # =========================================================================
    # Reads
    # =========================================================================

    def list(
        self,
        project_id: int | None = None,
        is_auxiliary: bool | None = None,
        detailed: bool = False,
    ) -> list[dict[str, Any]]:
        """
        List cashboxes, optionally filtered.

        With ``detailed`` each row is one (cashbox, currency) pair carrying
        the cash account, the transfer account and the currency symbol.
        """
        if detailed:
            stmt = (
                select(
                    Cashbox.id,
                    Cashbox.label,
                    CashboxAccountCurrency.account_id,
                    CashboxAccountCurrency.transfer_account_id,
                    Currency.symbol,
                )
                .join(CashboxAccountCurrency, CashboxAccountCurrency.cash_box_id == Cashbox.id)
                .join(Currency, Currency.id == CashboxAccountCurrency.currency_id)
            )
        else:
            stmt = select(Cashbox.id, Cashbox.label)

        if project_id is not None:
            stmt = stmt.where(Cashbox.project_id == project_id)
        if is_auxiliary is not None:
            stmt = stmt.where(Cashbox.is_auxiliary == bool(is_auxiliary))

        stmt = stmt.order_by(Cashbox.id)
        return [dict(row._mapping) for row in self.session.execute(stmt)]

    def get(self, cashbox_id: int) -> dict[str, Any]:
        """
        A cashbox with the currencies it supports.

        Raises:
            CashboxNotFoundError: If no cashbox has that id.
        """
        return self._to_dict(self._load(cashbox_id))

    # =========================================================================
    # Mutations
    # =========================================================================

    def create(self, data: Mapping[str, Any], user_id: int) -> int:
        """Insert a cashbox and return its id."""
        values = self._clean(data)
        missing = [name for name in _REQUIRED_COLUMNS if values.get(name) is None]
        if missing:
            raise InvalidCashboxError(f"missing {', '.join(missing)}")
        self._check_label_free(values["label"], values["project_id"])

        cashbox = Cashbox(**values)
        self.session.add(cashbox)
        self.session.flush()

        self._publish(Event.CREATE, user_id, cashbox.id)
        logger.info(
            "cashbox_created",
            extra={"cashbox_id": cashbox.id, "label": cashbox.label},
        )
        return cashbox.id

    def update(
        self,
        cashbox_id: int,
        data: Mapping[str, Any],
        user_id: int,
    ) -> dict[str, Any]:
        """Apply ``data`` to a cashbox and return its refreshed view."""
        values = self._clean(data)
        cashbox = self._load(cashbox_id)

        label = values.get("label", cashbox.label)
        project_id = values.get("project_id", cashbox.project_id)
        if (label, project_id) != (cashbox.label, cashbox.project_id):
            self._check_label_free(label, project_id)

        for name, value in values.items():
            setattr(cashbox, name, value)
        self.session.flush()

        self._publish(Event.UPDATE, user_id, cashbox.id)
        logger.info(
            "cashbox_updated",
            extra={"cashbox_id": cashbox.id, "fields": sorted(values)},
        )
        return self._to_dict(cashbox)

    def delete(self, cashbox_id: int, user_id: int) -> None:
        """
        Remove a cashbox and its currency accounts.

        Raises:
            CashboxNotFoundError: If no cashbox has that id.
        """
        cashbox = self._load(cashbox_id)
        self.session.delete(cashbox)
        self.session.flush()

        self._publish(Event.DELETE, user_id, cashbox_id)
        logger.info("cashbox_deleted", extra={"cashbox_id": cashbox_id})

    # =========================================================================
    # Currency accounts
    # =========================================================================

    def list_currencies(self, cashbox_id: int) -> list[dict[str, Any]]:
        """The (currency, account, transfer account) rows of a cashbox."""
        self._load(cashbox_id)
        stmt = (
            select(CashboxAccountCurrency)
            .where(CashboxAccountCurrency.cash_box_id == cashbox_id)
            .order_by(CashboxAccountCurrency.currency_id)
        )
        return [
            self._currency_to_dict(currency)
            for currency in self.session.execute(stmt).scalars()
        ]

    def get_currency(self, cashbox_id: int, currency_id: int) -> dict[str, Any]:
        """
        The accounts a cashbox uses for one currency.

        Raises:
            CashboxNotFoundError: If no cashbox has that id.
            CashboxCurrencyNotFoundError: If the cashbox does not hold that
                currency.
        """
        return self._currency_to_dict(self._load_currency(cashbox_id, currency_id))

    def create_currency(
        self,
        cashbox_id: int,
        data: Mapping[str, Any],
        user_id: int,
    ) -> int:
        """Attach accounts for a new currency to a cashbox and return the row id."""
        values = self._clean_currency(data, _CURRENCY_COLUMNS)
        missing = [name for name in _CURRENCY_COLUMNS if values.get(name) is None]
        if missing:
            raise InvalidCashboxError(f"missing {', '.join(sorted(missing))}")
        cashbox = self._load(cashbox_id)
        if self._find_currency(cashbox_id, values["currency_id"]) is not None:
            raise InvalidCashboxError(
                f"cashbox {cashbox_id} already holds currency {values['currency_id']}"
            )
        self._check_references(values)

        currency = CashboxAccountCurrency(cash_box_id=cashbox_id, **values)
        self.session.add(currency)
        self.session.flush()
        self.session.expire(cashbox, ["currencies"])

        self._publish(Event.UPDATE, user_id, cashbox_id, currency_id=currency.currency_id)
        logger.info(
            "cashbox_currency_created",
            extra={"cashbox_id": cashbox_id, "currency_id": currency.currency_id},
        )
        return currency.id

    def update_currency(
        self,
        cashbox_id: int,
        currency_id: int,
        data: Mapping[str, Any],
        user_id: int,
    ) -> dict[str, Any]:
        """Change the accounts a cashbox uses for ``currency_id``."""
        values = self._clean_currency(data, _CURRENCY_ACCOUNT_COLUMNS)
        currency = self._load_currency(cashbox_id, currency_id)
        self._check_references(values)

        for name, value in values.items():
            setattr(currency, name, value)
        self.session.flush()

        self._publish(Event.UPDATE, user_id, cashbox_id, currency_id=currency_id)
        logger.info(
            "cashbox_currency_updated",
            extra={
                "cashbox_id": cashbox_id,
                "currency_id": currency_id,
                "fields": sorted(values),
            },
        )
        return self._currency_to_dict(currency)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _load(self, cashbox_id: int) -> Cashbox:
        cashbox = self.session.get(Cashbox, cashbox_id)
        if cashbox is None:
            raise CashboxNotFoundError(cashbox_id)
        return cashbox

    def _load_currency(self, cashbox_id: int, currency_id: int) -> CashboxAccountCurrency:
        self._load(cashbox_id)
        currency = self._find_currency(cashbox_id, currency_id)
        if currency is None:
            raise CashboxCurrencyNotFoundError(cashbox_id, currency_id)
        return currency

    def _find_currency(
        self,
        cashbox_id: int,
        currency_id: int,
    ) -> CashboxAccountCurrency | None:
        return self.session.execute(
            select(CashboxAccountCurrency).where(
                CashboxAccountCurrency.cash_box_id == cashbox_id,
                CashboxAccountCurrency.currency_id == currency_id,
            )
        ).scalar_one_or_none()

    def _check_references(self, values: Mapping[str, Any]) -> None:
        currency_id = values.get("currency_id")
        if currency_id is not None and self.session.get(Currency, currency_id) is None:
            raise InvalidCashboxError(f"currency {currency_id} does not exist")
        for name in _CURRENCY_ACCOUNT_COLUMNS:
            account_id = values.get(name)
            if account_id is not None and self.session.get(Account, account_id) is None:
                raise InvalidCashboxError(f"{name} {account_id} does not exist")

    def _check_label_free(self, label: str, project_id: int) -> None:
        existing = self.session.execute(
            select(Cashbox.id).where(
                Cashbox.label == label,
                Cashbox.project_id == project_id,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise InvalidCashboxError(
                f"label {label!r} is already used in project {project_id}"
            )

    def _publish(
        self,
        event: Event,
        user_id: int,
        cashbox_id: int,
        **fields: Any,
    ) -> None:
        self._topic.publish(
            Channel.FINANCE,
            event,
            Entity.CASHBOX,
            user_id=user_id,
            id=cashbox_id,
            **fields,
        )

    @staticmethod
    def _clean(data: Mapping[str, Any]) -> dict[str, Any]:
        unknown = sorted(set(data) - _WRITABLE_COLUMNS)
        if unknown:
            raise InvalidCashboxError(f"unknown columns {', '.join(unknown)}")
        values = dict(data)
        if "is_auxiliary" in values:
            values["is_auxiliary"] = bool(values["is_auxiliary"])
        return values

    @staticmethod
    def _clean_currency(
        data: Mapping[str, Any],
        writable: tuple[str, ...],
    ) -> dict[str, Any]:
        unknown = sorted(set(data) - set(writable))
        if unknown:
            raise InvalidCashboxError(f"unknown columns {', '.join(unknown)}")
        return {name: data[name] for name in writable if name in data}

    @staticmethod
    def _currency_to_dict(currency: CashboxAccountCurrency) -> dict[str, Any]:
        return {
            "id": currency.id,
            "cash_box_id": currency.cash_box_id,
            "currency_id": currency.currency_id,
            "account_id": currency.account_id,
            "transfer_account_id": currency.transfer_account_id,
        }

    @staticmethod
    def _to_dict(cashbox: Cashbox) -> dict[str, Any]:
        return {
            "id": cashbox.id,
            "label": cashbox.label,
            "project_id": cashbox.project_id,
            "is_auxiliary": cashbox.is_auxiliary,
            "currencies": [
                {
                    "currency_id": currency.currency_id,
                    "account_id": currency.account_id,
                    "transfer_account_id": currency.transfer_account_id,
                }
                for currency in cashbox.currencies
            ],
        }
