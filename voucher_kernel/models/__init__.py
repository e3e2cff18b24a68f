"""Domain models for the voucher kernel."""

from voucher_kernel.models.account import Account, Currency
from voucher_kernel.models.cashbox import Cashbox, CashboxAccountCurrency
from voucher_kernel.models.outbox import OutboxEvent
from voucher_kernel.models.sequence import SequenceCounter
from voucher_kernel.models.transaction import Transaction, TransactionLine

__all__ = [
    "Account",
    "Currency",
    "Cashbox",
    "CashboxAccountCurrency",
    "OutboxEvent",
    "SequenceCounter",
    "Transaction",
    "TransactionLine",
]
