"""
Kernel services -- the imperative shell around the pure domain.

CorrectionService owns its transaction boundary; every other service
flushes inside the caller's transaction.
"""

from voucher_kernel.services.cashbox_service import CashboxService
from voucher_kernel.services.correction_service import CorrectionService
from voucher_kernel.services.locks import RecordLockRegistry
from voucher_kernel.services.sequence_service import SequenceService
from voucher_kernel.services.topic import Channel, Entity, Event, OutboxRelay, Topic
from voucher_kernel.services.transaction_writer import TransactionWriter

__all__ = [
    "CashboxService",
    "CorrectionService",
    "RecordLockRegistry",
    "SequenceService",
    "Channel",
    "Entity",
    "Event",
    "OutboxRelay",
    "Topic",
    "TransactionWriter",
]
