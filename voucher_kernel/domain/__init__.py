"""
Pure domain layer for the voucher kernel.

Zero I/O: DTOs, correction rules and the injectable clock.
"""

from voucher_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from voucher_kernel.domain.dtos import (
    CorrectionDetails,
    CorrectionRequest,
    CorrectionResult,
    TransactionHeader,
    TransactionRow,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CorrectionDetails",
    "CorrectionRequest",
    "CorrectionResult",
    "TransactionHeader",
    "TransactionRow",
]
