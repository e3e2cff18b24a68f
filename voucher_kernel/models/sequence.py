"""
Module: voucher_kernel.models.sequence
Responsibility: Named counter rows backing SequenceService.

Each row represents a named sequence with its current value.  Row-level
locking on this table is the sole source of truth for the next value.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from voucher_kernel.db.base import Base


class SequenceCounter(Base):
    """Sequence counter table."""

    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "transaction")
    name: Mapped[str] = mapped_column(String(50), primary_key=True)

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
