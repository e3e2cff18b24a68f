"""
Module: voucher_kernel.models.outbox
Responsibility: ORM persistence for domain events awaiting delivery.

Events are appended in the same database transaction as the write that
caused them, so an event exists iff its write committed.  The OutboxRelay
drains pending rows after commit; delivery state (published_at, attempts,
last_error) is the only part of a row that changes.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from voucher_kernel.db.base import Base, UUIDString


class OutboxEvent(Base):
    """A published domain event, delivered at least once to subscribers."""

    __tablename__ = "outbox_events"

    __table_args__ = (
        Index("idx_outbox_pending", "published_at", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)

    # Logical channel (e.g., "finance")
    channel: Mapped[str] = mapped_column(String(50), nullable=False)

    # What happened (e.g., "correct", "create")
    event: Mapped[str] = mapped_column(String(50), nullable=False)

    # What it happened to (e.g., "voucher", "cashbox")
    entity: Mapped[str] = mapped_column(String(50), nullable=False)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    # SHA-256 of the canonical payload
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_error: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return f"<OutboxEvent {self.channel}:{self.event}:{self.entity} {self.id}>"

    @property
    def is_pending(self) -> bool:
        return self.published_at is None

    def message(self) -> dict:
        """The notification body handed to subscribers."""
        return {"event": self.event, "entity": self.entity, **self.payload}
