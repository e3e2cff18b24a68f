"""
Topic -- transactional outbox for domain notifications.

Responsibility:
    ``Topic.publish`` appends an OutboxEvent to the caller's unit of work,
    so a notification exists iff the write that caused it commits.
    ``OutboxRelay.drain`` delivers pending events to in-process subscribers
    after commit and records the delivery outcome on each row.

Architecture position:
    Kernel > Services.  Used by CorrectionService and CashboxService.

Invariants enforced:
    - publish never commits; the event shares the caller's transaction.
    - Every payload is stored with the SHA-256 of its canonical JSON.
    - A failing subscriber never loses the event: attempts and last_error
      are updated and the event stays pending for the next drain.

Failure modes:
    - Subscriber exceptions are caught per event, logged as
      ``outbox_delivery_failed`` and recorded on the row.
    - Database errors while draining propagate to the caller.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.logging_config import get_logger
from voucher_kernel.models.outbox import OutboxEvent
from voucher_kernel.utils.hashing import hash_payload, to_json_safe

logger = get_logger("services.topic")

Handler = Callable[[dict[str, Any]], None]


class Channel(str, Enum):
    """Notification channels."""

    FINANCE = "finance"


class Event(str, Enum):
    """What happened."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    CORRECT = "correct"


class Entity(str, Enum):
    """What it happened to."""

    VOUCHER = "voucher"
    CASHBOX = "cashbox"


class Topic:
    """
    Appends domain events to the outbox.

    Non-goals:
        - Does NOT call session.commit() -- caller controls boundaries.
        - Does NOT deliver events (see OutboxRelay).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def publish(
        self,
        channel: Channel,
        event: Event,
        entity: Entity,
        **fields: Any,
    ) -> OutboxEvent:
        """
        Append an event carrying ``fields`` as its payload.

        Postconditions:
            - The OutboxEvent is flushed and pending (published_at is None).
        """
        payload = to_json_safe(fields)
        outbox_event = OutboxEvent(
            channel=Channel(channel).value,
            event=Event(event).value,
            entity=Entity(entity).value,
            payload=payload,
            payload_hash=hash_payload(payload),
            created_at=self._clock.now(),
            attempts=0,
        )
        self._session.add(outbox_event)
        self._session.flush()

        logger.info(
            "outbox_event_appended",
            extra={
                "outbox_event_id": str(outbox_event.id),
                "channel": outbox_event.channel,
                "event": outbox_event.event,
                "entity": outbox_event.entity,
            },
        )
        return outbox_event


class OutboxRelay:
    """
    Delivers pending outbox events to subscribers.

    Contract:
        Subscribers are called once per pending event on their channel, in
        creation order.  An event is marked published only when every
        subscriber of its channel returned normally.

    Guarantees:
        - At-least-once delivery: an event is redelivered on the next
          drain until it succeeds.
        - Commits its own delivery marks when ``auto_commit`` is True.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._handlers: dict[str, list[Handler]] = {}

    def subscribe(self, channel: Channel, handler: Handler) -> None:
        self._handlers.setdefault(Channel(channel).value, []).append(handler)

    def pending(self, limit: int | None = None) -> list[OutboxEvent]:
        """Pending events, oldest first."""
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.published_at.is_(None))
            .order_by(OutboxEvent.created_at, OutboxEvent.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._session.execute(stmt).scalars())

    def drain(self, limit: int | None = None) -> int:
        """
        Deliver pending events.

        Returns:
            Number of events marked published by this call.
        """
        delivered = 0
        for outbox_event in self.pending(limit):
            if self._deliver(outbox_event):
                delivered += 1

        self._session.flush()
        if self._auto_commit:
            self._session.commit()

        if delivered:
            logger.info("outbox_drained", extra={"delivered": delivered})
        return delivered

    def _deliver(self, outbox_event: OutboxEvent) -> bool:
        message = outbox_event.message()
        outbox_event.attempts += 1
        try:
            for handler in self._handlers.get(outbox_event.channel, []):
                handler(message)
        except Exception as exc:
            outbox_event.last_error = f"{type(exc).__name__}: {exc}"[:1000]
            logger.warning(
                "outbox_delivery_failed",
                extra={
                    "outbox_event_id": str(outbox_event.id),
                    "attempts": outbox_event.attempts,
                },
                exc_info=True,
            )
            return False

        outbox_event.published_at = self._clock.now()
        outbox_event.last_error = None
        logger.debug(
            "outbox_event_delivered",
            extra={"outbox_event_id": str(outbox_event.id)},
        )
        return True
