"""Transactional outbox.

Services enqueue events on the same session as their state change, commit,
then relay. A relay failure leaves rows pending for the worker to redeliver,
so the durable state change never depends on the bus being reachable.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from treasure.db.models import OutboxEvent
from treasure.errors import Unavailable
from treasure.events.publisher import EventPublisher

logger = logging.getLogger(__name__)


def claim_pending(limit: int):
    """Oldest undelivered events, row-locked so concurrent relays skip each other's batch."""
    return (
        select(OutboxEvent)
        .where(OutboxEvent.delivered_at.is_(None))
        .order_by(OutboxEvent.created_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
    )


class Outbox:
    """Stage events in the database and relay them through a publisher."""

    def __init__(self, publisher: EventPublisher, batch_size: int = 100) -> None:
        self.publisher = publisher
        self.batch_size = batch_size

    def enqueue(self, db: AsyncSession, topic: str, key: str, payload: dict[str, Any]) -> OutboxEvent:
        """Add an event to the current transaction. Nothing is published yet."""
        body = {
            "event": topic,
            "v": 1,
            **payload,
            "ts": datetime.now(timezone.utc).isoformat(),
        }
        # UUIDs, Decimals and datetimes are stored as strings
        event = OutboxEvent(topic=topic, key=key, payload=json.loads(json.dumps(body, default=str)))
        db.add(event)
        return event

    async def relay(self, db: AsyncSession) -> int:
        """Publish pending events in creation order. Returns the number delivered.

        Stops at the first Unavailable so ordering per key is preserved. Claimed
        rows stay locked until the commit, so a concurrent relay never
        publishes the same event.
        """
        result = await db.execute(claim_pending(self.batch_size))
        pending = list(result.scalars())
        delivered = 0
        for event in pending:
            try:
                await self.publisher.publish(event.topic, event.key, event.payload)
            except Unavailable as exc:
                event.attempts += 1
                event.last_error = str(exc)
                logger.warning("Outbox relay paused at %s (%s): %s", event.id, event.topic, exc)
                break
            event.attempts += 1
            event.delivered_at = datetime.now(timezone.utc)
            delivered += 1
        await db.commit()
        return delivered

    async def relay_quietly(self, db: AsyncSession) -> int:
        """Relay after a committed operation; failures are logged, never raised."""
        try:
            return await self.relay(db)
        except Exception:
            logger.warning("Outbox relay failed; events stay pending", exc_info=True)
            await db.rollback()
            return 0
