"""Inbound event handlers: payment status updates and user lifecycle events.

Malformed or inapplicable messages are logged and dropped. Handlers return
True when the message was applied and False when it was dropped; either
way the caller acknowledges it.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from treasure.enrollment.service import EnrollmentService
from treasure.enrollment.state_machine import map_external_payment_status
from treasure.errors import InvalidState, NotFound
from treasure.events import topics
from treasure.leaderboard.service import seed_user_statistics

logger = logging.getLogger(__name__)

USER_CREATED = "USER_CREATED"
USER_LIFECYCLE_EVENTS = frozenset({"USER_UPDATED", "USER_SUSPENDED", "USER_REACTIVATED", "USER_DELETED"})


def decode_message(fields: dict[str, Any]) -> dict[str, Any] | None:
    """Decode a stream entry. Returns None if the ``data`` field is not a JSON object."""
    raw = fields.get("data")
    if raw is None:
        return {key: value for key, value in fields.items() if key not in ("event", "key")}
    if isinstance(raw, bytes):
        raw = raw.decode()
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _parse_uuid(value: Any) -> uuid.UUID | None:  # noqa: ANN401
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


async def handle_payment_status(enrollments: EnrollmentService, data: dict[str, Any]) -> bool:
    """Apply ``payment.status.updated {enrollmentId, status}``."""
    enrollment_id = _parse_uuid(data.get("enrollmentId"))
    raw_status = data.get("status")
    if enrollment_id is None or not isinstance(raw_status, str):
        logger.warning("Dropping malformed payment status message: %s", data)
        return False

    new_status = map_external_payment_status(raw_status)
    try:
        await enrollments.on_payment_status_changed(enrollment_id, new_status)
    except (NotFound, InvalidState) as exc:
        logger.warning("Dropping payment status %s for %s: %s", raw_status, enrollment_id, exc.message)
        return False
    return True


async def handle_user_event(db: AsyncSession, data: dict[str, Any]) -> bool:
    """Seed statistics on USER_CREATED; other lifecycle events are recorded only."""
    event_type = data.get("eventType")
    user_id = _parse_uuid(data.get("userReferenceId"))
    if not isinstance(event_type, str) or user_id is None:
        logger.warning("Dropping malformed user event: %s", data)
        return False

    if event_type == USER_CREATED:
        await seed_user_statistics(db, user_id)
        await db.commit()
        logger.info("Seeded statistics for user %s", user_id)
        return True
    if event_type in USER_LIFECYCLE_EVENTS:
        logger.info("User %s lifecycle event %s", user_id, event_type)
        return True

    logger.warning("Dropping unknown user event type %s for %s", event_type, user_id)
    return False


class InboundDispatcher:
    """Routes decoded stream entries to their handler with a fresh session."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        enrollment_factory: Callable[[AsyncSession], EnrollmentService],
    ) -> None:
        self.session_factory = session_factory
        self.enrollment_factory = enrollment_factory

    async def dispatch(self, topic: str, fields: dict[str, Any]) -> bool:
        data = decode_message(fields)
        if data is None:
            logger.warning("Dropping undecodable message on %s: %s", topic, fields)
            return False

        async with self.session_factory() as db:
            if topic == topics.PAYMENT_STATUS_UPDATED:
                return await handle_payment_status(self.enrollment_factory(db), data)
            if topic == topics.USER_EVENTS:
                return await handle_user_event(db, data)

        logger.warning("No handler for topic %s", topic)
        return False
