"""Plan slot reservation.

Reservations are a single conditional UPDATE so two concurrent enrollments
can never both take the last slot.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from treasure.db.models import Plan, PlanSlot
from treasure.errors import CapacityExceeded

logger = logging.getLogger(__name__)


async def _ensure_slot_row(db: AsyncSession, plan: Plan) -> None:
    """Create the slot counter for a capped plan that has none yet."""
    existing = await db.execute(select(PlanSlot.id).where(PlanSlot.plan_id == plan.id))
    if existing.scalar_one_or_none() is not None:
        return
    try:
        async with db.begin_nested():
            db.add(PlanSlot(plan_id=plan.id, capacity=plan.max_participants, reserved=0))
    except IntegrityError:
        # Created concurrently; the conditional update below uses that row
        logger.debug("Slot row for plan %s already created", plan.id)


async def reserve_slots(db: AsyncSession, plan: Plan, count: int) -> int:
    """Reserve ``count`` slots on a capped plan.

    Returns the number of slots reserved (0 for open plans). Raises
    CapacityExceeded when the plan cannot hold ``count`` more participants.
    """
    capacity = plan.slot.capacity if plan.slot is not None else plan.max_participants
    if capacity is None:
        return 0
    if plan.slot is None:
        await _ensure_slot_row(db, plan)

    result = await db.execute(
        update(PlanSlot)
        .where(
            PlanSlot.plan_id == plan.id,
            PlanSlot.capacity.is_not(None),
            PlanSlot.reserved + count <= PlanSlot.capacity,
        )
        .values(reserved=PlanSlot.reserved + count)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise CapacityExceeded(f"Plan {plan.id} has no capacity for {count} more participant(s)")
    return count


async def release_slots(db: AsyncSession, plan_id: uuid.UUID, count: int) -> None:
    """Give back reserved slots. The counter never drops below zero."""
    if count <= 0:
        return
    await db.execute(
        update(PlanSlot)
        .where(PlanSlot.plan_id == plan_id)
        .values(reserved=case((PlanSlot.reserved >= count, PlanSlot.reserved - count), else_=0))
        .execution_options(synchronize_session=False)
    )


async def slots_available(db: AsyncSession, plan_id: uuid.UUID) -> int | None:
    """Remaining slots, or None for an open plan."""
    result = await db.execute(
        select(PlanSlot).where(PlanSlot.plan_id == plan_id).execution_options(populate_existing=True)
    )
    slot = result.scalar_one_or_none()
    if slot is None or slot.capacity is None:
        return None
    return max(slot.capacity - slot.reserved, 0)
