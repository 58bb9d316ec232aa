"""Registration id generation.

Format: ``TH-MMYY-IND-PPSSSS`` or ``TH-MMYY-TEAM-PPSSSS`` where PP is a
two-digit plan number derived from the plan UUID and SSSS is a per
(month, type, plan number) sequence. Plans that share a plan number share
the counter, and the sequence row is locked while it is incremented, so
ids never collide across plans.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from treasure.db.enums import EnrollmentType
from treasure.db.models import RegistrationSequence
from treasure.errors import InvalidArgument, Unavailable

logger = logging.getLogger(__name__)

REGISTRATION_ID_PATTERN = re.compile(r"^(?P<prefix>[A-Z]+)-(?P<month_year>\d{4})-(?P<type>IND|TEAM)-(?P<number>\d{6,})$")

_TYPE_CODES = {EnrollmentType.INDIVIDUAL: "IND", EnrollmentType.TEAM: "TEAM"}
_CODE_TYPES = {code: enrollment_type for enrollment_type, code in _TYPE_CODES.items()}


def plan_number(plan_id: uuid.UUID) -> str:
    """Two-digit plan number: last byte of the UUID, mod 100."""
    return f"{int(plan_id.hex[-2:], 16) % 100:02d}"


def format_registration_id(
    prefix: str,
    month_year: str,
    enrollment_type: EnrollmentType,
    plan_id: uuid.UUID,
    sequence: int,
) -> str:
    return f"{prefix}-{month_year}-{_TYPE_CODES[EnrollmentType(enrollment_type)]}-{plan_number(plan_id)}{sequence:04d}"


def is_valid_registration_id(registration_id: str | None) -> bool:
    return bool(registration_id) and REGISTRATION_ID_PATTERN.match(registration_id) is not None


def parse_registration_id(registration_id: str) -> dict:
    """Split a registration id into its parts. Raises InvalidArgument if malformed."""
    match = REGISTRATION_ID_PATTERN.match(registration_id or "")
    if match is None:
        raise InvalidArgument(f"Invalid registration ID format: {registration_id}")
    return {
        "prefix": match["prefix"],
        "month_year": match["month_year"],
        "enrollment_type": _CODE_TYPES[match["type"]],
        "plan_number": match["number"][:2],
        "sequence": int(match["number"][2:]),
    }


async def next_registration_id(
    db: AsyncSession,
    enrollment_type: EnrollmentType,
    plan_id: uuid.UUID,
    prefix: str = "TH",
    now: datetime | None = None,
    attempts: int = 3,
) -> str:
    """Allocate the next registration id inside the caller's transaction."""
    month_year = (now or datetime.now(timezone.utc)).strftime("%m%y")
    number = plan_number(plan_id)

    for _ in range(attempts):
        result = await db.execute(
            select(RegistrationSequence)
            .where(
                RegistrationSequence.month_year == month_year,
                RegistrationSequence.enrollment_type == enrollment_type,
                RegistrationSequence.plan_number == number,
            )
            .with_for_update()
        )
        sequence = result.scalar_one_or_none()
        if sequence is None:
            sequence = RegistrationSequence(
                month_year=month_year,
                enrollment_type=enrollment_type,
                plan_number=number,
                current_sequence=0,
            )
            try:
                async with db.begin_nested():
                    db.add(sequence)
            except IntegrityError:
                # Another enrollment created the row first; lock it on the next pass
                continue

        sequence.current_sequence += 1
        await db.flush()
        registration_id = format_registration_id(
            prefix, month_year, enrollment_type, plan_id, sequence.current_sequence
        )
        logger.info(
            "Generated registration ID %s (type=%s, plan=%s)", registration_id, enrollment_type.value, plan_id
        )
        return registration_id

    raise Unavailable("Could not allocate a registration sequence")
