"""Enrollment lifecycle state machine.

Status: PENDING -> CONFIRMED | REJECTED | CANCELLED, CONFIRMED -> CANCELLED.
Payment (orthogonal): NONE -> AWAITING | PAID, AWAITING -> PAID | NONE,
PAID -> REFUNDED. REFUNDED, REJECTED and CANCELLED are terminal.
"""

from __future__ import annotations

from treasure.db.enums import EnrollmentStatus, EnrollmentType, PaymentStatus
from treasure.errors import InvalidArgument, InvalidState

VALID_TRANSITIONS: dict[EnrollmentStatus, list[EnrollmentStatus]] = {
    EnrollmentStatus.PENDING: [
        EnrollmentStatus.CONFIRMED,
        EnrollmentStatus.REJECTED,
        EnrollmentStatus.CANCELLED,
    ],
    EnrollmentStatus.CONFIRMED: [EnrollmentStatus.CANCELLED],
    EnrollmentStatus.REJECTED: [],
    EnrollmentStatus.CANCELLED: [],
}

VALID_PAYMENT_TRANSITIONS: dict[PaymentStatus, list[PaymentStatus]] = {
    PaymentStatus.NONE: [PaymentStatus.AWAITING, PaymentStatus.PAID],
    PaymentStatus.AWAITING: [PaymentStatus.PAID, PaymentStatus.NONE],
    PaymentStatus.PAID: [PaymentStatus.REFUNDED],
    PaymentStatus.REFUNDED: [],
}

TERMINAL_STATUSES = frozenset({EnrollmentStatus.REJECTED, EnrollmentStatus.CANCELLED})

# External payment statuses; anything else maps to NONE
_EXTERNAL_PAYMENT_STATUSES = {
    "PAID": PaymentStatus.PAID,
    "REFUNDED": PaymentStatus.REFUNDED,
    "AWAITING": PaymentStatus.AWAITING,
}


def validate_transition(current: EnrollmentStatus, target: EnrollmentStatus) -> None:
    """Raise InvalidState unless current -> target is a defined status transition."""
    valid = VALID_TRANSITIONS.get(EnrollmentStatus(current), [])
    if target not in valid:
        raise InvalidState(
            f"Invalid transition: {EnrollmentStatus(current).value} -> {EnrollmentStatus(target).value}. "
            f"Valid transitions: {[s.value for s in valid]}"
        )


def validate_payment_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    """Raise InvalidState unless current -> target is a defined payment transition."""
    valid = VALID_PAYMENT_TRANSITIONS.get(PaymentStatus(current), [])
    if target not in valid:
        raise InvalidState(
            f"Invalid payment transition: {PaymentStatus(current).value} -> {PaymentStatus(target).value}. "
            f"Valid transitions: {[s.value for s in valid]}"
        )


def map_external_payment_status(raw: str | None) -> PaymentStatus:
    """Map a payment-service status string onto the payment axis."""
    return _EXTERNAL_PAYMENT_STATUSES.get((raw or "").strip().upper(), PaymentStatus.NONE)


def validate_team(
    enrollment_type: EnrollmentType,
    team_name: str | None,
    team_size: int | None,
) -> tuple[str | None, int | None]:
    """Check team fields and return the values to store.

    TEAM needs a non-blank name and size >= 2. INDIVIDUAL never stores team fields.
    """
    if enrollment_type == EnrollmentType.TEAM:
        if team_name is None or not team_name.strip():
            raise InvalidArgument("Team name is required for team enrollment")
        if team_size is None or team_size < 2:
            raise InvalidArgument("Team size must be at least 2 for team enrollment")
        return team_name.strip(), team_size
    return None, None


def slots_needed(enrollment_type: EnrollmentType, team_size: int | None) -> int:
    """Slots a new enrollment occupies: the whole team, or one participant."""
    if enrollment_type == EnrollmentType.TEAM and team_size:
        return team_size
    return 1
