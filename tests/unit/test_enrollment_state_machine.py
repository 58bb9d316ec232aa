"""Unit tests for the enrollment state machine."""

from __future__ import annotations

import pytest

from treasure.db.enums import EnrollmentStatus, EnrollmentType, PaymentStatus
from treasure.enrollment.state_machine import (
    TERMINAL_STATUSES,
    VALID_PAYMENT_TRANSITIONS,
    VALID_TRANSITIONS,
    map_external_payment_status,
    slots_needed,
    validate_payment_transition,
    validate_team,
    validate_transition,
)
from treasure.errors import InvalidArgument, InvalidState


class TestStatusTransitions:
    """Status axis: PENDING -> CONFIRMED | REJECTED | CANCELLED, CONFIRMED -> CANCELLED."""

    def test_every_status_has_an_entry(self):
        assert set(VALID_TRANSITIONS) == set(EnrollmentStatus)

    def test_pending_transitions(self):
        for target in (EnrollmentStatus.CONFIRMED, EnrollmentStatus.REJECTED, EnrollmentStatus.CANCELLED):
            validate_transition(EnrollmentStatus.PENDING, target)

    def test_confirmed_can_only_cancel(self):
        validate_transition(EnrollmentStatus.CONFIRMED, EnrollmentStatus.CANCELLED)
        with pytest.raises(InvalidState, match="Invalid transition"):
            validate_transition(EnrollmentStatus.CONFIRMED, EnrollmentStatus.REJECTED)
        with pytest.raises(InvalidState):
            validate_transition(EnrollmentStatus.CONFIRMED, EnrollmentStatus.PENDING)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_states_are_closed(self, terminal):
        assert VALID_TRANSITIONS[terminal] == []
        for target in EnrollmentStatus:
            with pytest.raises(InvalidState):
                validate_transition(terminal, target)

    def test_self_transition_rejected(self):
        with pytest.raises(InvalidState):
            validate_transition(EnrollmentStatus.PENDING, EnrollmentStatus.PENDING)


class TestPaymentTransitions:
    """Payment axis is independent of status."""

    def test_every_payment_status_has_an_entry(self):
        assert set(VALID_PAYMENT_TRANSITIONS) == set(PaymentStatus)

    def test_none_to_paid_allowed(self):
        validate_payment_transition(PaymentStatus.NONE, PaymentStatus.PAID)

    def test_awaiting_can_fall_back_to_none(self):
        validate_payment_transition(PaymentStatus.AWAITING, PaymentStatus.NONE)

    def test_refund_only_after_paid(self):
        validate_payment_transition(PaymentStatus.PAID, PaymentStatus.REFUNDED)
        with pytest.raises(InvalidState, match="Invalid payment transition"):
            validate_payment_transition(PaymentStatus.NONE, PaymentStatus.REFUNDED)

    def test_refunded_is_terminal(self):
        for target in PaymentStatus:
            with pytest.raises(InvalidState):
                validate_payment_transition(PaymentStatus.REFUNDED, target)

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("PAID", PaymentStatus.PAID),
            ("paid", PaymentStatus.PAID),
            ("REFUNDED", PaymentStatus.REFUNDED),
            ("AWAITING", PaymentStatus.AWAITING),
            ("FAILED", PaymentStatus.NONE),
            ("", PaymentStatus.NONE),
            (None, PaymentStatus.NONE),
        ],
    )
    def test_external_status_mapping(self, raw, expected):
        assert map_external_payment_status(raw) == expected


class TestTeamValidation:
    def test_team_requires_name(self):
        with pytest.raises(InvalidArgument, match="Team name"):
            validate_team(EnrollmentType.TEAM, "  ", 4)

    def test_team_requires_two_members(self):
        with pytest.raises(InvalidArgument, match="Team size"):
            validate_team(EnrollmentType.TEAM, "Foxes", 1)
        with pytest.raises(InvalidArgument):
            validate_team(EnrollmentType.TEAM, "Foxes", None)

    def test_team_name_is_trimmed(self):
        assert validate_team(EnrollmentType.TEAM, " Foxes ", 4) == ("Foxes", 4)

    def test_individual_drops_team_fields(self):
        assert validate_team(EnrollmentType.INDIVIDUAL, "Foxes", 4) == (None, None)

    def test_slots_needed(self):
        assert slots_needed(EnrollmentType.INDIVIDUAL, None) == 1
        assert slots_needed(EnrollmentType.TEAM, 4) == 4
