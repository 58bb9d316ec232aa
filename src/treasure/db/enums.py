"""Enumerated domains shared by models, services and schemas."""

from __future__ import annotations

import enum


class Difficulty(str, enum.Enum):
    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"


class EnrollmentMode(str, enum.Enum):
    PAY_TO_ENROLL = "PAY_TO_ENROLL"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"


class EnrollmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    NONE = "NONE"
    AWAITING = "AWAITING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"


class EnrollmentType(str, enum.Enum):
    INDIVIDUAL = "INDIVIDUAL"
    TEAM = "TEAM"


class TaskStatus(str, enum.Enum):
    LOCKED = "LOCKED"
    STARTED = "STARTED"
    DONE = "DONE"


class TimeWindowType(str, enum.Enum):
    FIXED = "FIXED"
    FLEXIBLE = "FLEXIBLE"


class PolicyScope(str, enum.Enum):
    GLOBAL = "GLOBAL"
    COHORT = "COHORT"
    USER = "USER"


class GeoFenceScope(str, enum.Enum):
    CITY = "CITY"
    COUNTRY = "COUNTRY"


class LeaderboardType(str, enum.Enum):
    OVERALL = "OVERALL"
