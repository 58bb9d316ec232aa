"""ORM models for the catalog, enrollment, progression and leaderboard tables.

Enum domains are stored as non-native enums with CHECK constraints so the
same metadata runs on PostgreSQL and SQLite.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from treasure.db.base import Base, JSONType
from treasure.db.enums import (
    Difficulty,
    EnrollmentMode,
    EnrollmentStatus,
    EnrollmentType,
    GeoFenceScope,
    LeaderboardType,
    PaymentStatus,
    PolicyScope,
    TaskStatus,
    TimeWindowType,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    """Non-native enum type with a named CHECK constraint."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=24,
        validate_strings=True,
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


subcategory_age_band = Table(
    "subcategory_age_band",
    Base.metadata,
    Column("subcategory_id", Uuid, ForeignKey("subcategory.id", ondelete="CASCADE"), primary_key=True),
    Column("age_band_id", Uuid, ForeignKey("age_band.id", ondelete="RESTRICT"), primary_key=True),
)


class AgeBand(Base):
    """Inclusive age range."""

    __tablename__ = "age_band"
    __table_args__ = (
        CheckConstraint("min_age >= 0 AND max_age >= min_age", name="ck_age_span"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    label: Mapped[str] = mapped_column(String(64), nullable=False)
    min_age: Mapped[int] = mapped_column(Integer, nullable=False)
    max_age: Mapped[int] = mapped_column(Integer, nullable=False)


class Subcategory(Base):
    __tablename__ = "subcategory"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    age_bands: Mapped[list[AgeBand]] = relationship(secondary=subcategory_age_band, lazy="selectin")


class Plan(Base):
    """A schedulable hunt. Immutable once published except for slot counters."""

    __tablename__ = "plan"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subcategory_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("subcategory.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    venue_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    country: Mapped[str | None] = mapped_column(String(128), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_virtual: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    time_window_type: Mapped[TimeWindowType] = mapped_column(
        enum_column(TimeWindowType, "time_window_type"), nullable=False
    )
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)  # NULL => open
    enrollment_mode: Mapped[EnrollmentMode] = mapped_column(
        enum_column(EnrollmentMode, "plan_enrollment_mode"),
        nullable=False,
        default=EnrollmentMode.PAY_TO_ENROLL,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    subcategory: Mapped[Subcategory] = relationship(lazy="selectin")
    difficulties: Mapped[list[PlanDifficulty]] = relationship(
        back_populates="plan", cascade="all, delete-orphan", lazy="selectin"
    )
    rules: Mapped[list[PlanRule]] = relationship(
        back_populates="plan", cascade="all, delete-orphan", lazy="selectin", order_by="PlanRule.display_order"
    )
    tasks: Mapped[list[Task]] = relationship(back_populates="plan", cascade="all, delete-orphan", lazy="selectin")
    prices: Mapped[list[PlanPrice]] = relationship(
        back_populates="plan", cascade="all, delete-orphan", lazy="selectin"
    )
    slot: Mapped[PlanSlot | None] = relationship(
        back_populates="plan", cascade="all, delete-orphan", lazy="selectin", uselist=False
    )


class PlanDifficulty(Base):
    __tablename__ = "plan_difficulty"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("plan.id", ondelete="CASCADE"), nullable=False, index=True
    )
    difficulty: Mapped[Difficulty] = mapped_column(enum_column(Difficulty, "plan_difficulty_tier"), nullable=False)
    level_number: Mapped[int] = mapped_column(Integer, nullable=False)
    is_crucial: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    plan: Mapped[Plan] = relationship(back_populates="difficulties")


class PlanRule(Base):
    __tablename__ = "plan_rule"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("plan.id", ondelete="CASCADE"), nullable=False)
    rule_text: Mapped[str] = mapped_column(Text, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    plan: Mapped[Plan] = relationship(back_populates="rules")


class Task(Base):
    __tablename__ = "task"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("plan.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    crucial: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    plan: Mapped[Plan] = relationship(back_populates="tasks")


class PlanPrice(Base):
    """Base price in one currency plus its fee/tax components.

    ``components`` is a list of ``{"type": "GST", "calc": "PCT"|"FLAT", "value": 18}``.
    """

    __tablename__ = "plan_price"
    __table_args__ = (UniqueConstraint("plan_id", "currency", name="uq_plan_price_plan_currency"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("plan.id", ondelete="CASCADE"), nullable=False, index=True
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    base_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    components: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list, nullable=False)

    plan: Mapped[Plan] = relationship(back_populates="prices")


class PlanSlot(Base):
    """Slot counter. ``capacity`` NULL means open enrollment."""

    __tablename__ = "plan_slot"
    __table_args__ = (CheckConstraint("reserved >= 0", name="ck_plan_slot_reserved"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("plan.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reserved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    plan: Mapped[Plan] = relationship(back_populates="slot")


class GeoFenceRule(Base):
    __tablename__ = "geofence_rule"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False)
    scope: Mapped[GeoFenceScope] = mapped_column(enum_column(GeoFenceScope, "geofence_scope"), nullable=False)
    values: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Enrollment
# ---------------------------------------------------------------------------


class Enrollment(Base):
    """A user's or team's registration for a plan. Never physically deleted."""

    __tablename__ = "enrollment"
    __table_args__ = (
        CheckConstraint(
            "enrollment_type <> 'TEAM' OR (team_name IS NOT NULL AND team_size >= 2)",
            name="ck_enrollment_team_fields",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("plan.id"), nullable=False, index=True)
    mode: Mapped[EnrollmentMode] = mapped_column(enum_column(EnrollmentMode, "enrollment_mode"), nullable=False)
    status: Mapped[EnrollmentStatus] = mapped_column(
        enum_column(EnrollmentStatus, "enrollment_status"), nullable=False, default=EnrollmentStatus.PENDING
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        enum_column(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.NONE
    )
    enrollment_type: Mapped[EnrollmentType] = mapped_column(
        enum_column(EnrollmentType, "enrollment_type"), nullable=False
    )
    registration_id: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    team_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    team_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    slots_reserved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    approval_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    enrolled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    plan: Mapped[Plan] = relationship(lazy="selectin")


class RegistrationSequence(Base):
    """Per (month, type, plan number) counter behind registration ids."""

    __tablename__ = "registration_sequence"
    __table_args__ = (
        UniqueConstraint("month_year", "enrollment_type", "plan_number", name="uq_registration_sequence_scope"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    month_year: Mapped[str] = mapped_column(String(4), nullable=False)
    enrollment_type: Mapped[EnrollmentType] = mapped_column(
        enum_column(EnrollmentType, "registration_enrollment_type"), nullable=False
    )
    plan_number: Mapped[str] = mapped_column(String(2), nullable=False)
    current_sequence: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class TaskProgress(Base):
    __tablename__ = "task_progress"
    __table_args__ = (UniqueConstraint("enrollment_id", "task_id", name="uq_task_progress_enrollment_task"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    enrollment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("enrollment.id", ondelete="CASCADE"), nullable=False, index=True
    )
    task_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("task.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[TaskStatus] = mapped_column(
        enum_column(TaskStatus, "task_status"), nullable=False, default=TaskStatus.LOCKED
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Progression
# ---------------------------------------------------------------------------


class UserLevel(Base):
    __tablename__ = "user_level"
    __table_args__ = (UniqueConstraint("user_id", "difficulty", name="uq_user_level_user_difficulty"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    difficulty: Mapped[Difficulty] = mapped_column(enum_column(Difficulty, "user_level_difficulty"), nullable=False)
    highest_level_reached: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class ProgressionPolicy(Base):
    """Scoped progression rules. GLOBAL rows carry no scope_ref."""

    __tablename__ = "progression_policy"
    __table_args__ = (
        CheckConstraint(
            "(scope = 'GLOBAL' AND scope_ref IS NULL) OR (scope <> 'GLOBAL' AND scope_ref IS NOT NULL)",
            name="ck_progression_policy_scope_ref",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="default")
    scope: Mapped[PolicyScope] = mapped_column(enum_column(PolicyScope, "policy_scope"), nullable=False)
    scope_ref: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    policy: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Statistics & Leaderboard (derived)
# ---------------------------------------------------------------------------


class UserStatistics(Base):
    __tablename__ = "user_statistics"
    __table_args__ = (UniqueConstraint("user_id", "difficulty", name="uq_user_statistics_user_difficulty"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    difficulty: Mapped[Difficulty] = mapped_column(
        enum_column(Difficulty, "user_statistics_difficulty"), nullable=False
    )
    total_plans_enrolled: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_plans_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_tasks_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    highest_level_reached: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_score: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)
    score_reached_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    current_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    best_rank_achieved: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class LeaderboardEntry(Base):
    __tablename__ = "leaderboard_entry"
    __table_args__ = (
        UniqueConstraint("leaderboard_type", "difficulty", "user_id", name="uq_leaderboard_type_difficulty_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    difficulty: Mapped[Difficulty] = mapped_column(enum_column(Difficulty, "leaderboard_difficulty"), nullable=False)
    leaderboard_type: Mapped[LeaderboardType] = mapped_column(
        enum_column(LeaderboardType, "leaderboard_type"), nullable=False, default=LeaderboardType.OVERALL
    )
    rank_position: Mapped[int] = mapped_column(Integer, nullable=False)
    total_score: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    plans_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tasks_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    score_reached_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Messaging
# ---------------------------------------------------------------------------


class OutboxEvent(Base):
    """Domain event written in the same transaction as the state change."""

    __tablename__ = "outbox_event"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    topic: Mapped[str] = mapped_column(String(64), nullable=False)
    key: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
