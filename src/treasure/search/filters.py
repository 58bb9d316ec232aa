"""Composable plan search predicates.

Each builder takes the request and returns a SQLAlchemy boolean clause, or
None when its criterion is absent. ``build`` collects the non-None clauses
and ``compose`` ANDs them, so the order of predicates never changes the
result set. Age eligibility and the geofence are platform constraints and
apply whenever they are supplied, whatever the request says.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy import and_, exists, false, func, or_, select, true
from sqlalchemy.sql.elements import ColumnElement

from treasure.db.enums import Difficulty, GeoFenceScope, TimeWindowType
from treasure.db.models import AgeBand, GeoFenceRule, Plan, PlanDifficulty, PlanPrice, PlanSlot, subcategory_age_band

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = 111.0

Predicate = ColumnElement[bool]


class SearchRequest(BaseModel):
    """User-facing search criteria. Every field is optional."""

    model_config = ConfigDict(frozen=True)

    subcategory_id: uuid.UUID | None = None
    difficulty: Difficulty | None = None
    level: int | None = Field(default=None, ge=0)
    date_from: datetime | None = None
    date_to: datetime | None = None
    time_window_type: TimeWindowType | None = None
    price_min: Decimal | None = Field(default=None, ge=0)
    price_max: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    city: str | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    radius_km: float | None = Field(default=None, gt=0)
    has_slots: bool | None = None

    @model_validator(mode="after")
    def _check_ranges(self) -> SearchRequest:
        if self.price_min is not None and self.price_max is not None and self.price_min > self.price_max:
            raise ValueError("price_min must not exceed price_max")
        if self.date_from is not None and self.date_to is not None and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        if self.radius_km is not None and (self.lat is None or self.lng is None):
            raise ValueError("radius_km requires lat and lng")
        return self

    @property
    def has_radius(self) -> bool:
        return self.radius_km is not None and self.lat is not None and self.lng is not None


# ── Request predicates ──


def subcategory_predicate(request: SearchRequest, **_: Any) -> Predicate | None:
    if not request.subcategory_id:
        return None
    return Plan.subcategory_id == request.subcategory_id


def difficulty_predicate(request: SearchRequest, **_: Any) -> Predicate | None:
    """Plan has at least one difficulty entry matching tier and minimum level."""
    if request.difficulty is None and request.level is None:
        return None
    conditions = [PlanDifficulty.plan_id == Plan.id]
    if request.difficulty is not None:
        conditions.append(PlanDifficulty.difficulty == request.difficulty)
    if request.level is not None:
        conditions.append(PlanDifficulty.level_number >= request.level)
    return exists().where(*conditions)


def date_range_predicate(request: SearchRequest, **_: Any) -> Predicate | None:
    conditions = []
    if request.date_from is not None:
        conditions.append(Plan.start_at >= request.date_from)
    if request.date_to is not None:
        conditions.append(Plan.end_at <= request.date_to)
    return and_(*conditions) if conditions else None


def time_window_predicate(request: SearchRequest, **_: Any) -> Predicate | None:
    if request.time_window_type is None:
        return None
    return Plan.time_window_type == request.time_window_type


def price_predicate(request: SearchRequest, *, default_currency: str = "INR", **_: Any) -> Predicate | None:
    """Base price within range in the requested currency.

    Plans without a price row in that currency are kept.
    """
    if request.price_min is None and request.price_max is None:
        return None
    currency = (request.currency or default_currency).upper()
    in_currency = [PlanPrice.plan_id == Plan.id, PlanPrice.currency == currency]
    in_range = list(in_currency)
    if request.price_min is not None:
        in_range.append(PlanPrice.base_amount >= request.price_min)
    if request.price_max is not None:
        in_range.append(PlanPrice.base_amount <= request.price_max)
    return or_(exists().where(*in_range), ~exists().where(*in_currency))


def city_predicate(request: SearchRequest, **_: Any) -> Predicate | None:
    if not request.city:
        return None
    return func.lower(Plan.city) == request.city.strip().lower()


def radius_predicate(request: SearchRequest, **_: Any) -> Predicate | None:
    """Bounding box around the point. ``within_radius`` refines after loading."""
    if not request.has_radius:
        return None
    lat_delta = request.radius_km / KM_PER_DEGREE_LAT
    cos_lat = max(math.cos(math.radians(request.lat)), 1e-6)
    lng_delta = min(request.radius_km / (KM_PER_DEGREE_LAT * cos_lat), 180.0)
    return and_(
        Plan.latitude.between(request.lat - lat_delta, request.lat + lat_delta),
        Plan.longitude.between(request.lng - lng_delta, request.lng + lng_delta),
    )


def has_slots_predicate(request: SearchRequest, **_: Any) -> Predicate | None:
    if not request.has_slots:
        return None
    slot_open = exists().where(
        PlanSlot.plan_id == Plan.id,
        or_(PlanSlot.capacity.is_(None), PlanSlot.reserved < PlanSlot.capacity),
    )
    no_counter = ~exists().where(PlanSlot.plan_id == Plan.id)
    return or_(slot_open, and_(no_counter, or_(Plan.max_participants.is_(None), Plan.max_participants > 0)))


# ── Platform predicates ──


def age_predicate(user_age: int | None) -> Predicate | None:
    """Plan's subcategory has an age band containing ``user_age``."""
    if user_age is None:
        return None
    return exists(
        select(subcategory_age_band.c.subcategory_id)
        .join(AgeBand, AgeBand.id == subcategory_age_band.c.age_band_id)
        .where(
            subcategory_age_band.c.subcategory_id == Plan.subcategory_id,
            AgeBand.min_age <= user_age,
            AgeBand.max_age >= user_age,
        )
    )


def geofence_predicate(geofence: GeoFenceRule | None) -> Predicate | None:
    """Restrict to the allow-list when the rule is enabled. An empty list matches nothing."""
    if geofence is None or not geofence.enabled:
        return None
    allowed = [value.strip().lower() for value in geofence.values or [] if value and value.strip()]
    if not allowed:
        return false()
    column = Plan.city if GeoFenceScope(geofence.scope) == GeoFenceScope.CITY else Plan.country
    return func.lower(column).in_(allowed)


REQUEST_PREDICATES: tuple[Callable[..., Predicate | None], ...] = (
    subcategory_predicate,
    difficulty_predicate,
    date_range_predicate,
    time_window_predicate,
    price_predicate,
    city_predicate,
    radius_predicate,
    has_slots_predicate,
)


def build(
    request: SearchRequest,
    geofence: GeoFenceRule | None = None,
    user_age: int | None = None,
    default_currency: str = "INR",
) -> list[Predicate]:
    """All active predicates for a search; absent criteria contribute nothing."""
    predicates = [builder(request, default_currency=default_currency) for builder in REQUEST_PREDICATES]
    predicates.append(age_predicate(user_age))
    predicates.append(geofence_predicate(geofence))
    return [predicate for predicate in predicates if predicate is not None]


def compose(predicates: Sequence[Predicate]) -> Predicate:
    return and_(*predicates) if predicates else true()


# ── Post-load refinement ──


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def within_radius(plan: Plan, request: SearchRequest) -> bool:
    if not request.has_radius:
        return True
    if plan.latitude is None or plan.longitude is None:
        return False
    return haversine_km(request.lat, request.lng, plan.latitude, plan.longitude) <= request.radius_km

