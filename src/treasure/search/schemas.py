"""Pydantic response models for plan search and detail."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from treasure.db.enums import Difficulty, TimeWindowType


class PlanDifficultyResponse(BaseModel):
    difficulty: Difficulty
    level_number: int
    is_crucial: bool


class PlanPriceResponse(BaseModel):
    currency: str
    base_amount: Decimal
    total: Decimal


class PlanSummaryResponse(BaseModel):
    id: uuid.UUID
    subcategory_id: uuid.UUID
    title: str
    summary: str | None = None
    city: str | None = None
    country: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    is_virtual: bool
    time_window_type: TimeWindowType
    start_at: datetime | None = None
    end_at: datetime | None = None
    difficulties: list[PlanDifficultyResponse]
    prices: list[PlanPriceResponse]
    slots_available: int | None = None


class PlanRuleResponse(BaseModel):
    rule_text: str
    display_order: int


class PlanTaskResponse(BaseModel):
    id: uuid.UUID
    title: str
    details: str | None = None
    crucial: bool


class AgeBandResponse(BaseModel):
    label: str
    min_age: int
    max_age: int


class PlanDetailResponse(PlanSummaryResponse):
    venue_text: str | None = None
    subcategory_name: str
    enrollment_mode: str
    max_participants: int | None = None
    age_bands: list[AgeBandResponse]
    rules: list[PlanRuleResponse]
    tasks: list[PlanTaskResponse]


class SearchResponse(BaseModel):
    items: list[PlanSummaryResponse]
    total: int
    page: int
    per_page: int


class SubcategoryOption(BaseModel):
    id: uuid.UUID
    name: str


class PriceRangeOption(BaseModel):
    currency: str
    min: Decimal
    max: Decimal


class FilterOptionsResponse(BaseModel):
    subcategories: list[SubcategoryOption]
    difficulties: dict[str, list[int]]
    cities: list[str]
    countries: list[str]
    time_window_types: list[str]
    price_ranges: list[PriceRangeOption]
