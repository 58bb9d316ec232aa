"""Plan search, plan detail and the filter dictionary, cached in Redis."""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from treasure.cache import FILTERS_KEY, PlanCache, detail_key, search_key
from treasure.config import Settings, get_settings
from treasure.db.enums import TimeWindowType
from treasure.db.models import GeoFenceRule, Plan, PlanDifficulty, PlanPrice, Subcategory
from treasure.errors import InvalidArgument, NotFound
from treasure.pricing import apply_components
from treasure.search.filters import SearchRequest, build, compose, within_radius
from treasure.search.schemas import (
    AgeBandResponse,
    FilterOptionsResponse,
    PlanDetailResponse,
    PlanDifficultyResponse,
    PlanPriceResponse,
    PlanRuleResponse,
    PlanSummaryResponse,
    PlanTaskResponse,
    PriceRangeOption,
    SearchResponse,
    SubcategoryOption,
)

logger = logging.getLogger(__name__)


def _slots_available(plan: Plan) -> int | None:
    if plan.slot is not None and plan.slot.capacity is not None:
        return max(plan.slot.capacity - plan.slot.reserved, 0)
    if plan.slot is None and plan.max_participants is not None:
        return plan.max_participants
    return None


def _summary_fields(plan: Plan) -> dict[str, Any]:
    return {
        "id": plan.id,
        "subcategory_id": plan.subcategory_id,
        "title": plan.title,
        "summary": plan.summary,
        "city": plan.city,
        "country": plan.country,
        "latitude": plan.latitude,
        "longitude": plan.longitude,
        "is_virtual": plan.is_virtual,
        "time_window_type": plan.time_window_type,
        "start_at": plan.start_at,
        "end_at": plan.end_at,
        "difficulties": [
            PlanDifficultyResponse(difficulty=d.difficulty, level_number=d.level_number, is_crucial=d.is_crucial)
            for d in sorted(plan.difficulties, key=lambda d: (d.difficulty.value, d.level_number))
        ],
        "prices": [
            PlanPriceResponse(
                currency=p.currency,
                base_amount=Decimal(p.base_amount),
                total=apply_components(Decimal(p.base_amount), p.components or []),
            )
            for p in sorted(plan.prices, key=lambda p: p.currency)
        ],
        "slots_available": _slots_available(plan),
    }


def plan_summary(plan: Plan) -> PlanSummaryResponse:
    return PlanSummaryResponse(**_summary_fields(plan))


def plan_detail(plan: Plan) -> PlanDetailResponse:
    return PlanDetailResponse(
        **_summary_fields(plan),
        venue_text=plan.venue_text,
        subcategory_name=plan.subcategory.name,
        enrollment_mode=plan.enrollment_mode.value,
        max_participants=plan.max_participants,
        age_bands=[
            AgeBandResponse(label=b.label, min_age=b.min_age, max_age=b.max_age)
            for b in sorted(plan.subcategory.age_bands, key=lambda b: b.min_age)
        ],
        rules=[PlanRuleResponse(rule_text=r.rule_text, display_order=r.display_order) for r in plan.rules],
        tasks=[
            PlanTaskResponse(id=t.id, title=t.title, details=t.details, crucial=t.crucial)
            for t in sorted(plan.tasks, key=lambda t: t.title)
        ],
    )


class SearchService:
    """Read side of the plan catalog."""

    def __init__(
        self,
        db: AsyncSession,
        cache: PlanCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.cache = cache or PlanCache(None)
        self.settings = settings or get_settings()

    async def effective_geofence(self) -> GeoFenceRule | None:
        """The most recently updated geofence rule, if any."""
        result = await self.db.execute(
            select(GeoFenceRule).order_by(GeoFenceRule.updated_at.desc(), GeoFenceRule.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def search(
        self,
        request: SearchRequest,
        user_age: int | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> SearchResponse:
        if page < 1 or per_page < 1 or per_page > self.settings.search_max_per_page:
            raise InvalidArgument(f"page must be >= 1 and per_page within 1..{self.settings.search_max_per_page}")
        if user_age is not None and user_age < 0:
            raise InvalidArgument("user_age must be >= 0")

        geofence = await self.effective_geofence()
        key = search_key({
            **request.model_dump(mode="json"),
            "user_age": user_age,
            "page": page,
            "per_page": per_page,
            "geofence": _geofence_fingerprint(geofence),
        })
        cached = await self.cache.get(key)
        if cached is not None:
            return SearchResponse.model_validate(cached)

        predicates = build(request, geofence, user_age, default_currency=self.settings.default_currency)
        stmt = select(Plan).where(compose(predicates))
        ordered = stmt.order_by(Plan.start_at.asc().nulls_last(), Plan.created_at.asc(), Plan.id.asc())

        if request.has_radius:
            # Haversine refinement happens in Python, so paginate after it
            plans = [plan for plan in (await self.db.execute(ordered)).scalars() if within_radius(plan, request)]
            total = len(plans)
            page_plans = plans[(page - 1) * per_page: page * per_page]
        else:
            total = (await self.db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
            result = await self.db.execute(ordered.offset((page - 1) * per_page).limit(per_page))
            page_plans = list(result.scalars())

        response = SearchResponse(
            items=[plan_summary(plan) for plan in page_plans],
            total=total,
            page=page,
            per_page=per_page,
        )
        await self.cache.set(key, response.model_dump(mode="json"))
        logger.debug("Search matched %d plans (%d predicates)", total, len(predicates))
        return response

    async def get_plan_detail(self, plan_id: uuid.UUID) -> PlanDetailResponse:
        key = detail_key(plan_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return PlanDetailResponse.model_validate(cached)

        plan = await self.db.get(Plan, plan_id)
        if plan is None:
            raise NotFound(f"Plan {plan_id} not found")
        detail = plan_detail(plan)
        await self.cache.set(key, detail.model_dump(mode="json"))
        return detail

    async def get_filter_options(self) -> FilterOptionsResponse:
        cached = await self.cache.get(FILTERS_KEY)
        if cached is not None:
            return FilterOptionsResponse.model_validate(cached)

        subcategories = await self.db.execute(
            select(Subcategory).where(Subcategory.active.is_(True)).order_by(Subcategory.name)
        )
        levels = await self.db.execute(
            select(PlanDifficulty.difficulty, PlanDifficulty.level_number)
            .distinct()
            .order_by(PlanDifficulty.difficulty, PlanDifficulty.level_number)
        )
        difficulties: dict[str, list[int]] = {}
        for difficulty, level in levels:
            difficulties.setdefault(difficulty.value, []).append(level)

        cities = await self.db.execute(select(Plan.city).where(Plan.city.is_not(None)).distinct().order_by(Plan.city))
        countries = await self.db.execute(
            select(Plan.country).where(Plan.country.is_not(None)).distinct().order_by(Plan.country)
        )
        prices = await self.db.execute(
            select(PlanPrice.currency, func.min(PlanPrice.base_amount), func.max(PlanPrice.base_amount))
            .group_by(PlanPrice.currency)
            .order_by(PlanPrice.currency)
        )

        options = FilterOptionsResponse(
            subcategories=[SubcategoryOption(id=s.id, name=s.name) for s in subcategories.scalars()],
            difficulties=difficulties,
            cities=list(cities.scalars()),
            countries=list(countries.scalars()),
            time_window_types=[t.value for t in TimeWindowType],
            price_ranges=[
                PriceRangeOption(currency=currency, min=Decimal(low), max=Decimal(high))
                for currency, low, high in prices
            ],
        )
        await self.cache.set(FILTERS_KEY, options.model_dump(mode="json"))
        return options


def _geofence_fingerprint(geofence: GeoFenceRule | None) -> dict | None:
    if geofence is None:
        return None
    return {"enabled": geofence.enabled, "scope": geofence.scope.value, "values": sorted(geofence.values or [])}
