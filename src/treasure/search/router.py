"""Plan search, detail and filter dictionary endpoints."""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from treasure.dependencies import get_search_service
from treasure.search.filters import SearchRequest
from treasure.search.schemas import FilterOptionsResponse, PlanDetailResponse, SearchResponse
from treasure.search.service import SearchService

router = APIRouter(prefix="/api/v1", tags=["Plans"])


@router.get("/plans/search", response_model=SearchResponse)
async def search_plans(
    criteria: Annotated[SearchRequest, Query()],
    user_age: int | None = Query(None, ge=0, le=150),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    service: SearchService = Depends(get_search_service),
) -> SearchResponse:
    """Search plans. Age eligibility and the active geofence always apply."""
    return await service.search(criteria, user_age=user_age, page=page, per_page=per_page)


@router.get("/plans/filters", response_model=FilterOptionsResponse)
async def get_filter_options(service: SearchService = Depends(get_search_service)) -> FilterOptionsResponse:
    return await service.get_filter_options()


@router.get("/plans/{plan_id}", response_model=PlanDetailResponse)
async def get_plan(plan_id: uuid.UUID, service: SearchService = Depends(get_search_service)) -> PlanDetailResponse:
    return await service.get_plan_detail(plan_id)
