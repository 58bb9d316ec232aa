"""Plan search against seeded catalog data."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import and_, select

from conftest import seed_plan, seed_subcategory
from treasure.db.enums import Difficulty, GeoFenceScope, TimeWindowType
from treasure.db.models import GeoFenceRule, Plan
from treasure.errors import InvalidArgument, NotFound
from treasure.search.filters import SearchRequest, build
from treasure.search.service import SearchService

PUNE = (18.5204, 73.8567)
MUMBAI = (19.0760, 72.8777)


@pytest.fixture
async def catalog(session_maker):
    """Four plans across cities, tiers and prices."""
    teens = await seed_subcategory(session_maker, "Teen Trails", age_range=(12, 17))
    adults = await seed_subcategory(session_maker, "Night Quests", age_range=(18, 60))
    return {
        "pune_advanced": await seed_plan(
            session_maker, adults, title="Fort Secrets", city="Pune", latitude=PUNE[0], longitude=PUNE[1],
            difficulties=[(Difficulty.ADVANCED, 2)], price=Decimal("900.00"),
        ),
        "pune_beginner": await seed_plan(
            session_maker, teens, title="Garden Clues", city="Pune", latitude=PUNE[0], longitude=PUNE[1],
            difficulties=[(Difficulty.BEGINNER, 1)], price=Decimal("200.00"),
            time_window_type=TimeWindowType.FLEXIBLE,
        ),
        "mumbai_advanced": await seed_plan(
            session_maker, adults, title="Dockside Cipher", city="Mumbai", latitude=MUMBAI[0], longitude=MUMBAI[1],
            difficulties=[(Difficulty.ADVANCED, 1)], price=Decimal("1500.00"),
        ),
        "goa_free": await seed_plan(
            session_maker, adults, title="Beach Relay", city="Goa", country="India",
            difficulties=[(Difficulty.INTERMEDIATE, 1)], price=None, max_participants=0,
        ),
    }


def _titles(response) -> set[str]:
    return {item.title for item in response.items}


class TestSearch:
    async def test_no_criteria_returns_everything(self, db, catalog):
        response = await SearchService(db).search(SearchRequest())
        assert response.total == 4

    async def test_difficulty_and_city(self, db, catalog):
        response = await SearchService(db).search(SearchRequest(difficulty=Difficulty.ADVANCED, city="pune"))
        assert _titles(response) == {"Fort Secrets"}

    async def test_predicate_order_does_not_matter(self, db, catalog):
        request = SearchRequest(difficulty=Difficulty.ADVANCED, city="Pune", price_max=Decimal("1000"))
        predicates = build(request)
        forward = (await db.execute(select(Plan.id).where(and_(*predicates)))).scalars().all()
        backward = (await db.execute(select(Plan.id).where(and_(*reversed(predicates))))).scalars().all()
        assert set(forward) == set(backward) == {catalog["pune_advanced"]["plan_id"]}

    async def test_minimum_level(self, db, catalog):
        response = await SearchService(db).search(SearchRequest(difficulty=Difficulty.ADVANCED, level=2))
        assert _titles(response) == {"Fort Secrets"}

    async def test_price_range_keeps_unpriced_plans(self, db, catalog):
        response = await SearchService(db).search(SearchRequest(price_min=Decimal("100"), price_max=Decimal("1000")))
        assert _titles(response) == {"Fort Secrets", "Garden Clues", "Beach Relay"}

    async def test_time_window(self, db, catalog):
        response = await SearchService(db).search(SearchRequest(time_window_type=TimeWindowType.FLEXIBLE))
        assert _titles(response) == {"Garden Clues"}

    async def test_radius(self, db, catalog):
        response = await SearchService(db).search(SearchRequest(lat=PUNE[0], lng=PUNE[1], radius_km=25))
        assert _titles(response) == {"Fort Secrets", "Garden Clues"}

    async def test_has_slots_excludes_full_plans(self, db, catalog):
        response = await SearchService(db).search(SearchRequest(has_slots=True))
        assert "Beach Relay" not in _titles(response)
        assert response.total == 3

    async def test_user_age_filters_by_subcategory_band(self, db, catalog):
        response = await SearchService(db).search(SearchRequest(), user_age=15)
        assert _titles(response) == {"Garden Clues"}

    async def test_pagination(self, db, catalog):
        service = SearchService(db)
        first = await service.search(SearchRequest(), page=1, per_page=3)
        second = await service.search(SearchRequest(), page=2, per_page=3)
        assert first.total == second.total == 4
        assert len(first.items) == 3
        assert len(second.items) == 1
        assert not _titles(first) & _titles(second)

    async def test_page_size_is_bounded(self, db, catalog):
        with pytest.raises(InvalidArgument):
            await SearchService(db).search(SearchRequest(), per_page=500)


class TestGeofence:
    async def test_city_allow_list(self, db, catalog):
        db.add(GeoFenceRule(enabled=True, scope=GeoFenceScope.CITY, values=["Mumbai", "goa"]))
        await db.commit()
        response = await SearchService(db).search(SearchRequest())
        assert _titles(response) == {"Dockside Cipher", "Beach Relay"}

    async def test_geofence_applies_on_top_of_request(self, db, catalog):
        db.add(GeoFenceRule(enabled=True, scope=GeoFenceScope.CITY, values=["Mumbai"]))
        await db.commit()
        response = await SearchService(db).search(SearchRequest(city="Pune"))
        assert response.total == 0

    async def test_enabled_empty_list_matches_nothing(self, db, catalog):
        db.add(GeoFenceRule(enabled=True, scope=GeoFenceScope.COUNTRY, values=[]))
        await db.commit()
        assert (await SearchService(db).search(SearchRequest())).total == 0

    async def test_disabled_rule_is_ignored(self, db, catalog):
        db.add(GeoFenceRule(enabled=False, scope=GeoFenceScope.COUNTRY, values=["Nepal"]))
        await db.commit()
        assert (await SearchService(db).search(SearchRequest())).total == 4


class TestPlanDetail:
    async def test_detail(self, db, catalog):
        detail = await SearchService(db).get_plan_detail(catalog["pune_advanced"]["plan_id"])
        assert detail.title == "Fort Secrets"

    async def test_missing_plan(self, db, catalog):
        with pytest.raises(NotFound):
            await SearchService(db).get_plan_detail(uuid.uuid4())

    async def test_filter_options(self, db, catalog):
        options = await SearchService(db).get_filter_options()
        assert options.cities == ["Goa", "Mumbai", "Pune"]
        assert options.difficulties["ADVANCED"] == [1, 2]
        assert [(p.currency, p.min, p.max) for p in options.price_ranges] == [
            ("INR", Decimal("200.00"), Decimal("1500.00"))
        ]
