"""Unit tests for search predicate builders and request validation."""

from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from treasure.db.enums import Difficulty, GeoFenceScope
from treasure.db.models import GeoFenceRule, Plan
from treasure.search.filters import (
    SearchRequest,
    build,
    compose,
    geofence_predicate,
    haversine_km,
    within_radius,
)

PUNE = (18.5204, 73.8567)
MUMBAI = (19.0760, 72.8777)


class TestSearchRequest:
    def test_everything_optional(self):
        request = SearchRequest()
        assert request.difficulty is None
        assert not request.has_radius

    def test_price_range_must_be_ordered(self):
        with pytest.raises(ValidationError, match="price_min"):
            SearchRequest(price_min=Decimal("500"), price_max=Decimal("100"))

    def test_radius_needs_coordinates(self):
        with pytest.raises(ValidationError, match="radius_km"):
            SearchRequest(radius_km=10)

    def test_latitude_bounds(self):
        with pytest.raises(ValidationError):
            SearchRequest(lat=91, lng=0, radius_km=1)


class TestBuild:
    def test_empty_request_builds_nothing(self):
        assert build(SearchRequest()) == []

    def test_one_predicate_per_criterion(self):
        request = SearchRequest(difficulty=Difficulty.ADVANCED, city="Pune", price_max=Decimal("900"))
        assert len(build(request)) == 3

    def test_platform_constraints_are_added(self):
        geofence = GeoFenceRule(enabled=True, scope=GeoFenceScope.CITY, values=["Pune"])
        assert len(build(SearchRequest(), geofence=geofence, user_age=30)) == 2

    def test_compose_of_nothing_is_true(self):
        assert str(compose([])) == "true"


class TestGeofence:
    def test_disabled_rule_is_ignored(self):
        assert geofence_predicate(None) is None
        assert geofence_predicate(GeoFenceRule(enabled=False, scope=GeoFenceScope.CITY, values=["Pune"])) is None

    def test_empty_allow_list_matches_nothing(self):
        predicate = geofence_predicate(GeoFenceRule(enabled=True, scope=GeoFenceScope.COUNTRY, values=[" "]))
        assert str(predicate) == "false"


class TestDistance:
    def test_haversine(self):
        assert haversine_km(*PUNE, *PUNE) == pytest.approx(0.0)
        assert haversine_km(*PUNE, *MUMBAI) == pytest.approx(120, abs=5)

    def test_within_radius(self):
        plan = Plan(latitude=MUMBAI[0], longitude=MUMBAI[1])
        assert within_radius(plan, SearchRequest(lat=PUNE[0], lng=PUNE[1], radius_km=150))
        assert not within_radius(plan, SearchRequest(lat=PUNE[0], lng=PUNE[1], radius_km=50))

    def test_plans_without_coordinates_fail_radius(self):
        assert not within_radius(Plan(), SearchRequest(lat=PUNE[0], lng=PUNE[1], radius_km=50))
        assert within_radius(Plan(), SearchRequest())
