"""Unit tests for the progression policy document and merge."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from treasure.db.enums import Difficulty, PolicyScope
from treasure.db.models import ProgressionPolicy
from treasure.errors import PolicyConflict
from treasure.progression.policy import (
    Prerequisite,
    ProgressionPolicyDocument,
    merge_policy_documents,
    parse_policy_document,
)
from treasure.progression.policy_service import order_for_merge, validate_scope


class TestPolicyDocument:
    def test_defaults(self):
        doc = parse_policy_document({})
        assert doc.starting_level(Difficulty.BEGINNER) == 0
        assert doc.required_tasks(Difficulty.ADVANCED) == 1
        assert doc.cap(Difficulty.BEGINNER) is None
        assert doc.require_all_crucial is True
        assert doc.prerequisite(Difficulty.INTERMEDIATE) == Prerequisite(difficulty=Difficulty.BEGINNER, min_level=1)
        assert doc.prerequisite(Difficulty.BEGINNER) is None

    def test_unknown_keys_are_kept_as_extensions(self):
        doc = parse_policy_document({"tasks_per_level": {"BEGINNER": 2}, "badge_theme": "pirate"})
        assert doc.required_tasks(Difficulty.BEGINNER) == 2
        assert doc.extensions == {"badge_theme": "pirate"}

    def test_invite_override_only_raises_floor(self):
        doc = parse_policy_document({"min_levels": {"ADVANCED": 2}, "invite_overrides": {"ADVANCED": 1}})
        assert doc.starting_level(Difficulty.ADVANCED) == 2
        doc = parse_policy_document({"min_levels": {"ADVANCED": 1}, "invite_overrides": {"ADVANCED": 3}})
        assert doc.starting_level(Difficulty.ADVANCED) == 3

    def test_prerequisite_can_be_disabled(self):
        doc = parse_policy_document({"prerequisites": {"INTERMEDIATE": None}})
        assert doc.prerequisite(Difficulty.INTERMEDIATE) is None

    @pytest.mark.parametrize(
        "raw",
        [
            {"tasks_per_level": {"BEGINNER": 0}},
            {"min_levels": {"BEGINNER": -1}},
            {"level_caps": {"EXPERT": 3}},
            {"require_all_crucial": "sometimes"},
        ],
    )
    def test_schema_errors(self, raw):
        with pytest.raises(ValidationError):
            parse_policy_document(raw)

    def test_document_is_immutable(self):
        doc = ProgressionPolicyDocument()
        with pytest.raises(ValidationError):
            doc.require_all_crucial = False


class TestMerge:
    def test_later_layers_win_per_key(self):
        merged = merge_policy_documents([
            {"min_levels": {"BEGINNER": 1}, "require_all_crucial": False},
            {"min_levels": {"BEGINNER": 2}},
            {"min_levels": {"BEGINNER": 3}},
        ])
        assert merged == {"min_levels": {"BEGINNER": 3}, "require_all_crucial": False}

    def test_merge_is_shallow(self):
        merged = merge_policy_documents([
            {"level_caps": {"BEGINNER": 5, "ADVANCED": 2}},
            {"level_caps": {"BEGINNER": 3}},
        ])
        assert merged == {"level_caps": {"BEGINNER": 3}}

    def test_inputs_not_mutated(self):
        layer = {"min_levels": {"BEGINNER": 1}}
        merge_policy_documents([layer, {"min_levels": {"BEGINNER": 2}}])
        assert layer == {"min_levels": {"BEGINNER": 1}}


class TestScopes:
    def test_global_rejects_scope_ref(self):
        with pytest.raises(PolicyConflict):
            validate_scope(PolicyScope.GLOBAL, "cohort-a")
        assert validate_scope(PolicyScope.GLOBAL, None) is None

    @pytest.mark.parametrize("scope", [PolicyScope.COHORT, PolicyScope.USER])
    def test_scoped_policies_need_ref(self, scope):
        with pytest.raises(PolicyConflict):
            validate_scope(scope, "  ")
        assert validate_scope(scope, " ref ") == "ref"

    def test_order_for_merge(self):
        now = datetime.now(timezone.utc)
        user = ProgressionPolicy(scope=PolicyScope.USER, scope_ref="u", policy={}, created_at=now)
        old_cohort = ProgressionPolicy(
            scope=PolicyScope.COHORT, scope_ref="c", policy={}, created_at=now - timedelta(days=2)
        )
        # Naive timestamps come back from SQLite
        new_cohort = ProgressionPolicy(
            scope=PolicyScope.COHORT, scope_ref="c", policy={}, created_at=(now - timedelta(days=1)).replace(tzinfo=None)
        )
        glob = ProgressionPolicy(scope=PolicyScope.GLOBAL, policy={}, created_at=now)
        assert order_for_merge([user, new_cohort, glob, old_cohort]) == [glob, old_cohort, new_cohort, user]
