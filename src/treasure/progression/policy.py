"""Typed progression policy document and scope-layered merge.

Stored policy rows hold a free-form JSON mapping. Known keys are validated
into ``ProgressionPolicyDocument``; anything else is kept under
``extensions`` untouched. Merging is shallow: a key present in a higher
precedence layer replaces the whole value from a lower one.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from treasure.db.enums import Difficulty

KNOWN_KEYS = frozenset({
    "min_levels",
    "tasks_per_level",
    "require_all_crucial",
    "level_caps",
    "invite_overrides",
    "prerequisites",
})

DEFAULT_MIN_LEVEL = 0
DEFAULT_TASKS_PER_LEVEL = 1


class Prerequisite(BaseModel):
    """A tier only progresses once ``difficulty`` has reached ``min_level``."""

    model_config = ConfigDict(frozen=True)

    difficulty: Difficulty
    min_level: int = Field(default=1, ge=0)


def _default_prerequisites() -> dict[Difficulty, Prerequisite]:
    return {
        Difficulty.INTERMEDIATE: Prerequisite(difficulty=Difficulty.BEGINNER, min_level=1),
        Difficulty.ADVANCED: Prerequisite(difficulty=Difficulty.INTERMEDIATE, min_level=1),
    }


class ProgressionPolicyDocument(BaseModel):
    """Effective progression rules for one user."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_levels: dict[Difficulty, int] = Field(default_factory=dict)
    tasks_per_level: dict[Difficulty, int] = Field(default_factory=dict)
    require_all_crucial: bool = True
    level_caps: dict[Difficulty, int] = Field(default_factory=dict)
    invite_overrides: dict[Difficulty, int] = Field(default_factory=dict)
    prerequisites: dict[Difficulty, Prerequisite | None] = Field(default_factory=_default_prerequisites)
    extensions: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _collect_extensions(cls, data: Any) -> Any:  # noqa: ANN401
        if not isinstance(data, Mapping):
            return data
        known = {key: value for key, value in data.items() if key in KNOWN_KEYS}
        extensions = dict(data.get("extensions") or {})
        extensions.update({key: value for key, value in data.items() if key not in KNOWN_KEYS | {"extensions"}})
        return {**known, "extensions": extensions}

    @field_validator("min_levels", "level_caps", "invite_overrides")
    @classmethod
    def _non_negative(cls, value: dict[Difficulty, int]) -> dict[Difficulty, int]:
        for difficulty, level in value.items():
            if level < 0:
                raise ValueError(f"level for {difficulty.value} must be >= 0")
        return value

    @field_validator("tasks_per_level")
    @classmethod
    def _positive(cls, value: dict[Difficulty, int]) -> dict[Difficulty, int]:
        for difficulty, count in value.items():
            if count < 1:
                raise ValueError(f"tasks_per_level for {difficulty.value} must be >= 1")
        return value

    def starting_level(self, difficulty: Difficulty) -> int:
        """Floor level for a tier. Invite overrides can only raise it."""
        base = self.min_levels.get(difficulty, DEFAULT_MIN_LEVEL)
        return max(base, self.invite_overrides.get(difficulty, base))

    def required_tasks(self, difficulty: Difficulty) -> int:
        return self.tasks_per_level.get(difficulty, DEFAULT_TASKS_PER_LEVEL)

    def cap(self, difficulty: Difficulty) -> int | None:
        return self.level_caps.get(difficulty)

    def prerequisite(self, difficulty: Difficulty) -> Prerequisite | None:
        return self.prerequisites.get(difficulty)


def merge_policy_documents(layers: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    """Shallow-merge raw policy mappings, lowest precedence first."""
    merged: dict[str, Any] = {}
    for layer in layers:
        merged.update(layer)
    return merged


def parse_policy_document(raw: Mapping[str, Any]) -> ProgressionPolicyDocument:
    """Validate a raw mapping. Raises pydantic.ValidationError on schema errors."""
    return ProgressionPolicyDocument.model_validate(dict(raw))
