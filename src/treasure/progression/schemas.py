"""Pydantic models for level and policy endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from treasure.db.enums import PolicyScope


class LevelSummaryResponse(BaseModel):
    user_id: uuid.UUID
    levels: dict[str, int]


class SetPolicyRequest(BaseModel):
    scope: PolicyScope
    scope_ref: str | None = None
    name: str = "default"
    active: bool = True
    policy: dict[str, Any] = Field(default_factory=dict)
    policy_id: uuid.UUID | None = None


class PolicyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    scope: PolicyScope
    scope_ref: str | None = None
    policy: dict[str, Any]
    active: bool
    created_at: datetime


class PolicyListResponse(BaseModel):
    policies: list[PolicyResponse]
    total: int
