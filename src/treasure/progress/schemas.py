"""Pydantic models for task progress endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from treasure.db.enums import TaskStatus


class TaskProgressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enrollment_id: uuid.UUID
    task_id: uuid.UUID
    status: TaskStatus
    updated_at: datetime


class EnrollmentProgressResponse(BaseModel):
    enrollment_id: uuid.UUID
    complete: bool
    tasks: list[TaskProgressResponse]
