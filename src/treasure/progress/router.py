"""Task progress endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from treasure.dependencies import get_task_tracker
from treasure.progress.schemas import EnrollmentProgressResponse, TaskProgressResponse
from treasure.progress.tracker import TaskProgressTracker

router = APIRouter(prefix="/api/v1", tags=["Progress"])


@router.post("/enrollments/{enrollment_id}/tasks/{task_id}/start", response_model=TaskProgressResponse)
async def start_task(
    enrollment_id: uuid.UUID,
    task_id: uuid.UUID,
    tracker: TaskProgressTracker = Depends(get_task_tracker),
) -> TaskProgressResponse:
    return TaskProgressResponse.model_validate(await tracker.start_task(enrollment_id, task_id))


@router.post("/enrollments/{enrollment_id}/tasks/{task_id}/complete", response_model=TaskProgressResponse)
async def complete_task(
    enrollment_id: uuid.UUID,
    task_id: uuid.UUID,
    cohort: list[str] = Query(default=[]),
    tracker: TaskProgressTracker = Depends(get_task_tracker),
) -> TaskProgressResponse:
    """Mark a task done. Repeating the call returns the same row."""
    return TaskProgressResponse.model_validate(await tracker.complete_task(enrollment_id, task_id, cohort))


@router.get("/enrollments/{enrollment_id}/progress", response_model=EnrollmentProgressResponse)
async def get_progress(
    enrollment_id: uuid.UUID,
    tracker: TaskProgressTracker = Depends(get_task_tracker),
) -> EnrollmentProgressResponse:
    complete = await tracker.is_complete(enrollment_id)
    rows = await tracker.list_progress(enrollment_id)
    return EnrollmentProgressResponse(
        enrollment_id=enrollment_id,
        complete=complete,
        tasks=[TaskProgressResponse.model_validate(row) for row in rows],
    )
