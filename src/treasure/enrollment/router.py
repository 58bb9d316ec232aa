"""Enrollment API endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status

from treasure.dependencies import get_enrollment_service
from treasure.enrollment.registration_ids import is_valid_registration_id, parse_registration_id
from treasure.enrollment.schemas import (
    ApproveRequest,
    EnrollmentListResponse,
    EnrollmentResponse,
    EnrollRequest,
    PaymentStatusRequest,
    RegistrationIdResponse,
)
from treasure.enrollment.service import EnrollmentService

router = APIRouter(prefix="/api/v1", tags=["Enrollment"])


@router.post("/enrollments", response_model=EnrollmentResponse, status_code=status.HTTP_201_CREATED)
async def enroll(
    body: EnrollRequest,
    service: EnrollmentService = Depends(get_enrollment_service),
) -> EnrollmentResponse:
    """Enroll a user or team in a plan."""
    enrollment = await service.enroll(
        plan_id=body.plan_id,
        user_id=body.user_id,
        enrollment_type=body.enrollment_type,
        team_name=body.team_name,
        team_size=body.team_size,
    )
    return EnrollmentResponse.model_validate(enrollment)


@router.get("/enrollments/{enrollment_id}", response_model=EnrollmentResponse)
async def get_enrollment(
    enrollment_id: uuid.UUID,
    service: EnrollmentService = Depends(get_enrollment_service),
) -> EnrollmentResponse:
    return EnrollmentResponse.model_validate(await service.get(enrollment_id))


@router.get("/users/{user_id}/enrollments", response_model=EnrollmentListResponse)
async def list_user_enrollments(
    user_id: uuid.UUID,
    service: EnrollmentService = Depends(get_enrollment_service),
) -> EnrollmentListResponse:
    enrollments = await service.list_for_user(user_id)
    return EnrollmentListResponse(
        enrollments=[EnrollmentResponse.model_validate(e) for e in enrollments],
        total=len(enrollments),
    )


@router.post("/enrollments/{enrollment_id}/approve", response_model=EnrollmentResponse)
async def approve_enrollment(
    enrollment_id: uuid.UUID,
    body: ApproveRequest,
    service: EnrollmentService = Depends(get_enrollment_service),
) -> EnrollmentResponse:
    return EnrollmentResponse.model_validate(await service.approve(enrollment_id, body.approver_id))


@router.post("/enrollments/{enrollment_id}/reject", response_model=EnrollmentResponse)
async def reject_enrollment(
    enrollment_id: uuid.UUID,
    service: EnrollmentService = Depends(get_enrollment_service),
) -> EnrollmentResponse:
    return EnrollmentResponse.model_validate(await service.reject(enrollment_id))


@router.post("/enrollments/{enrollment_id}/cancel", response_model=EnrollmentResponse)
async def cancel_enrollment(
    enrollment_id: uuid.UUID,
    service: EnrollmentService = Depends(get_enrollment_service),
) -> EnrollmentResponse:
    return EnrollmentResponse.model_validate(await service.cancel(enrollment_id))


@router.post("/enrollments/{enrollment_id}/payment-status", response_model=EnrollmentResponse)
async def update_payment_status(
    enrollment_id: uuid.UUID,
    body: PaymentStatusRequest,
    service: EnrollmentService = Depends(get_enrollment_service),
) -> EnrollmentResponse:
    """Apply a payment status change (same path as the payment.status.updated consumer)."""
    return EnrollmentResponse.model_validate(await service.on_payment_status_changed(enrollment_id, body.status))


@router.get("/registration-ids/{registration_id}", response_model=RegistrationIdResponse)
async def validate_registration_id(registration_id: str) -> RegistrationIdResponse:
    if not is_valid_registration_id(registration_id):
        return RegistrationIdResponse(registration_id=registration_id, valid=False)
    parts = parse_registration_id(registration_id)
    return RegistrationIdResponse(
        registration_id=registration_id,
        valid=True,
        month_year=parts["month_year"],
        enrollment_type=parts["enrollment_type"],
        plan_number=parts["plan_number"],
        sequence=parts["sequence"],
    )
