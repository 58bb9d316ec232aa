"""Pydantic request/response models for enrollment endpoints."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from treasure.db.enums import EnrollmentMode, EnrollmentStatus, EnrollmentType, PaymentStatus


class EnrollRequest(BaseModel):
    plan_id: uuid.UUID
    user_id: uuid.UUID
    enrollment_type: EnrollmentType = EnrollmentType.INDIVIDUAL
    team_name: str | None = None
    team_size: int | None = None


class ApproveRequest(BaseModel):
    approver_id: uuid.UUID


class PaymentStatusRequest(BaseModel):
    status: PaymentStatus


class EnrollmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    plan_id: uuid.UUID
    mode: EnrollmentMode
    status: EnrollmentStatus
    payment_status: PaymentStatus
    enrollment_type: EnrollmentType
    registration_id: str | None = None
    team_name: str | None = None
    team_size: int | None = None
    approval_by: uuid.UUID | None = None
    enrolled_at: datetime


class EnrollmentListResponse(BaseModel):
    enrollments: list[EnrollmentResponse]
    total: int


class RegistrationIdResponse(BaseModel):
    registration_id: str
    valid: bool
    month_year: str | None = None
    enrollment_type: EnrollmentType | None = None
    plan_number: str | None = None
    sequence: int | None = None
