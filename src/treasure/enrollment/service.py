"""Enrollment service: enroll, approve, reject, cancel and payment updates.

Every mutation runs in one transaction: row lock, validated transition,
slot bookkeeping and outbox events commit together. Events are relayed to
the bus after the commit and plan caches are dropped.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from treasure.cache import PlanCache
from treasure.config import Settings, get_settings
from treasure.db.enums import EnrollmentMode, EnrollmentStatus, EnrollmentType, PaymentStatus, TaskStatus
from treasure.db.models import Enrollment, Plan, Task, TaskProgress
from treasure.enrollment.registration_ids import next_registration_id
from treasure.enrollment.slots import release_slots, reserve_slots
from treasure.enrollment.state_machine import (
    slots_needed,
    validate_payment_transition,
    validate_team,
    validate_transition,
)
from treasure.errors import InvalidState, NotFound
from treasure.events import topics
from treasure.events.outbox import Outbox
from treasure.leaderboard.service import refresh_user_statistics
from treasure.pricing import PlanPricingService, PricingPort, find_price

logger = logging.getLogger(__name__)


class EnrollmentService:
    """Owns the enrollment lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        outbox: Outbox,
        pricing: PricingPort | None = None,
        cache: PlanCache | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.db = db
        self.outbox = outbox
        self.pricing = pricing or PlanPricingService()
        self.cache = cache or PlanCache(None)
        self.settings = settings or get_settings()

    # ── Reads ──

    async def get(self, enrollment_id: uuid.UUID) -> Enrollment:
        enrollment = await self.db.get(Enrollment, enrollment_id)
        if enrollment is None:
            raise NotFound(f"Enrollment {enrollment_id} not found")
        return enrollment

    async def list_for_user(self, user_id: uuid.UUID) -> list[Enrollment]:
        result = await self.db.execute(
            select(Enrollment).where(Enrollment.user_id == user_id).order_by(Enrollment.enrolled_at.desc())
        )
        return list(result.scalars())

    async def _lock(self, enrollment_id: uuid.UUID) -> Enrollment:
        result = await self.db.execute(
            select(Enrollment)
            .where(Enrollment.id == enrollment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        enrollment = result.scalar_one_or_none()
        if enrollment is None:
            raise NotFound(f"Enrollment {enrollment_id} not found")
        return enrollment

    # ── Mutations ──

    async def enroll(
        self,
        plan_id: uuid.UUID,
        user_id: uuid.UUID,
        enrollment_type: EnrollmentType = EnrollmentType.INDIVIDUAL,
        team_name: str | None = None,
        team_size: int | None = None,
    ) -> Enrollment:
        """Create a PENDING enrollment with payment NONE.

        Raises NotFound, InvalidArgument (team fields) or CapacityExceeded.
        """
        enrollment_type = EnrollmentType(enrollment_type)
        team_name, team_size = validate_team(enrollment_type, team_name, team_size)

        try:
            plan = await self.db.get(Plan, plan_id)
            if plan is None:
                raise NotFound(f"Plan {plan_id} not found")

            reserved = await reserve_slots(self.db, plan, slots_needed(enrollment_type, team_size))
            registration_id = await next_registration_id(
                self.db,
                enrollment_type,
                plan.id,
                prefix=self.settings.registration_prefix,
                attempts=self.settings.db_retry_attempts,
            )

            enrollment = Enrollment(
                user_id=user_id,
                plan_id=plan.id,
                mode=plan.enrollment_mode,
                status=EnrollmentStatus.PENDING,
                payment_status=PaymentStatus.NONE,
                enrollment_type=enrollment_type,
                registration_id=registration_id,
                team_name=team_name,
                team_size=team_size,
                slots_reserved=reserved,
                enrolled_at=datetime.now(timezone.utc),
            )
            self.db.add(enrollment)
            await self.db.flush()

            self._enqueue_created(enrollment)
            if plan.enrollment_mode == EnrollmentMode.APPROVAL_REQUIRED:
                self.outbox.enqueue(self.db, topics.APPROVAL_REQUESTED, str(enrollment.id), {
                    "enrollmentId": enrollment.id,
                    "planId": plan.id,
                    "userId": user_id,
                })
            else:
                self._enqueue_payment_request_if_priced(enrollment, plan)

            for difficulty in {row.difficulty for row in plan.difficulties}:
                await refresh_user_statistics(self.db, user_id, difficulty)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Enrollment %s created: plan=%s user=%s type=%s mode=%s registration=%s",
            enrollment.id, plan.id, user_id, enrollment_type.value, plan.enrollment_mode.value, registration_id,
        )
        await self._after_commit()
        return enrollment

    async def approve(self, enrollment_id: uuid.UUID, approver_id: uuid.UUID) -> Enrollment:
        """PENDING -> CONFIRMED, request payment for the priced total."""
        try:
            enrollment = await self._lock(enrollment_id)
            validate_transition(enrollment.status, EnrollmentStatus.CONFIRMED)

            enrollment.status = EnrollmentStatus.CONFIRMED
            enrollment.approval_by = approver_id

            total, currency = None, self.settings.default_currency
            if find_price(enrollment.plan, currency) is not None:
                total, currency = self.pricing.compute_total(enrollment.plan, currency)
            else:
                logger.warning("Plan %s has no %s price; approving without a payment request", enrollment.plan_id, currency)

            self.outbox.enqueue(self.db, topics.ENROLLMENT_APPROVED, str(enrollment.id), {
                "enrollmentId": enrollment.id,
                "planId": enrollment.plan_id,
                "userId": enrollment.user_id,
                "approvedBy": approver_id,
                "amount": str(total) if total is not None else None,
                "currency": currency,
            })
            if total is not None:
                if enrollment.payment_status == PaymentStatus.NONE:
                    enrollment.payment_status = PaymentStatus.AWAITING
                self._enqueue_payment_request(enrollment, total, currency)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Enrollment %s approved by %s (%s %s)", enrollment.id, approver_id, total, currency)
        await self._after_commit()
        return enrollment

    async def reject(self, enrollment_id: uuid.UUID) -> Enrollment:
        """PENDING -> REJECTED, releasing reserved slots."""
        try:
            enrollment = await self._lock(enrollment_id)
            validate_transition(enrollment.status, EnrollmentStatus.REJECTED)
            enrollment.status = EnrollmentStatus.REJECTED
            await self._release(enrollment)
            await self._refresh_statistics(enrollment)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Enrollment %s rejected", enrollment.id)
        await self._after_commit()
        return enrollment

    async def cancel(self, enrollment_id: uuid.UUID) -> Enrollment:
        """Cancel a PENDING enrollment, or a CONFIRMED one whose tasks are not all done.

        Refund policy belongs to the payment collaborator; the cancellation
        event carries whether any task was started.
        """
        try:
            enrollment = await self._lock(enrollment_id)
            validate_transition(enrollment.status, EnrollmentStatus.CANCELLED)

            total_tasks, done_tasks, started_tasks = await self._task_counts(enrollment)
            if enrollment.status == EnrollmentStatus.CONFIRMED and total_tasks > 0 and done_tasks >= total_tasks:
                raise InvalidState(f"Enrollment {enrollment.id} has completed every task and cannot be cancelled")

            previous_status = enrollment.status
            enrollment.status = EnrollmentStatus.CANCELLED
            await self._release(enrollment)

            self.outbox.enqueue(self.db, topics.ENROLLMENT_CANCELLED, str(enrollment.id), {
                "enrollmentId": enrollment.id,
                "planId": enrollment.plan_id,
                "userId": enrollment.user_id,
                "previousStatus": previous_status,
                "paymentStatus": enrollment.payment_status,
                "tasksStarted": started_tasks > 0,
            })
            await self._refresh_statistics(enrollment)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Enrollment %s cancelled (was %s)", enrollment.id, previous_status.value)
        await self._after_commit()
        return enrollment

    async def on_payment_status_changed(self, enrollment_id: uuid.UUID, new_status: PaymentStatus) -> Enrollment:
        """Move the payment axis only. An unchanged status is a no-op."""
        new_status = PaymentStatus(new_status)
        try:
            enrollment = await self._lock(enrollment_id)
            if enrollment.payment_status == new_status:
                await self.db.commit()
                logger.debug("Enrollment %s already has payment status %s", enrollment.id, new_status.value)
                return enrollment

            validate_payment_transition(enrollment.payment_status, new_status)
            previous = enrollment.payment_status
            enrollment.payment_status = new_status
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Enrollment %s payment %s -> %s", enrollment.id, previous.value, new_status.value)
        await self.cache.invalidate_plans()
        return enrollment

    # ── Helpers ──

    def _enqueue_created(self, enrollment: Enrollment) -> None:
        self.outbox.enqueue(self.db, topics.ENROLLMENT_CREATED, str(enrollment.id), {
            "enrollmentId": enrollment.id,
            "planId": enrollment.plan_id,
            "userId": enrollment.user_id,
            "mode": enrollment.mode,
            "status": enrollment.status,
            "paymentStatus": enrollment.payment_status,
            "enrollmentType": enrollment.enrollment_type,
            "registrationId": enrollment.registration_id,
            "teamName": enrollment.team_name,
            "teamSize": enrollment.team_size,
        })

    def _enqueue_payment_request_if_priced(self, enrollment: Enrollment, plan: Plan) -> None:
        currency = self.settings.default_currency
        if find_price(plan, currency) is None:
            logger.warning("Plan %s has no %s price; payment.requested not emitted", plan.id, currency)
            return
        total, currency = self.pricing.compute_total(plan, currency)
        self._enqueue_payment_request(enrollment, total, currency)

    def _enqueue_payment_request(self, enrollment: Enrollment, total: Decimal, currency: str) -> None:
        self.outbox.enqueue(self.db, topics.PAYMENT_REQUESTED, str(enrollment.id), {
            "enrollmentId": enrollment.id,
            "userId": enrollment.user_id,
            "amount": str(total),
            "currency": currency,
        })

    async def _release(self, enrollment: Enrollment) -> None:
        await release_slots(self.db, enrollment.plan_id, enrollment.slots_reserved)
        enrollment.slots_reserved = 0

    async def _task_counts(self, enrollment: Enrollment) -> tuple[int, int, int]:
        """(plan tasks, DONE tasks, STARTED-or-DONE tasks) for an enrollment."""
        total = await self.db.execute(select(func.count(Task.id)).where(Task.plan_id == enrollment.plan_id))
        progress = await self.db.execute(
            select(TaskProgress.status, func.count(TaskProgress.id))
            .where(TaskProgress.enrollment_id == enrollment.id)
            .group_by(TaskProgress.status)
        )
        by_status = {status: count for status, count in progress}
        done = by_status.get(TaskStatus.DONE, 0)
        return total.scalar_one(), done, done + by_status.get(TaskStatus.STARTED, 0)

    async def _refresh_statistics(self, enrollment: Enrollment) -> None:
        for difficulty in {row.difficulty for row in enrollment.plan.difficulties}:
            await refresh_user_statistics(self.db, enrollment.user_id, difficulty)

    async def _after_commit(self) -> None:
        await self.outbox.relay_quietly(self.db)
        await self.cache.invalidate_plans()
