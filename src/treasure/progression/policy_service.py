"""Progression policy storage and resolution.

Resolution precedence is USER > COHORT > GLOBAL. Within one scope the most
recently created active policy wins.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from treasure.db.enums import PolicyScope
from treasure.db.models import ProgressionPolicy, as_utc, utcnow
from treasure.errors import InvalidArgument, NotFound, PolicyConflict
from treasure.progression.policy import ProgressionPolicyDocument, merge_policy_documents, parse_policy_document

logger = logging.getLogger(__name__)

_SCOPE_PRECEDENCE = {PolicyScope.GLOBAL: 0, PolicyScope.COHORT: 1, PolicyScope.USER: 2}


def validate_scope(scope: PolicyScope, scope_ref: str | None) -> str | None:
    """Return the normalized scope_ref or raise PolicyConflict."""
    scope = PolicyScope(scope)
    ref = scope_ref.strip() if scope_ref is not None else None
    if scope == PolicyScope.GLOBAL:
        if ref:
            raise PolicyConflict("GLOBAL policies must not carry a scope_ref")
        return None
    if not ref:
        raise PolicyConflict(f"{scope.value} policies require a non-empty scope_ref")
    return ref


def order_for_merge(policies: Iterable[ProgressionPolicy]) -> list[ProgressionPolicy]:
    """Lowest precedence first; newer rows after older ones within a scope."""
    return sorted(policies, key=lambda p: (_SCOPE_PRECEDENCE[PolicyScope(p.scope)], as_utc(p.created_at)))


class PolicyResolver:
    """Reads and writes scoped progression policies."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def resolve(self, user_id: uuid.UUID | str, cohort_refs: Iterable[str] = ()) -> ProgressionPolicyDocument:
        """Merged effective policy for a user. Stored rows are never modified."""
        cohort_refs = [ref for ref in cohort_refs if ref]
        clauses = [
            ProgressionPolicy.scope == PolicyScope.GLOBAL,
            (ProgressionPolicy.scope == PolicyScope.USER) & (ProgressionPolicy.scope_ref == str(user_id)),
        ]
        if cohort_refs:
            clauses.append(
                (ProgressionPolicy.scope == PolicyScope.COHORT) & ProgressionPolicy.scope_ref.in_(cohort_refs)
            )

        result = await self.db.execute(
            select(ProgressionPolicy).where(ProgressionPolicy.active.is_(True), or_(*clauses))
        )
        layers = [dict(policy.policy or {}) for policy in order_for_merge(result.scalars())]
        try:
            return parse_policy_document(merge_policy_documents(layers))
        except ValidationError as exc:
            # Each stored layer was validated on write; only a bad combination lands here
            logger.error("Merged policy for user %s is invalid: %s", user_id, exc)
            raise InvalidArgument(f"Effective policy for user {user_id} is invalid") from exc

    async def get_policy(self, policy_id: uuid.UUID) -> ProgressionPolicy:
        policy = await self.db.get(ProgressionPolicy, policy_id)
        if policy is None:
            raise NotFound(f"Policy {policy_id} not found")
        return policy

    async def list_policies(self, scope: PolicyScope | None = None, active_only: bool = False) -> list[ProgressionPolicy]:
        stmt = select(ProgressionPolicy).order_by(ProgressionPolicy.created_at.asc())
        if scope is not None:
            stmt = stmt.where(ProgressionPolicy.scope == PolicyScope(scope))
        if active_only:
            stmt = stmt.where(ProgressionPolicy.active.is_(True))
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def set_policy(
        self,
        scope: PolicyScope,
        scope_ref: str | None,
        policy: Mapping[str, Any],
        name: str = "default",
        active: bool = True,
        policy_id: uuid.UUID | None = None,
    ) -> ProgressionPolicy:
        """Upsert by id, or by (scope, scope_ref) when no id is given.

        Raises PolicyConflict for a bad scope/scope_ref pair and
        InvalidArgument when the document fails schema validation.
        """
        scope = PolicyScope(scope)
        scope_ref = validate_scope(scope, scope_ref)
        try:
            parse_policy_document(policy)
        except ValidationError as exc:
            raise InvalidArgument(f"Invalid policy document: {exc.errors(include_url=False)}") from exc

        if policy_id is not None:
            row = await self.db.get(ProgressionPolicy, policy_id)
        else:
            stmt = select(ProgressionPolicy).where(ProgressionPolicy.scope == scope)
            stmt = stmt.where(
                ProgressionPolicy.scope_ref.is_(None) if scope_ref is None else ProgressionPolicy.scope_ref == scope_ref
            )
            result = await self.db.execute(stmt.order_by(ProgressionPolicy.created_at.desc()).limit(1))
            row = result.scalar_one_or_none()

        if row is None:
            row = ProgressionPolicy(id=policy_id or uuid.uuid4(), created_at=utcnow())
            self.db.add(row)
            action = "created"
        else:
            action = "updated"

        row.name = name
        row.scope = scope
        row.scope_ref = scope_ref
        row.policy = dict(policy)
        row.active = active
        await self.db.commit()
        logger.info("Policy %s %s (scope=%s, ref=%s, active=%s)", row.id, action, scope.value, scope_ref, active)
        return row

    async def deactivate_policy(self, policy_id: uuid.UUID) -> ProgressionPolicy:
        row = await self.get_policy(policy_id)
        row.active = False
        await self.db.commit()
        logger.info("Policy %s deactivated", policy_id)
        return row
