import uuid
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Sequence

import httpx
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from assignment_engine.core.base import utcnow, as_utc
from assignment_engine.core.config import settings
from assignment_engine.core.errors import AssignmentEngineError, TransientStoreError
from assignment_engine.core.resilience import transaction_scope, transactional_retry
from assignment_engine.modules.assignments.lifecycle import AssignmentLifecycle
from assignment_engine.modules.assignments.models import CaseAssignment
from assignment_engine.modules.assignments.repository import CaseAssignmentRepository
from assignment_engine.modules.attorneys.repository import AttorneyRepository
from assignment_engine.modules.workload.models import UserWorkload
from assignment_engine.modules.workload.repository import WorkloadRepository
from assignment_engine.modules.workload.schemas import WorkloadOut, WorkloadCaseOut, WorkloadTrendPoint, WorkloadAnalytics, RecalculationReport
from assignment_engine.platform.ports.case_management import CaseManagementPort
from assignment_engine.platform.provider_registry import registry

logger = logging.getLogger(__name__)

OVERLOADED_ABOVE = 90.0
AVAILABLE_BELOW = 70.0

def workload_status(capacity_percentage: float) -> str:
    if capacity_percentage < 40:
        return "UNDERUTILIZED"
    if capacity_percentage <= 70:
        return "OPTIMAL"
    if capacity_percentage <= 90:
        return "HIGH"
    return "OVERLOADED"

def capacity_percentage(total_points: float, max_points: float) -> float:
    if max_points <= 0:
        return settings.CAPACITY_PERCENTAGE_CAP
    return min(round(total_points / max_points * 100.0, 2), settings.CAPACITY_PERCENTAGE_CAP)

def case_points(rows: Sequence[CaseAssignment]) -> list[dict]:
    """Points each assignment contributes: a fixed amount per case scaled by its weight."""
    return [
        {
            "case_id": r.case_id,
            "assignment_id": r.id,
            "role_type": r.role_type,
            "workload_weight": r.workload_weight if r.workload_weight is not None else 1.0,
            "points": round(settings.WORKLOAD_POINTS_PER_CASE * (r.workload_weight if r.workload_weight is not None else 1.0), 2),
        }
        for r in rows
    ]

class WorkloadTracker:
    """Owns writes to ``UserWorkload``; everything else reads snapshots through it."""

    def __init__(self, session: AsyncSession, case_management: CaseManagementPort | None = None):
        self.session = session
        self.case_management = case_management or registry.case_management()
        self.workloads = WorkloadRepository(session)
        self.assignments = CaseAssignmentRepository(session)
        self.attorneys = AttorneyRepository(session)

    @transactional_retry()
    async def recalculate(self, org_id: uuid.UUID, attorney_id: uuid.UUID, as_of: date | None = None) -> UserWorkload:
        """Recompute and upsert the (attorney, as_of) snapshot. Safe to re-run."""
        now = utcnow()
        as_of = as_of or now.date()
        cutoff = now if as_of >= now.date() else datetime.combine(as_of, time.max, tzinfo=timezone.utc)

        profile = await self.attorneys.get(org_id, attorney_id)
        max_points = (profile.max_capacity_points if profile and profile.max_capacity_points else None) or settings.DEFAULT_MAX_CAPACITY_POINTS
        rows = [
            r for r in await self.assignments.active_for_user(org_id, attorney_id, cutoff)
            if r.effective_to is None or as_utc(r.effective_to) > cutoff
        ]
        details = case_points(rows)
        total = round(sum(d["points"] for d in details), 2)
        metrics = await self.case_management.get_task_metrics(
            org_id, attorney_id, now + timedelta(days=settings.UPCOMING_DEADLINE_DAYS)
        )

        async with transaction_scope(self.session):
            try:
                snapshot = await self.workloads.upsert(
                    org_id, attorney_id, as_of,
                    active_cases_count=len({r.case_id for r in rows}),
                    total_workload_points=total,
                    max_capacity_points=max_points,
                    capacity_percentage=capacity_percentage(total, max_points),
                    billable_hours_week=metrics.billable_hours_week,
                    overdue_tasks_count=metrics.overdue_tasks_count,
                    upcoming_deadlines_count=metrics.upcoming_deadlines_count,
                    last_calculated_at=now,
                )
                await self.workloads.replace_details(snapshot, details)
                await self.session.commit()
            except IntegrityError as e:
                # another worker inserted the same (user, date) row first; retry turns into an update
                raise TransientStoreError("Concurrent workload recalculation", {"attorney_id": str(attorney_id)}) from e

        logger.info(
            f"Workload for {attorney_id} on {as_of}: {snapshot.active_cases_count} cases, "
            f"{snapshot.total_workload_points} pts, {snapshot.capacity_percentage}%"
        )
        return snapshot

    async def recalculate_many(self, org_id: uuid.UUID, attorney_ids: Sequence[uuid.UUID], as_of: date | None = None) -> int:
        done = 0
        for attorney_id in attorney_ids:
            await self.recalculate(org_id, attorney_id, as_of)
            done += 1
        return done

    async def recalculate_organization(self, org_id: uuid.UUID, as_of: date | None = None) -> RecalculationReport:
        """Expire lapsed assignments, then refresh every active attorney of the organization."""
        expired = await AssignmentLifecycle(self.session).expire_lapsed(org_id)
        attorney_ids = [a.id for a in await self.attorneys.list_active(org_id)]
        done = await self.recalculate_many(org_id, attorney_ids, as_of)
        return RecalculationReport(organizations=1, expired_assignments=expired, recalculated=done)

    async def latest_for_users(self, org_id: uuid.UUID, user_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, UserWorkload]:
        return await self.workloads.latest_for_users(org_id, user_ids)

    async def snapshot(self, org_id: uuid.UUID, attorney_id: uuid.UUID) -> WorkloadOut:
        """Latest snapshot with its case breakdown; computed on demand if none exists yet."""
        current = await self.workloads.latest(org_id, attorney_id)
        if current is None:
            current = await self.recalculate(org_id, attorney_id)
        return await self.describe(current)

    async def describe(self, workload: UserWorkload) -> WorkloadOut:
        out = WorkloadOut.model_validate(workload)
        out.status = workload_status(workload.capacity_percentage)
        out.cases = [WorkloadCaseOut.model_validate(d) for d in await self.workloads.details(workload.id)]
        return out

    async def trend(self, org_id: uuid.UUID, attorney_id: uuid.UUID, days: int = 30) -> list[WorkloadTrendPoint]:
        since = utcnow().date() - timedelta(days=days)
        return [WorkloadTrendPoint.model_validate(w) for w in await self.workloads.history(org_id, attorney_id, since)]

    async def analytics(self, org_id: uuid.UUID, as_of: date | None = None) -> WorkloadAnalytics:
        """Organization totals over each active attorney's latest snapshot on or before ``as_of``."""
        as_of = as_of or utcnow().date()
        attorneys = await self.attorneys.list_active(org_id)
        latest = await self.workloads.latest_for_users(org_id, [a.id for a in attorneys], on_or_before=as_of)
        capacities = [w.capacity_percentage for w in latest.values()]
        by_status = {"UNDERUTILIZED": 0, "OPTIMAL": 0, "HIGH": 0, "OVERLOADED": 0}
        for c in capacities:
            by_status[workload_status(c)] += 1
        return WorkloadAnalytics(
            as_of=as_of,
            total_attorneys=len(capacities),
            overloaded_count=sum(1 for c in capacities if c > OVERLOADED_ABOVE),
            available_count=sum(1 for c in capacities if c < AVAILABLE_BELOW),
            average_capacity=round(sum(capacities) / len(capacities), 2) if capacities else 0.0,
            by_status=by_status,
        )

async def refresh_workloads(session: AsyncSession, org_id: uuid.UUID, user_ids, case_management: CaseManagementPort | None = None) -> None:
    """Best-effort recalculation right after a committed assignment change.

    The periodic job repairs anything missed here, so failures only log.
    """
    tracker = WorkloadTracker(session, case_management)
    for user_id in dict.fromkeys(u for u in user_ids if u is not None):
        try:
            await tracker.recalculate(org_id, user_id)
        except (AssignmentEngineError, SQLAlchemyError, httpx.HTTPError):
            logger.warning(f"Post-assignment workload refresh failed for {user_id}", exc_info=True)
