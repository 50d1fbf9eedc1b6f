"""Workload snapshots, analytics and the periodic recalculation job."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from assignment_engine.core.base import utcnow
from assignment_engine.modules.assignments.lifecycle import AssignmentLifecycle
from assignment_engine.modules.workload.jobs import WorkloadRecalculationJob
from assignment_engine.modules.workload.models import UserWorkload
from assignment_engine.modules.workload.service import WorkloadTracker, capacity_percentage, workload_status
from assignment_engine.platform.ports.case_management import TaskMetrics
from conftest import ORG_ID, make_attorney


async def give_cases(session, user_id, *weights):
    lc = AssignmentLifecycle(session)
    return [await lc.create(ORG_ID, uuid.uuid4(), user_id, workload_weight=w) for w in weights]


class TestCapacityMath:
    @pytest.mark.parametrize(
        "capacity,status",
        [(0, "UNDERUTILIZED"), (39.99, "UNDERUTILIZED"), (40, "OPTIMAL"), (70, "OPTIMAL"),
         (70.01, "HIGH"), (90, "HIGH"), (90.01, "OVERLOADED"), (300, "OVERLOADED")],
    )
    def test_status_bands(self, capacity, status):
        assert workload_status(capacity) == status

    def test_capacity_is_capped(self):
        assert capacity_percentage(30, 40) == 75.0
        assert capacity_percentage(1000, 40) == 300.0
        assert capacity_percentage(10, 0) == 300.0


class TestWorkloadTracker:
    async def test_points_scale_with_weight(self, session, case_management):
        attorney = await make_attorney(session, "Ada")
        await give_cases(session, attorney, 1.0, 2.0)

        snap = await WorkloadTracker(session, case_management).recalculate(ORG_ID, attorney)

        assert snap.active_cases_count == 2
        assert snap.total_workload_points == 30.0
        assert snap.max_capacity_points == 40.0
        assert snap.capacity_percentage == 75.0

    async def test_max_capacity_comes_from_profile(self, session, case_management):
        attorney = await make_attorney(session, "Part-timer", max_capacity_points=20)
        await give_cases(session, attorney, 1.0)

        snap = await WorkloadTracker(session, case_management).recalculate(ORG_ID, attorney)

        assert snap.max_capacity_points == 20.0
        assert snap.capacity_percentage == 50.0

    async def test_recalculate_is_idempotent_per_day(self, session, case_management):
        attorney = await make_attorney(session, "Ada")
        first, second = await give_cases(session, attorney, 1.0, 1.0)
        tracker = WorkloadTracker(session, case_management)

        before = await tracker.recalculate(ORG_ID, attorney)
        await AssignmentLifecycle(session).deactivate(ORG_ID, first.id)
        after = await tracker.recalculate(ORG_ID, attorney)

        assert after.id == before.id
        rows = await session.scalar(select(func.count()).select_from(UserWorkload).where(UserWorkload.user_id == attorney))
        assert rows == 1
        described = await tracker.describe(after)
        assert after.active_cases_count == 1
        assert [c.assignment_id for c in described.cases] == [second.id]

    async def test_task_metrics_come_from_case_management(self, session, case_management):
        attorney = await make_attorney(session, "Ada")
        case_management.metrics[attorney] = TaskMetrics(overdue_tasks_count=2, upcoming_deadlines_count=5, billable_hours_week=31.5)

        snap = await WorkloadTracker(session, case_management).recalculate(ORG_ID, attorney)

        assert (snap.overdue_tasks_count, snap.upcoming_deadlines_count, snap.billable_hours_week) == (2, 5, 31.5)

    async def test_future_assignments_do_not_count_yet(self, session, case_management):
        attorney = await make_attorney(session, "Ada")
        await AssignmentLifecycle(session).create(ORG_ID, uuid.uuid4(), attorney, effective_from=utcnow() + timedelta(days=3))

        snap = await WorkloadTracker(session, case_management).recalculate(ORG_ID, attorney)

        assert snap.active_cases_count == 0
        assert snap.capacity_percentage == 0.0

    async def test_snapshot_is_computed_on_demand(self, session, case_management):
        attorney = await make_attorney(session, "Ada")
        await give_cases(session, attorney, 2.0)

        out = await WorkloadTracker(session, case_management).snapshot(ORG_ID, attorney)

        assert out.total_workload_points == 20.0
        assert out.capacity_percentage == 50.0
        assert out.status == "OPTIMAL"
        assert [(c.workload_weight, c.points) for c in out.cases] == [(2.0, 20.0)]

    async def test_trend_lists_snapshots(self, session, case_management):
        attorney = await make_attorney(session, "Ada")
        tracker = WorkloadTracker(session, case_management)
        await tracker.recalculate(ORG_ID, attorney)
        trend = await tracker.trend(ORG_ID, attorney, days=7)
        assert [p.calculation_date for p in trend] == [utcnow().date()]


class TestAnalyticsAndJob:
    async def test_job_then_analytics(self, session, session_factory, case_management):
        busy = await make_attorney(session, "Busy")
        steady = await make_attorney(session, "Steady")
        await make_attorney(session, "Idle")
        await give_cases(session, busy, 1.0, 1.0, 1.0, 1.0)
        await give_cases(session, steady, 1.0, 1.0, 1.0)

        report = await WorkloadRecalculationJob(session_factory, case_management).run_once([ORG_ID])

        assert (report.organizations, report.recalculated, report.failed) == (1, 3, 0)
        async with session_factory() as s:
            analytics = await WorkloadTracker(s, case_management).analytics(ORG_ID)
        assert analytics.total_attorneys == 3
        assert analytics.overloaded_count == 1
        assert analytics.available_count == 1
        assert analytics.average_capacity == 58.33
        assert analytics.by_status == {"UNDERUTILIZED": 1, "OPTIMAL": 0, "HIGH": 1, "OVERLOADED": 1}

    async def test_job_expires_lapsed_assignments_first(self, session, session_factory, case_management):
        attorney = await make_attorney(session, "Ada")
        now = utcnow()
        await AssignmentLifecycle(session).create(
            ORG_ID, uuid.uuid4(), attorney, effective_from=now - timedelta(days=5), effective_to=now - timedelta(minutes=1)
        )

        report = await WorkloadRecalculationJob(session_factory, case_management).run_once()

        assert report.expired_assignments == 1
        async with session_factory() as s:
            snap = await WorkloadTracker(s, case_management).latest_for_users(ORG_ID, [attorney])
        assert snap[attorney].active_cases_count == 0

    async def test_recalculate_organization(self, session, case_management):
        attorney = await make_attorney(session, "Ada")
        await give_cases(session, attorney, 1.0)
        await make_attorney(session, "Retired", active=False)

        report = await WorkloadTracker(session, case_management).recalculate_organization(ORG_ID)

        assert report.recalculated == 1
