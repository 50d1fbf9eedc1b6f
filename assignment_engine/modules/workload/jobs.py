import uuid
import asyncio
import logging
from datetime import date

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from assignment_engine.core.config import settings
from assignment_engine.core.errors import AssignmentEngineError
from assignment_engine.modules.assignments.lifecycle import AssignmentLifecycle
from assignment_engine.modules.attorneys.repository import AttorneyRepository
from assignment_engine.modules.workload.schemas import RecalculationReport
from assignment_engine.modules.workload.service import WorkloadTracker
from assignment_engine.platform.ports.case_management import CaseManagementPort

log = logging.getLogger("workload.job")

class WorkloadRecalculationJob:
    """Periodic pass: expire lapsed assignments, then refresh every active attorney's snapshot.

    Each attorney is recalculated in its own session so one failure does not
    hold back the rest of the organization.
    """

    def __init__(self, session_factory: async_sessionmaker, case_management: CaseManagementPort | None = None, interval_seconds: float | None = None):
        self.session_factory = session_factory
        self.case_management = case_management
        self.interval_seconds = interval_seconds or settings.WORKLOAD_RECALC_INTERVAL_SECONDS

    async def run_once(self, org_ids: list[uuid.UUID] | None = None, as_of: date | None = None) -> RecalculationReport:
        report = RecalculationReport()
        if org_ids is None:
            async with self.session_factory() as session:
                org_ids = await AttorneyRepository(session).org_ids_with_active_attorneys()

        for org_id in org_ids:
            report.organizations += 1
            async with self.session_factory() as session:
                report.expired_assignments += await AssignmentLifecycle(session).expire_lapsed(org_id)
                attorney_ids = [a.id for a in await AttorneyRepository(session).list_active(org_id)]

            for attorney_id in attorney_ids:
                try:
                    async with self.session_factory() as session:
                        await WorkloadTracker(session, self.case_management).recalculate(org_id, attorney_id, as_of)
                    report.recalculated += 1
                except (AssignmentEngineError, SQLAlchemyError, httpx.HTTPError):
                    log.exception(f"Workload recalculation failed for attorney {attorney_id} (org {org_id})")
                    report.failed += 1

        log.info(
            f"Workload pass done: orgs={report.organizations} recalculated={report.recalculated} "
            f"failed={report.failed} expired={report.expired_assignments}"
        )
        return report

    async def run_forever(self):
        log.info(f"Workload recalculation job started; interval={self.interval_seconds}s")
        try:
            while True:
                try:
                    await self.run_once()
                except Exception:
                    log.exception("Workload recalculation pass failed")
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            log.info("Workload recalculation job cancelled; shutting down")
            raise
