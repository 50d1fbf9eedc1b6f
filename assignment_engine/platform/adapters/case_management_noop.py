import logging
import uuid
from datetime import datetime
from assignment_engine.platform.ports.case_management import CaseManagementPort, CaseAttributes, TaskMetrics

log = logging.getLogger("case_management.noop")

class NoopCaseManagement(CaseManagementPort):
    """Local/dev stand-in: knows no cases, reports no tasks.

    Callers pass case attributes inline with the assignment request instead.
    """

    async def get_case_attributes(self, org_id: uuid.UUID, case_id: uuid.UUID) -> CaseAttributes | None:
        log.debug("No case-management backend configured; case %s has no attributes", case_id)
        return None

    async def get_task_metrics(self, org_id: uuid.UUID, attorney_id: uuid.UUID, deadline_horizon: datetime) -> TaskMetrics:
        return TaskMetrics()
