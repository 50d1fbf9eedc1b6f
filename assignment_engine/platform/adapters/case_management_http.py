import logging
import uuid
from datetime import datetime
import httpx
from assignment_engine.core.config import settings
from assignment_engine.core.errors import TransientStoreError
from assignment_engine.platform.ports.case_management import CaseManagementPort, CaseAttributes, TaskMetrics

log = logging.getLogger("case_management.http")

class HttpCaseManagement(CaseManagementPort):
    def __init__(self, base_url: str | None = None, timeout: float | None = None, transport: httpx.AsyncBaseTransport | None = None):
        base_url = base_url or settings.CASE_MANAGEMENT_URL
        if not base_url:
            raise RuntimeError("CASE_MANAGEMENT_URL not configured")
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout or settings.CASE_MANAGEMENT_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def _get(self, path: str, org_id: uuid.UUID, params: dict | None = None) -> dict | None:
        try:
            resp = await self.client.get(path, params=params, headers={"x-org-id": str(org_id)})
        except (httpx.TimeoutException, httpx.TransportError) as e:
            log.warning(f"Case-management call {path} failed: {e}")
            raise TransientStoreError("Case-management service unavailable", {"path": path}) from e
        if resp.status_code == 404:
            return None
        if resp.status_code >= 500:
            log.warning(f"Case-management call {path} returned {resp.status_code}")
            raise TransientStoreError("Case-management service unavailable", {"path": path, "status": resp.status_code})
        resp.raise_for_status()
        return resp.json()

    async def get_case_attributes(self, org_id: uuid.UUID, case_id: uuid.UUID) -> CaseAttributes | None:
        data = await self._get(f"/cases/{case_id}", org_id)
        if data is None:
            return None
        return CaseAttributes(
            case_id=case_id,
            case_type=data.get("case_type") or data.get("type"),
            priority=data.get("priority"),
            client_id=str(data["client_id"]) if data.get("client_id") is not None else data.get("client_email"),
            practice_area=data.get("practice_area"),
            **{k: v for k, v in data.items() if k not in {"id", "case_id", "case_type", "type", "priority", "client_id", "client_email", "practice_area"}},
        )

    async def get_task_metrics(self, org_id: uuid.UUID, attorney_id: uuid.UUID, deadline_horizon: datetime) -> TaskMetrics:
        data = await self._get(
            f"/users/{attorney_id}/task-metrics", org_id, params={"deadline_before": deadline_horizon.isoformat()}
        )
        if data is None:
            return TaskMetrics()
        return TaskMetrics(**{k: v for k, v in data.items() if k in TaskMetrics.model_fields})

    async def close(self):
        await self.client.aclose()
