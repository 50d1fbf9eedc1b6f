import uuid
import logging
from datetime import datetime
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from assignment_engine.core.base import as_utc
from assignment_engine.core.config import settings, ScoringConfig
from assignment_engine.core.errors import NotFoundError, ValidationFailedError
from assignment_engine.core.locks import KeyedLock
from assignment_engine.core.paging import encode_cursor, decode_cursor
from assignment_engine.core.resilience import transaction_scope
from assignment_engine.modules.assignments.lifecycle import AssignmentLifecycle
from assignment_engine.modules.assignments.models import CaseAssignment
from assignment_engine.modules.assignments.schemas import (
    AssignCaseRequest, AssignmentResult, AssignmentOut, ReassignRequest, DeactivateRequest,
    HistoryOut, HistoryPage, Recommendation, RecommendedCandidate,
)
from assignment_engine.modules.assignments.selector import (
    CandidateSelector, CandidateProfile, SelectionConstraints, Candidate, NoEligibleCandidate,
)
from assignment_engine.modules.attorneys.service import AttorneyExpertiseStore
from assignment_engine.modules.rules.engine import AssignmentRuleEngine, RuleMatch
from assignment_engine.modules.workload.models import UserWorkload
from assignment_engine.modules.workload.service import WorkloadTracker, refresh_workloads
from assignment_engine.platform.ports.case_management import CaseManagementPort
from assignment_engine.platform.provider_registry import registry

logger = logging.getLogger(__name__)

RECOMMENDATION_LIMIT = 3

def priority_weight(attributes: dict) -> float:
    priority = attributes.get("priority")
    if not priority:
        return 1.0
    return settings.CASE_PRIORITY_WEIGHTS.get(str(priority).upper(), 1.0)

def assess(candidate: Candidate, snapshot: UserWorkload | None, previous_user_id: uuid.UUID | None) -> tuple[list[str], list[str]]:
    strengths, concerns = [], []
    if candidate.expertise_score >= 75:
        strengths.append("Strong expertise in this practice area")
    if candidate.capacity_percentage < 60:
        strengths.append("Good availability")
    elif candidate.capacity_percentage > 75:
        concerns.append("High current workload")
    if previous_user_id is not None and candidate.user_id == previous_user_id:
        strengths.append("Previous experience with this client")
    if snapshot is not None and snapshot.overdue_tasks_count:
        concerns.append(f"{snapshot.overdue_tasks_count} overdue tasks")
    if snapshot is None:
        concerns.append("No workload snapshot yet")
    return strengths, concerns

class AssignmentService:
    """Entry point for assigning cases: manual or rule-driven, plus the read side."""

    def __init__(
        self,
        session: AsyncSession,
        case_management: CaseManagementPort | None = None,
        scoring: ScoringConfig | None = None,
        locks: KeyedLock | None = None,
    ):
        self.session = session
        self.case_management = case_management or registry.case_management()
        self.lifecycle = AssignmentLifecycle(session, locks)
        self.rules = AssignmentRuleEngine(session)
        self.expertise = AttorneyExpertiseStore(session, scoring)
        self.workload = WorkloadTracker(session, self.case_management)
        self.selector = CandidateSelector(scoring)

    # ---- Case attributes & candidate pool ----

    async def case_attributes(self, org_id: uuid.UUID, case_id: uuid.UUID, inline: dict | None = None) -> dict:
        remote = await self.case_management.get_case_attributes(org_id, case_id)
        attributes = remote.as_map() if remote is not None else {}
        attributes.update(inline or {})
        attributes["case_id"] = str(case_id)
        return attributes

    async def candidate_pool(self, org_id: uuid.UUID, attributes: dict) -> tuple[list[CandidateProfile], dict[uuid.UUID, UserWorkload]]:
        practice_area = attributes.get("practice_area") or attributes.get("case_type")
        attorney_ids = await self.expertise.list_active_attorneys(org_id, practice_area)
        if practice_area:
            scores = await self.expertise.scores_for_area(org_id, attorney_ids, practice_area)
        else:
            scores = {aid: 0.0 for aid in attorney_ids}
        snapshots = await self.workload.latest_for_users(org_id, attorney_ids)
        pool = [
            CandidateProfile(
                user_id=aid,
                expertise_score=scores.get(aid, 0.0),
                # no snapshot yet means nothing has been assigned to them
                capacity_percentage=snapshots[aid].capacity_percentage if aid in snapshots else 0.0,
                active_cases_count=snapshots[aid].active_cases_count if aid in snapshots else 0,
            )
            for aid in attorney_ids
        ]
        return pool, snapshots

    async def previous_attorney(self, org_id: uuid.UUID, case_id: uuid.UUID, role_type: str, attributes: dict) -> uuid.UUID | None:
        return await self.lifecycle.assignments.previous_attorney(
            org_id,
            case_id=case_id,
            role_type=role_type,
            client_id=attributes.get("client_id"),
            case_type=attributes.get("case_type"),
        )

    # ---- assignCase ----

    async def assign_case(self, org_id: uuid.UUID, payload: AssignCaseRequest, performed_by: uuid.UUID | None) -> AssignmentResult:
        if payload.user_id is not None:
            return await self._assign_manually(org_id, payload, performed_by)
        if payload.assignment_type == "MANUAL":
            raise ValidationFailedError("A MANUAL assignment needs user_id")
        return await self._assign_automatically(org_id, payload, performed_by)

    async def _assign_manually(self, org_id: uuid.UUID, payload: AssignCaseRequest, performed_by: uuid.UUID | None) -> AssignmentResult:
        attributes = await self.case_attributes(org_id, payload.case_id, payload.case_attributes)
        assignment = await self.lifecycle.create(
            org_id,
            payload.case_id,
            payload.user_id,
            role_type=payload.role_type,
            assignment_type=payload.assignment_type or "MANUAL",
            performed_by=performed_by,
            effective_from=payload.effective_from,
            effective_to=payload.effective_to,
            reason=payload.reason,
            workload_weight=payload.workload_weight or priority_weight(attributes),
            notes=payload.notes,
            client_id=attributes.get("client_id"),
            case_type=attributes.get("case_type"),
        )
        await refresh_workloads(self.session, org_id, [assignment.user_id], self.case_management)
        return AssignmentResult(outcome="ASSIGNED", assignment=AssignmentOut.model_validate(assignment))

    async def _assign_automatically(self, org_id: uuid.UUID, payload: AssignCaseRequest, performed_by: uuid.UUID | None) -> AssignmentResult:
        case_id = payload.case_id
        attributes = await self.case_attributes(org_id, case_id, payload.case_attributes)
        if not attributes.get("case_type") and not attributes.get("practice_area"):
            raise ValidationFailedError(
                f"No attributes known for case {case_id}; pass case_attributes or assign manually with user_id",
                {"case_id": str(case_id)},
            )

        match = await self.rules.select_rule(org_id, attributes)
        if match is None:
            message = "No assignment rule matched; assign manually"
            await self._record_skip(org_id, case_id, "NO_RULE", message)
            return AssignmentResult(outcome="NO_RULE", message=message)

        role_type = payload.role_type or match.actions.role_type or settings.PRIMARY_ROLE_TYPE
        pool, _ = await self.candidate_pool(org_id, attributes)
        constraints = SelectionConstraints.from_rule(match.rule)
        previous = await self.previous_attorney(org_id, case_id, role_type, attributes) if constraints.prefer_previous_attorney else None
        choice = self.selector.select(pool, constraints, previous)

        if isinstance(choice, NoEligibleCandidate):
            logger.warning(
                f"No eligible attorney for case {case_id} under rule {match.rule.id} ({match.rule.rule_name}): "
                f"{choice.reason}; {choice.evaluated} evaluated"
            )
            await self._record_skip(org_id, case_id, "NO_ELIGIBLE_CANDIDATE", choice.reason, match)
            return AssignmentResult(
                outcome="NO_ELIGIBLE_CANDIDATE",
                rule_id=match.rule.id,
                message=choice.reason,
                rejected={str(k): v for k, v in choice.rejected.items()},
            )

        reason = payload.reason or f"Selected by rule {match.rule.rule_name}" + (" (previous attorney)" if choice.preferred else "")
        assignment = await self.lifecycle.create(
            org_id,
            case_id,
            choice.user_id,
            role_type=role_type,
            assignment_type=payload.assignment_type or "AUTOMATIC",
            performed_by=performed_by,
            effective_from=payload.effective_from,
            effective_to=payload.effective_to,
            reason=reason,
            workload_weight=payload.workload_weight or match.actions.workload_weight or priority_weight(attributes),
            expertise_match_score=choice.expertise_score,
            notes=payload.notes,
            rule_id=match.rule.id,
            client_id=attributes.get("client_id"),
            case_type=attributes.get("case_type"),
        )
        if match.actions.notify:
            await self._notify(org_id, assignment, match)
        await refresh_workloads(self.session, org_id, [assignment.user_id], self.case_management)
        return AssignmentResult(outcome="ASSIGNED", assignment=AssignmentOut.model_validate(assignment), rule_id=match.rule.id)

    async def _record_skip(self, org_id: uuid.UUID, case_id: uuid.UUID, outcome: str, message: str, match: RuleMatch | None = None):
        async with transaction_scope(self.session):
            await self.lifecycle.outbox.enqueue(org_id, "AUTO_ASSIGNMENT_SKIPPED", "case", case_id, {
                "case_id": str(case_id),
                "outcome": outcome,
                "message": message,
                "rule_id": str(match.rule.id) if match else None,
            })
            await self.session.commit()

    async def _notify(self, org_id: uuid.UUID, assignment: CaseAssignment, match: RuleMatch):
        async with transaction_scope(self.session):
            await self.lifecycle.outbox.enqueue(org_id, "ASSIGNMENT_NOTIFICATION", "case", assignment.case_id, {
                "assignment_id": str(assignment.id),
                "case_id": str(assignment.case_id),
                "user_id": str(assignment.user_id),
                "rule_id": str(match.rule.id),
                "rule_name": match.rule.rule_name,
            })
            await self.session.commit()

    # ---- Recommendation preview (no writes) ----

    async def recommend(self, org_id: uuid.UUID, case_id: uuid.UUID, inline: dict | None = None) -> Recommendation:
        attributes = await self.case_attributes(org_id, case_id, inline)
        match = await self.rules.select_rule(org_id, attributes)
        constraints = SelectionConstraints.from_rule(match.rule) if match else SelectionConstraints()
        role_type = (match.actions.role_type if match else None) or settings.PRIMARY_ROLE_TYPE
        pool, snapshots = await self.candidate_pool(org_id, attributes)
        previous = await self.previous_attorney(org_id, case_id, role_type, attributes)

        top = self.selector.select(pool, constraints, previous)
        if isinstance(top, NoEligibleCandidate):
            return Recommendation(
                case_id=case_id,
                rule_id=match.rule.id if match else None,
                rule_name=match.rule.rule_name if match else None,
                message=top.reason,
            )
        ranked = [top] + [c for c in self.selector.rank(pool, constraints) if c.user_id != top.user_id]
        candidates = []
        for c in ranked[:RECOMMENDATION_LIMIT]:
            strengths, concerns = assess(c, snapshots.get(c.user_id), previous)
            candidates.append(RecommendedCandidate(
                user_id=c.user_id,
                score=c.score,
                expertise_score=c.expertise_score,
                capacity_percentage=c.capacity_percentage,
                active_cases_count=c.active_cases_count,
                preferred=c.preferred,
                strengths=strengths,
                concerns=concerns,
            ))
        return Recommendation(
            case_id=case_id,
            rule_id=match.rule.id if match else None,
            rule_name=match.rule.rule_name if match else None,
            candidates=candidates,
            message=None if match else "No assignment rule matched; default constraints applied",
        )

    # ---- Transitions ----

    async def reassign(self, org_id: uuid.UUID, payload: ReassignRequest, performed_by: uuid.UUID | None) -> CaseAssignment:
        role_type = payload.role_type or settings.PRIMARY_ROLE_TYPE
        before = await self.lifecycle.assignments.active_for_case_role(org_id, payload.case_id, role_type)
        assignment = await self.lifecycle.reassign(
            org_id,
            payload.case_id,
            payload.new_user_id,
            role_type=role_type,
            performed_by=performed_by,
            reason=payload.reason,
            notes=payload.notes,
            workload_weight=payload.workload_weight,
        )
        await refresh_workloads(self.session, org_id, [r.user_id for r in before] + [assignment.user_id], self.case_management)
        return assignment

    async def deactivate(self, org_id: uuid.UUID, assignment_id: uuid.UUID, payload: DeactivateRequest, performed_by: uuid.UUID | None) -> CaseAssignment:
        assignment = await self.lifecycle.deactivate(
            org_id, assignment_id, reason_code=payload.reason_code, reason=payload.reason, performed_by=performed_by
        )
        await refresh_workloads(self.session, org_id, [assignment.user_id], self.case_management)
        return assignment

    async def unassign(self, org_id: uuid.UUID, case_id: uuid.UUID, user_id: uuid.UUID, payload: DeactivateRequest, performed_by: uuid.UUID | None) -> list[CaseAssignment]:
        removed = await self.lifecycle.unassign(
            org_id, case_id, user_id, reason_code=payload.reason_code, reason=payload.reason, performed_by=performed_by
        )
        await refresh_workloads(self.session, org_id, [user_id], self.case_management)
        return removed

    # ---- Queries ----

    async def team(self, org_id: uuid.UUID, case_id: uuid.UUID) -> Sequence[CaseAssignment]:
        return await self.lifecycle.assignments.active_for_case(org_id, case_id)

    async def primary(self, org_id: uuid.UUID, case_id: uuid.UUID) -> CaseAssignment:
        rows = await self.lifecycle.assignments.active_for_case_role(org_id, case_id, settings.PRIMARY_ROLE_TYPE)
        if not rows:
            raise NotFoundError("Primary assignment", case_id)
        return rows[0]

    async def for_user(self, org_id: uuid.UUID, user_id: uuid.UUID, *, active_only: bool = True, limit: int = 50, offset: int = 0) -> Sequence[CaseAssignment]:
        return await self.lifecycle.assignments.list_for_user(org_id, user_id, active_only=active_only, limit=limit, offset=offset)

    async def history(self, org_id: uuid.UUID, case_id: uuid.UUID, *, limit: int = 50, cursor: str | None = None) -> HistoryPage:
        after = None
        position = decode_cursor(cursor)
        if position is not None:
            try:
                after = (datetime.fromisoformat(position["at"]), uuid.UUID(position["id"]))
            except (KeyError, TypeError, ValueError):
                raise ValidationFailedError("Malformed pagination cursor")
        rows = list(await self.lifecycle.history.list_for_case(org_id, case_id, limit=limit + 1, after=after))
        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            last = rows[-1]
            next_cursor = encode_cursor({"at": as_utc(last.performed_at).isoformat(), "id": str(last.id)})
        return HistoryPage(items=[HistoryOut.model_validate(r) for r in rows], next_cursor=next_cursor)
