"""Automatic and manual case assignment, recommendations and history paging."""

import uuid

import pytest
import pytest_asyncio

from assignment_engine.core.errors import NotFoundError, ValidationFailedError
from assignment_engine.modules.assignments.lifecycle import AssignmentLifecycle
from assignment_engine.modules.assignments.schemas import AssignCaseRequest, ReassignRequest
from assignment_engine.modules.assignments.service import AssignmentService, priority_weight
from assignment_engine.modules.events.outbox import OutboxRepository
from assignment_engine.modules.rules.schemas import RuleActions
from assignment_engine.modules.workload.repository import WorkloadRepository
from conftest import ORG_ID, make_attorney, make_rule

LITIGATION = "LITIGATION"


@pytest_asyncio.fixture
async def bench(session):
    """An expert and an intermediate litigator, nobody loaded yet."""
    expert = await make_attorney(session, "Expert", {LITIGATION: {"proficiency_level": "EXPERT"}})
    junior = await make_attorney(session, "Junior", {LITIGATION: {"proficiency_level": "INTERMEDIATE"}})
    return expert, junior


async def event_types(session, case_id):
    return [e.event_type for e in await OutboxRepository(session).list_for_subject(ORG_ID, case_id)]


class TestPriorityWeight:
    @pytest.mark.parametrize("priority,weight", [("URGENT", 2.0), ("high", 1.5), ("LOW", 1.0), (None, 1.0)])
    def test_weights(self, priority, weight):
        assert priority_weight({"priority": priority}) == weight


class TestAutomaticAssignment:
    async def test_no_rule_leaves_case_unassigned(self, session, case_management, bench):
        case_id = case_management.add_case(case_type="TAX")
        await make_rule(session, rule_name="litigation", case_type=LITIGATION)

        result = await AssignmentService(session).assign_case(ORG_ID, AssignCaseRequest(case_id=case_id), None)

        assert result.outcome == "NO_RULE"
        assert result.assignment is None
        assert await AssignmentLifecycle(session).assignments.active_for_case(ORG_ID, case_id) == []
        assert await event_types(session, case_id) == ["AUTO_ASSIGNMENT_SKIPPED"]

    async def test_no_eligible_candidate(self, session, case_management, bench, caplog):
        case_id = case_management.add_case(case_type=LITIGATION)
        rule = await make_rule(session, rule_name="experts only", case_type=LITIGATION, min_expertise_score=95)

        result = await AssignmentService(session).assign_case(ORG_ID, AssignCaseRequest(case_id=case_id), None)

        assert result.outcome == "NO_ELIGIBLE_CANDIDATE"
        assert result.rule_id == rule.id
        assert set(result.rejected) == {str(a) for a in bench}
        assert await AssignmentLifecycle(session).assignments.active_for_case(ORG_ID, case_id) == []
        assert "No eligible attorney" in caplog.text

    async def test_best_scoring_attorney_is_assigned(self, session, case_management, bench):
        expert, _ = bench
        case_id = case_management.add_case(case_type=LITIGATION, priority="HIGH", client_id="acme")
        rule = await make_rule(session, rule_name="litigation", case_type=LITIGATION)

        result = await AssignmentService(session).assign_case(ORG_ID, AssignCaseRequest(case_id=case_id), None)

        assert result.outcome == "ASSIGNED"
        a = result.assignment
        assert (a.user_id, a.assignment_type, a.rule_id, a.role_type) == (expert, "AUTOMATIC", rule.id, "LEAD_ATTORNEY")
        assert a.workload_weight == 1.5
        assert a.expertise_match_score == 90.0
        snapshot = await WorkloadRepository(session).latest(ORG_ID, expert)
        assert snapshot.total_workload_points == 15.0

    async def test_rule_actions_shape_the_assignment(self, session, case_management, bench):
        case_id = case_management.add_case(case_type=LITIGATION)
        await make_rule(
            session, rule_name="co-counsel", case_type=LITIGATION,
            rule_actions=RuleActions(role_type="CO_COUNSEL", workload_weight=3.0, notify=True),
        )

        result = await AssignmentService(session).assign_case(ORG_ID, AssignCaseRequest(case_id=case_id), None)

        assert result.assignment.role_type == "CO_COUNSEL"
        assert result.assignment.workload_weight == 3.0
        assert await event_types(session, case_id) == ["CASE_ASSIGNED", "ASSIGNMENT_NOTIFICATION"]

    @pytest.mark.parametrize("prefer,expected", [(True, "junior"), (False, "expert")])
    async def test_previous_attorney_preference(self, session, case_management, bench, prefer, expected):
        expert, junior = bench
        old_case = uuid.uuid4()
        await AssignmentLifecycle(session).create(ORG_ID, old_case, junior, client_id="acme", case_type=LITIGATION)
        await AssignmentLifecycle(session).unassign(ORG_ID, old_case, junior)
        case_id = case_management.add_case(case_type=LITIGATION, client_id="acme")
        await make_rule(session, rule_name="continuity", case_type=LITIGATION, prefer_previous_attorney=prefer)

        result = await AssignmentService(session).assign_case(ORG_ID, AssignCaseRequest(case_id=case_id), None)

        assert result.assignment.user_id == {"junior": junior, "expert": expert}[expected]

    async def test_inline_attributes_cover_unknown_cases(self, session, bench):
        await make_rule(session, rule_name="litigation", case_type=LITIGATION)
        payload = AssignCaseRequest(case_id=uuid.uuid4(), case_attributes={"case_type": LITIGATION})

        result = await AssignmentService(session).assign_case(ORG_ID, payload, None)

        assert result.outcome == "ASSIGNED"

    async def test_unknown_case_without_attributes(self, session, bench):
        with pytest.raises(ValidationFailedError):
            await AssignmentService(session).assign_case(ORG_ID, AssignCaseRequest(case_id=uuid.uuid4()), None)


class TestManualAssignment:
    async def test_explicit_user_bypasses_rules(self, session, case_management):
        case_id = case_management.add_case(case_type="TAX", priority="URGENT")
        user, admin = uuid.uuid4(), uuid.uuid4()

        result = await AssignmentService(session).assign_case(ORG_ID, AssignCaseRequest(case_id=case_id, user_id=user), admin)

        assert result.outcome == "ASSIGNED"
        assert (result.assignment.user_id, result.assignment.assignment_type, result.assignment.assigned_by) == (user, "MANUAL", admin)
        assert result.assignment.workload_weight == 2.0

    async def test_manual_type_needs_a_user(self, session):
        with pytest.raises(ValidationFailedError):
            await AssignmentService(session).assign_case(
                ORG_ID, AssignCaseRequest(case_id=uuid.uuid4(), assignment_type="MANUAL"), None
            )

    async def test_reassign_refreshes_both_workloads(self, session):
        case_id, a, b = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        service = AssignmentService(session)
        await service.assign_case(ORG_ID, AssignCaseRequest(case_id=case_id, user_id=a, case_attributes={}), None)

        await service.reassign(ORG_ID, ReassignRequest(case_id=case_id, new_user_id=b), None)

        workloads = await WorkloadRepository(session).latest_for_users(ORG_ID, [a, b])
        assert workloads[a].active_cases_count == 0
        assert workloads[b].active_cases_count == 1


class TestRecommend:
    async def test_top_three_without_writes(self, session, case_management, bench):
        expert, junior = bench
        senior = await make_attorney(session, "Senior", {LITIGATION: {"proficiency_level": "ADVANCED"}})
        await make_attorney(session, "Novice", {LITIGATION: {"proficiency_level": "BEGINNER"}})
        case_id = case_management.add_case(case_type=LITIGATION)
        await make_rule(session, rule_name="litigation", case_type=LITIGATION)

        rec = await AssignmentService(session).recommend(ORG_ID, case_id)

        assert [c.user_id for c in rec.candidates] == [expert, senior, junior]
        assert "Strong expertise in this practice area" in rec.candidates[0].strengths
        assert "No workload snapshot yet" in rec.candidates[0].concerns
        assert await AssignmentLifecycle(session).assignments.active_for_case(ORG_ID, case_id) == []
        assert await event_types(session, case_id) == []

    async def test_no_rule_uses_default_constraints(self, session, case_management, bench):
        case_id = case_management.add_case(case_type=LITIGATION)

        rec = await AssignmentService(session).recommend(ORG_ID, case_id)

        assert rec.rule_id is None
        assert len(rec.candidates) == 2
        assert rec.message


class TestQueries:
    async def test_history_pages_with_cursor(self, session):
        case_id = uuid.uuid4()
        lc = AssignmentLifecycle(session)
        await lc.create(ORG_ID, case_id, uuid.uuid4())
        for _ in range(3):
            await lc.reassign(ORG_ID, case_id, uuid.uuid4())
        service = AssignmentService(session)

        first = await service.history(ORG_ID, case_id, limit=2)
        second = await service.history(ORG_ID, case_id, limit=2, cursor=first.next_cursor)

        assert len(first.items) == 2 and first.next_cursor
        assert len(second.items) == 2 and second.next_cursor is None
        assert [h.action for h in first.items + second.items] == ["ASSIGNED", "REASSIGNED", "REASSIGNED", "REASSIGNED"]
        assert len({h.id for h in first.items + second.items}) == 4

    async def test_malformed_cursor(self, session):
        with pytest.raises(ValidationFailedError):
            await AssignmentService(session).history(ORG_ID, uuid.uuid4(), cursor="not-a-cursor")

    async def test_primary_and_team(self, session):
        case_id, lead, co = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        service = AssignmentService(session)
        with pytest.raises(NotFoundError):
            await service.primary(ORG_ID, case_id)

        await service.lifecycle.create(ORG_ID, case_id, lead)
        await service.lifecycle.create(ORG_ID, case_id, co, role_type="CO_COUNSEL")

        assert (await service.primary(ORG_ID, case_id)).user_id == lead
        assert {a.user_id for a in await service.team(ORG_ID, case_id)} == {lead, co}
