"""Assignment state machine: create, deactivate, reassign, unassign, expiry."""

import asyncio
import uuid
from collections import Counter
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from assignment_engine.core.base import as_utc, utcnow
from assignment_engine.core.errors import (
    InvalidStateTransitionError, NotFoundError, OverlappingAssignmentError, ValidationFailedError,
)
from assignment_engine.core.locks import KeyedLock
from assignment_engine.modules.assignments.lifecycle import AssignmentLifecycle
from assignment_engine.modules.assignments.models import CaseAssignment
from assignment_engine.modules.assignments.repository import AssignmentHistoryRepository, CaseAssignmentRepository
from assignment_engine.modules.events.outbox import OutboxRepository
from conftest import ORG_ID

LEAD = "LEAD_ATTORNEY"


async def actions(session, case_id) -> Counter:
    return Counter(h.action for h in await AssignmentHistoryRepository(session).list_for_case(ORG_ID, case_id))


async def active_rows(session_factory, case_id, role_type=LEAD):
    async with session_factory() as s:
        return list(await CaseAssignmentRepository(s).active_for_case_role(ORG_ID, case_id, role_type))


class TestCreate:
    async def test_create_writes_row_history_and_event(self, session):
        lc = AssignmentLifecycle(session)
        case_id, user = uuid.uuid4(), uuid.uuid4()

        row = await lc.create(ORG_ID, case_id, user, assignment_type="MANUAL", workload_weight=1.5)

        assert row.active is True
        assert row.role_type == LEAD
        assert row.workload_weight == 1.5
        history = await lc.history.list_for_case(ORG_ID, case_id)
        assert [(h.action, h.new_user_id, h.case_assignment_id) for h in history] == [("ASSIGNED", user, row.id)]
        events = await OutboxRepository(session).list_for_subject(ORG_ID, case_id)
        assert [e.event_type for e in events] == ["CASE_ASSIGNED"]

    async def test_overlapping_create_is_rejected(self, session, session_factory):
        lc = AssignmentLifecycle(session)
        case_id = uuid.uuid4()
        first_id = (await lc.create(ORG_ID, case_id, uuid.uuid4())).id

        with pytest.raises(OverlappingAssignmentError) as exc:
            await lc.create(ORG_ID, case_id, uuid.uuid4())

        assert exc.value.details["assignment_id"] == str(first_id)
        assert [r.id for r in await active_rows(session_factory, case_id)] == [first_id]
        assert await lc.history.count_for_case(ORG_ID, case_id) == 1

    async def test_different_roles_do_not_overlap(self, session):
        lc = AssignmentLifecycle(session)
        case_id = uuid.uuid4()
        await lc.create(ORG_ID, case_id, uuid.uuid4())
        co = await lc.create(ORG_ID, case_id, uuid.uuid4(), role_type="CO_COUNSEL")
        assert co.active is True

    async def test_adjacent_windows_do_not_overlap(self, session):
        lc = AssignmentLifecycle(session)
        case_id = uuid.uuid4()
        handover = utcnow() + timedelta(days=10)
        await lc.create(ORG_ID, case_id, uuid.uuid4(), effective_to=handover)

        later = await lc.create(ORG_ID, case_id, uuid.uuid4(), effective_from=handover)
        assert as_utc(later.effective_from) == handover

        with pytest.raises(OverlappingAssignmentError):
            await lc.create(ORG_ID, case_id, uuid.uuid4(), effective_from=handover - timedelta(days=5))

    async def test_window_must_end_after_it_starts(self, session):
        now = utcnow()
        with pytest.raises(ValidationFailedError):
            await AssignmentLifecycle(session).create(ORG_ID, uuid.uuid4(), uuid.uuid4(), effective_from=now, effective_to=now)

    async def test_unknown_assignment_type(self, session):
        with pytest.raises(ValidationFailedError):
            await AssignmentLifecycle(session).create(ORG_ID, uuid.uuid4(), uuid.uuid4(), assignment_type="MAGIC")

    async def test_lapsed_assignment_is_expired_before_new_one(self, session, session_factory):
        lc = AssignmentLifecycle(session)
        case_id = uuid.uuid4()
        now = utcnow()
        old = await lc.create(ORG_ID, case_id, uuid.uuid4(), effective_from=now - timedelta(days=10), effective_to=now - timedelta(days=1))

        new = await lc.create(ORG_ID, case_id, uuid.uuid4())

        assert [r.id for r in await active_rows(session_factory, case_id)] == [new.id]
        assert await actions(session, case_id) == Counter({"ASSIGNED": 2, "EXPIRED": 1})
        assert old.id != new.id


class TestDeactivate:
    async def test_deactivate_is_idempotent(self, session):
        lc = AssignmentLifecycle(session)
        case_id = uuid.uuid4()
        row = await lc.create(ORG_ID, case_id, uuid.uuid4())

        first = await lc.deactivate(ORG_ID, row.id, reason="case closed")
        second = await lc.deactivate(ORG_ID, row.id, reason="retry")

        assert first.active is False and second.active is False
        assert first.effective_to is not None
        assert await actions(session, case_id) == Counter({"ASSIGNED": 1, "REMOVED": 1})
        events = await OutboxRepository(session).list_for_subject(ORG_ID, case_id)
        assert [e.event_type for e in events] == ["CASE_ASSIGNED", "CASE_UNASSIGNED"]

    async def test_expired_reason_code(self, session):
        lc = AssignmentLifecycle(session)
        case_id = uuid.uuid4()
        row = await lc.create(ORG_ID, case_id, uuid.uuid4())
        await lc.deactivate(ORG_ID, row.id, reason_code="EXPIRED")
        assert await actions(session, case_id) == Counter({"ASSIGNED": 1, "EXPIRED": 1})

    async def test_rejects_unknown_reason_code(self, session):
        with pytest.raises(ValidationFailedError):
            await AssignmentLifecycle(session).deactivate(ORG_ID, uuid.uuid4(), reason_code="TRANSFERRED")

    async def test_unknown_assignment(self, session):
        with pytest.raises(NotFoundError):
            await AssignmentLifecycle(session).deactivate(ORG_ID, uuid.uuid4())

    async def test_reassign_possible_after_deactivate(self, session):
        lc = AssignmentLifecycle(session)
        case_id = uuid.uuid4()
        row = await lc.create(ORG_ID, case_id, uuid.uuid4())
        await lc.deactivate(ORG_ID, row.id)
        again = await lc.create(ORG_ID, case_id, uuid.uuid4())
        assert again.active is True


class TestReassign:
    async def test_reassign_swaps_holder_with_one_history_row(self, session, session_factory):
        lc = AssignmentLifecycle(session)
        case_id, a, b = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        original = await lc.create(ORG_ID, case_id, a, workload_weight=2.0)

        new = await lc.reassign(ORG_ID, case_id, b, reason="conflict of interest")

        active = await active_rows(session_factory, case_id)
        assert [(r.id, r.user_id) for r in active] == [(new.id, b)]
        assert new.workload_weight == 2.0
        history = await lc.history.list_for_case(ORG_ID, case_id)
        assert Counter(h.action for h in history) == Counter({"ASSIGNED": 1, "REASSIGNED": 1})
        reassigned = next(h for h in history if h.action == "REASSIGNED")
        assert (reassigned.previous_user_id, reassigned.new_user_id) == (a, b)
        assert reassigned.details["previous_assignment_id"] == str(original.id)

    async def test_reassign_to_current_holder_is_rejected(self, session):
        lc = AssignmentLifecycle(session)
        case_id, a = uuid.uuid4(), uuid.uuid4()
        await lc.create(ORG_ID, case_id, a)
        with pytest.raises(InvalidStateTransitionError):
            await lc.reassign(ORG_ID, case_id, a)

    async def test_reassign_unassigned_case_creates_assignment(self, session):
        lc = AssignmentLifecycle(session)
        case_id, b = uuid.uuid4(), uuid.uuid4()
        new = await lc.reassign(ORG_ID, case_id, b)
        history = await lc.history.list_for_case(ORG_ID, case_id)
        assert new.active is True
        assert [(h.action, h.previous_user_id, h.new_user_id) for h in history] == [("REASSIGNED", None, b)]

    async def test_reassign_is_atomic_when_insert_fails(self, session, session_factory, monkeypatch):
        lc = AssignmentLifecycle(session)
        case_id = uuid.uuid4()
        original_id = (await lc.create(ORG_ID, case_id, uuid.uuid4())).id

        async def failing_insert(self, org_id, **data):
            raise RuntimeError("insert failed after deactivate")

        monkeypatch.setattr(AssignmentLifecycle, "_insert_assignment", failing_insert)
        with pytest.raises(RuntimeError):
            await lc.reassign(ORG_ID, case_id, uuid.uuid4())
        monkeypatch.undo()

        assert [r.id for r in await active_rows(session_factory, case_id)] == [original_id]
        async with session_factory() as fresh:
            assert await AssignmentHistoryRepository(fresh).count_for_case(ORG_ID, case_id) == 1

    async def test_reassign_retries_transient_failures(self, session, session_factory, monkeypatch):
        lc = AssignmentLifecycle(session)
        case_id, b = uuid.uuid4(), uuid.uuid4()
        await lc.create(ORG_ID, case_id, uuid.uuid4())
        real_insert = AssignmentLifecycle._insert_assignment
        calls = []

        async def flaky_insert(self, org_id, **data):
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("INSERT INTO caseassignment", {}, ConnectionError("connection reset"))
            return await real_insert(self, org_id, **data)

        monkeypatch.setattr(AssignmentLifecycle, "_insert_assignment", flaky_insert)
        new = await lc.reassign(ORG_ID, case_id, b)

        assert len(calls) == 2
        assert [r.user_id for r in await active_rows(session_factory, case_id)] == [b]
        assert await actions(session, case_id) == Counter({"ASSIGNED": 1, "REASSIGNED": 1})
        assert new.user_id == b

    async def test_explicit_zero_weight_is_kept(self, session):
        lc = AssignmentLifecycle(session)
        case_id = uuid.uuid4()
        await lc.create(ORG_ID, case_id, uuid.uuid4(), workload_weight=2.0)

        shadow = await lc.reassign(ORG_ID, case_id, uuid.uuid4(), workload_weight=0.0)

        assert shadow.workload_weight == 0.0


class TestConcurrency:
    async def test_concurrent_creates_leave_one_active(self, session_factory):
        case_id = uuid.uuid4()

        async def attempt():
            async with session_factory() as s:
                return await AssignmentLifecycle(s).create(ORG_ID, case_id, uuid.uuid4())

        results = await asyncio.gather(*(attempt() for _ in range(5)), return_exceptions=True)

        created = [r for r in results if isinstance(r, CaseAssignment)]
        conflicts = [r for r in results if isinstance(r, OverlappingAssignmentError)]
        assert len(created) == 1 and len(conflicts) == 4
        assert [r.id for r in await active_rows(session_factory, case_id)] == [created[0].id]

    async def test_separate_processes_are_fenced_by_the_slot_row(self, session_factory):
        case_id = uuid.uuid4()

        async def attempt():
            # a private lock map per attempt, as if each ran in its own worker
            async with session_factory() as s:
                return await AssignmentLifecycle(s, KeyedLock()).create(ORG_ID, case_id, uuid.uuid4())

        results = await asyncio.gather(*(attempt() for _ in range(5)), return_exceptions=True)

        created = [r for r in results if isinstance(r, CaseAssignment)]
        conflicts = [r for r in results if isinstance(r, OverlappingAssignmentError)]
        assert len(created) == 1 and len(conflicts) == 4
        assert [r.id for r in await active_rows(session_factory, case_id)] == [created[0].id]

    async def test_concurrent_reassigns_leave_one_active(self, session_factory):
        case_id = uuid.uuid4()
        async with session_factory() as s:
            await AssignmentLifecycle(s).create(ORG_ID, case_id, uuid.uuid4())

        async def attempt(user_id):
            async with session_factory() as s:
                return await AssignmentLifecycle(s).reassign(ORG_ID, case_id, user_id)

        users = [uuid.uuid4() for _ in range(5)]
        results = await asyncio.gather(*(attempt(u) for u in users), return_exceptions=True)

        assert all(isinstance(r, CaseAssignment) for r in results)
        active = await active_rows(session_factory, case_id)
        assert len(active) == 1
        assert active[0].user_id in users
        async with session_factory() as s:
            assert await actions(s, case_id) == Counter({"ASSIGNED": 1, "REASSIGNED": 5})

    async def test_keyed_lock_serializes_and_cleans_up(self):
        locks = KeyedLock()
        order = []

        async def worker(name):
            async with locks.hold("case-1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
        assert len(locks) == 0


class TestUnassignAndExpiry:
    async def test_unassign_removes_every_role_of_the_user(self, session):
        lc = AssignmentLifecycle(session)
        case_id, a = uuid.uuid4(), uuid.uuid4()
        await lc.create(ORG_ID, case_id, a)
        await lc.create(ORG_ID, case_id, a, role_type="CO_COUNSEL")

        removed = await lc.unassign(ORG_ID, case_id, a, reason="withdrew")

        assert len(removed) == 2 and not any(r.active for r in removed)
        assert await actions(session, case_id) == Counter({"ASSIGNED": 2, "REMOVED": 2})

    async def test_unassign_without_assignment(self, session):
        with pytest.raises(NotFoundError):
            await AssignmentLifecycle(session).unassign(ORG_ID, uuid.uuid4(), uuid.uuid4())

    async def test_expire_lapsed_keeps_original_end(self, session, session_factory):
        lc = AssignmentLifecycle(session)
        lapsed_case, open_case = uuid.uuid4(), uuid.uuid4()
        now = utcnow()
        end = now - timedelta(hours=1)
        await lc.create(ORG_ID, lapsed_case, uuid.uuid4(), effective_from=now - timedelta(days=3), effective_to=end)
        await lc.create(ORG_ID, open_case, uuid.uuid4())

        assert await lc.expire_lapsed(ORG_ID) == 1
        assert await lc.expire_lapsed(ORG_ID) == 0

        assert len(await active_rows(session_factory, open_case)) == 1
        assert await active_rows(session_factory, lapsed_case) == []
        async with session_factory() as s:
            history = await AssignmentHistoryRepository(s).list_for_case(ORG_ID, lapsed_case)
            assert [h.action for h in history] == ["ASSIGNED", "EXPIRED"]
            expired_row = await CaseAssignmentRepository(s).get(ORG_ID, history[0].case_assignment_id)
            assert as_utc(expired_row.effective_to) == end

    async def test_expire_lapsed_skips_a_row_changed_underneath(self, session, session_factory, monkeypatch):
        lc = AssignmentLifecycle(session)
        now = utcnow()
        cases = [uuid.uuid4() for _ in range(3)]
        for case_id in cases:
            await lc.create(ORG_ID, case_id, uuid.uuid4(), effective_from=now - timedelta(days=3), effective_to=now - timedelta(hours=1))
        real_deactivate = AssignmentLifecycle._deactivate
        calls = []

        async def stale_once(self, row, *args, **kwargs):
            calls.append(row.case_id)
            if len(calls) == 1:
                raise StaleDataError("slot revision changed")
            return await real_deactivate(self, row, *args, **kwargs)

        monkeypatch.setattr(AssignmentLifecycle, "_deactivate", stale_once)

        assert await lc.expire_lapsed(ORG_ID) == 2
        assert len(calls) == 3
        still_active = [c for c in cases if await active_rows(session_factory, c)]
        assert still_active == [calls[0]]

        monkeypatch.undo()
        assert await lc.expire_lapsed(ORG_ID) == 1

    async def test_history_rows_are_immutable(self, session):
        lc = AssignmentLifecycle(session)
        case_id = uuid.uuid4()
        await lc.create(ORG_ID, case_id, uuid.uuid4())
        entry = (await lc.history.list_for_case(ORG_ID, case_id))[0]

        entry.reason = "rewritten"
        with pytest.raises(ValueError):
            await session.flush()
        await session.rollback()
