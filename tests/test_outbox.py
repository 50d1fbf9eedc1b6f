"""Outbox relay delivery."""

import uuid

from assignment_engine.modules.assignments.lifecycle import AssignmentLifecycle
from assignment_engine.modules.events.outbox import EVENTS_TOPIC, OutboxRepository, relay_once
from conftest import ORG_ID


class TestRelay:
    async def test_publishes_pending_events_once(self, session, session_factory, event_bus):
        case_id = uuid.uuid4()
        await AssignmentLifecycle(session).create(ORG_ID, case_id, uuid.uuid4())

        assert await relay_once(session_factory) == 1
        assert await relay_once(session_factory) == 0

        [message] = event_bus.published
        assert message["topic"] == EVENTS_TOPIC
        assert message["key"] == str(case_id)
        assert message["value"]["event_type"] == "CASE_ASSIGNED"
        assert message["value"]["payload"]["case_id"] == str(case_id)
        async with session_factory() as s:
            [event] = await OutboxRepository(s).list_for_subject(ORG_ID, case_id)
            assert event.status == "sent"

    async def test_failed_publish_is_rescheduled(self, session, session_factory, event_bus, monkeypatch):
        case_id = uuid.uuid4()
        await AssignmentLifecycle(session).create(ORG_ID, case_id, uuid.uuid4())

        async def broken_publish(topic, key, value, headers=None):
            raise ConnectionError("broker down")

        monkeypatch.setattr(event_bus, "publish", broken_publish)
        assert await relay_once(session_factory) == 1

        async with session_factory() as s:
            [event] = await OutboxRepository(s).list_for_subject(ORG_ID, case_id)
            assert (event.status, event.attempts) == ("pending", 1)
            assert "broker down" in event.last_error
        # backing off; not picked up again right away
        assert await relay_once(session_factory) == 0
