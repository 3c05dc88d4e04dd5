"""Event bus: typed payloads, caller-owned subscriptions, publish-after-commit."""

from datetime import datetime, timezone

import pytest

from piecetrack.core.exceptions import ValidationError
from piecetrack.services import events
from piecetrack.services import workflow_engine as engine


@pytest.fixture()
def bus():
    return events.get_event_bus()


def test_subscription_receives_engine_events(bus, stages):
    received = []
    with bus.subscribe(received.append):
        wf = engine.create_workflow("E-1", project_id=3, actor="planner")
        engine.transition_stage(wf.id, stages[0].id, "alice")
        engine.update_status(wf.id, "on_hold", actor="alice")

    assert [e.kind for e in received] == [
        "workflow_created",
        "stage_transitioned",
        "status_changed",   # not_started → in_progress on first move
        "status_changed",   # in_progress → on_hold
    ]
    created, moved, started, held = received
    assert isinstance(created, events.WorkflowCreated)
    assert created.piece_mark_id == "E-1"
    assert created.project_id == 3
    assert created.actor == "planner"
    assert moved.from_stage_id is None
    assert moved.to_stage_id == stages[0].id
    assert moved.actor == "alice"
    assert (started.from_status, started.to_status) == ("not_started", "in_progress")
    assert (held.from_status, held.to_status) == ("in_progress", "on_hold")


def test_kind_filter(bus, stages):
    received = []
    with bus.subscribe(received.append, kinds={"stage_transitioned"}):
        wf = engine.create_workflow("E-2")
        engine.transition_stage(wf.id, stages[0].id, "alice")
    assert [e.kind for e in received] == ["stage_transitioned"]


def test_unknown_kind_rejected(bus):
    with pytest.raises(ValueError):
        bus.subscribe(lambda e: None, kinds={"piece_shipped"})


def test_unsubscribe_stops_delivery(bus, stages):
    received = []
    before = bus.subscriber_count
    sub = bus.subscribe(received.append)
    assert bus.subscriber_count == before + 1
    sub.unsubscribe()
    sub.unsubscribe()  # idempotent
    assert bus.subscriber_count == before
    engine.create_workflow("E-3")
    assert received == []


def test_failed_operation_publishes_nothing(bus, stages):
    received = []
    wf = engine.create_workflow("E-4")
    with bus.subscribe(received.append):
        with pytest.raises(ValidationError):
            engine.transition_stage(wf.id, 9999, "alice")
    assert received == []


def test_handler_failure_does_not_undo_commit(bus, stages, caplog):
    def _boom(event):
        raise RuntimeError("subscriber down")

    received = []
    with bus.subscribe(_boom), bus.subscribe(received.append):
        wf = engine.create_workflow("E-5")
        moved = engine.transition_stage(wf.id, stages[0].id, "alice")

    assert moved.current_stage_id == stages[0].id
    assert engine.get_workflow(wf.id).current_stage_id == stages[0].id
    assert len(received) == 3
    assert "Event handler failed" in caplog.text


def test_event_to_dict():
    ts = datetime(2026, 5, 1, 8, 30, tzinfo=timezone.utc)
    event = events.StageTransitioned(workflow_id=1, from_stage_id=2, to_stage_id=3,
                                     actor="alice", timestamp=ts)
    assert event.to_dict() == {
        "workflow_id": 1,
        "from_stage_id": 2,
        "to_stage_id": 3,
        "actor": "alice",
        "project_id": None,
        "timestamp": "2026-05-01T08:30:00+00:00",
        "kind": "stage_transitioned",
    }


def test_bus_is_per_application():
    from piecetrack import create_app
    other = create_app("testing")
    assert other.extensions["event_bus"] is not events.get_event_bus()


def test_workflow_filter(bus, stages):
    one = engine.create_workflow("E-6")
    two = engine.create_workflow("E-7")
    received = []
    with bus.subscribe(received.append, workflow_id=two.id):
        engine.transition_stage(one.id, stages[0].id, "alice")
        engine.transition_stage(two.id, stages[0].id, "alice")
    assert {e.workflow_id for e in received} == {two.id}
    assert [e.kind for e in received] == ["stage_transitioned", "status_changed"]


def test_project_filter(bus, stages):
    received = []
    with bus.subscribe(received.append, project_id=7):
        ours = engine.create_workflow("E-8", project_id=7)
        theirs = engine.create_workflow("E-9", project_id=8)
        engine.transition_stage(ours.id, stages[0].id, "alice")
        engine.transition_stage(theirs.id, stages[0].id, "alice")
        engine.update_status(ours.id, "on_hold", actor="alice")

    assert {e.workflow_id for e in received} == {ours.id}
    assert {e.project_id for e in received} == {7}
    assert [e.kind for e in received] == [
        "workflow_created", "stage_transitioned", "status_changed", "status_changed",
    ]


def test_task_status_changes_published(bus, workflow):
    from piecetrack.services import task_service

    task = task_service.list_tasks(workflow.id)[0]
    received = []
    with bus.subscribe(received.append, kinds={"task_status_changed"}, workflow_id=workflow.id):
        task_service.update_task(task.id, {"status": "in_progress"}, actor="welder-3")
        task_service.update_task(task.id, {"notes": "halfway"})

    assert len(received) == 1
    event = received[0]
    assert isinstance(event, events.TaskStatusChanged)
    assert (event.task_id, event.stage_id) == (task.id, task.stage_id)
    assert (event.from_status, event.to_status) == ("pending", "in_progress")
    assert event.actor == "welder-3"
    assert event.project_id == 7
