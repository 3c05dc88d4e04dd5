"""Task seeding from templates and the task lifecycle."""

import pytest

from piecetrack.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from piecetrack.models import db
from piecetrack.models.production import ProductionTask, TASK_TRANSITIONS
from piecetrack.services import stage_catalog, task_service


def _task(workflow, name="Perform welds"):
    return db.session.query(ProductionTask).filter_by(workflow_id=workflow.id, task_name=name).one()


# ═════════════════════════════════════════════════════════════════════════════
# Seeding
# ═════════════════════════════════════════════════════════════════════════════


class TestSeeding:
    def test_template_tasks_created_pending(self, workflow):
        tasks = task_service.list_tasks(workflow.id)
        assert len(tasks) == 17
        assert {t.status for t in tasks} == {"pending"}
        # catalog order: Engineering Review first
        assert tasks[0].task_name == "Review drawings"
        assert tasks[0].stage.name == "Engineering Review"

    def test_hours_from_template(self, workflow):
        assert _task(workflow, "Perform welds").estimated_hours == 4.0
        assert _task(workflow, "Setup cutting equipment").estimated_hours == 0.5

    def test_task_types_classified(self, workflow):
        assert _task(workflow, "Perform welds").task_type == "welding"
        assert _task(workflow, "Cut to dimensions").task_type == "cutting"
        assert _task(workflow, "Apply coating").task_type == "painting"
        assert _task(workflow, "Dimensional check").task_type == "fabrication"

    def test_seeding_twice_is_a_no_op(self, workflow):
        assert task_service.seed_workflow_tasks(workflow.id) == []
        assert len(task_service.list_tasks(workflow.id)) == 17

    def test_reseed_single_stage_is_a_no_op(self, workflow, stages):
        welding = stage_catalog.stage_by_name("Welding")
        created = task_service.seed_workflow_tasks(workflow.id, stage_id=welding.id)
        assert created == []
        assert len(task_service.list_tasks(workflow.id, stage_id=welding.id)) == 3

    def test_reseed_tops_up_new_template_entries(self, app, workflow):
        app.config["TASK_TEMPLATES"] = {
            "Welding": ["Setup welding", {"name": "Grind welds", "estimated_hours": 1.5}],
        }
        try:
            created = task_service.seed_workflow_tasks(workflow.id)
        finally:
            app.config["TASK_TEMPLATES"] = None
        assert [t.task_name for t in created] == ["Grind welds"]
        assert len(task_service.list_tasks(workflow.id)) == 18

    def test_template_override_and_default_hours(self, app, stages):
        from piecetrack.services import workflow_engine as engine

        app.config["TASK_TEMPLATES"] = {"Fitting": ["Fit-up", {"name": "Tack weld", "estimated_hours": 0.75}]}
        app.config["TASK_DEFAULT_ESTIMATED_HOURS"] = 2.5
        try:
            wf = engine.create_workflow("T-1")
        finally:
            app.config["TASK_TEMPLATES"] = None
            app.config["TASK_DEFAULT_ESTIMATED_HOURS"] = 1.0

        tasks = {t.task_name: t for t in task_service.list_tasks(wf.id)}
        assert set(tasks) == {"Fit-up", "Tack weld"}
        assert tasks["Fit-up"].estimated_hours == 2.5
        assert tasks["Tack weld"].estimated_hours == 0.75
        assert tasks["Tack weld"].task_type == "welding"

    def test_unknown_workflow(self, stages):
        with pytest.raises(NotFoundError):
            task_service.seed_workflow_tasks(999)


@pytest.mark.parametrize("name, expected", [
    ("Perform welds", "welding"),
    ("Cut to dimensions", "cutting"),
    ("Drill holes", "drilling"),
    ("Paint touch-up", "painting"),
    ("Apply coating", "painting"),
    ("Final inspection", "inspection"),
    ("Assemble frame", "assembly"),
    ("Ship to site", "shipping"),
    ("Review drawings", "fabrication"),
])
def test_task_type_for(name, expected):
    assert task_service.task_type_for(name) == expected


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════


class TestTaskLifecycle:
    def test_start_and_complete_stamps(self, workflow):
        task = _task(workflow)
        task = task_service.update_task(task.id, {"status": "in_progress", "assigned_to": "welder-3"})
        assert task.started_at is not None
        assert task.assigned_to == "welder-3"

        task = task_service.update_task(task.id, {"status": "completed", "actual_hours": 5})
        assert task.completed_at is not None
        assert task.actual_hours == 5.0

    def test_rework_clears_completion(self, workflow):
        task = _task(workflow)
        task_service.update_task(task.id, {"status": "in_progress"})
        task_service.update_task(task.id, {"status": "completed"})
        task = task_service.update_task(task.id, {"status": "in_progress"})
        assert task.completed_at is None
        assert task.started_at is not None

    def test_invalid_edge(self, workflow):
        task = _task(workflow)
        with pytest.raises(InvalidTransitionError):
            task_service.update_task(task.id, {"status": "completed"})

    def test_unknown_status(self, workflow):
        with pytest.raises(ValidationError):
            task_service.update_task(_task(workflow).id, {"status": "done"})

    @pytest.mark.parametrize("hours", [-1, "lots"])
    def test_bad_hours(self, workflow, hours):
        with pytest.raises(ValidationError):
            task_service.update_task(_task(workflow).id, {"actual_hours": hours})

    def test_missing_task(self, stages):
        with pytest.raises(NotFoundError):
            task_service.get_task(12345)

    def test_transition_targets_are_known_statuses(self):
        statuses = set(TASK_TRANSITIONS)
        for targets in TASK_TRANSITIONS.values():
            assert set(targets) <= statuses
