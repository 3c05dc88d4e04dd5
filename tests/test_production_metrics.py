"""Progress formula, production stats and the daily rollup."""

from datetime import datetime, timedelta, timezone

import pytest

from piecetrack.core.exceptions import ValidationError
from piecetrack.models import db
from piecetrack.services import issue_service, metrics_service, task_service
from piecetrack.services import workflow_engine as engine


def _fleet():
    """10 workflows: 4 completed, 2 in_progress, 1 on_hold, 3 not_started."""
    plan = ["completed"] * 4 + ["in_progress"] * 2 + ["on_hold"] + ["not_started"] * 3
    created = []
    for i, target in enumerate(plan):
        wf = engine.create_workflow(f"F-{i}", project_id=1)
        if target != "not_started":
            engine.update_status(wf.id, "in_progress")
        if target in ("completed", "on_hold"):
            engine.update_status(wf.id, target)
        created.append(wf)
    return created


@pytest.mark.parametrize("ordinal, total, expected", [
    (0, 12, 0),
    (1, 12, 8),
    (6, 12, 50),
    (12, 12, 100),
    (1, 8, 13),       # 12.5 rounds half up
    (3, 8, 38),       # 37.5 rounds half up
    (15, 12, 100),    # clamped
    (-1, 12, 0),      # clamped
    (3, 0, 0),        # empty catalog
])
def test_progress_percentage(ordinal, total, expected):
    assert metrics_service.progress_percentage(ordinal, total) == expected


@pytest.mark.parametrize("status, expected", [
    ("completed", 100),
    ("not_started", 0),
    ("in_progress", 25),
    ("on_hold", 25),
    ("cancelled", 25),
])
def test_workflow_progress_status_overrides(status, expected):
    assert metrics_service.workflow_progress(status, 3, 12) == expected


class TestProductionStats:
    def test_completion_rate_forty_percent(self, stages):
        _fleet()
        stats = metrics_service.get_production_stats()
        assert stats["total_pieces"] == 10
        assert stats["completed"] == 4
        assert stats["in_progress"] == 2
        assert stats["on_hold"] == 1
        assert stats["not_started"] == 3
        assert stats["cancelled"] == 0
        assert stats["completion_rate"] == 40.0

    def test_empty_set(self, stages):
        stats = metrics_service.get_production_stats()
        assert stats["total_pieces"] == 0
        assert stats["completion_rate"] == 0.0
        assert stats["average_cycle_time"] == 0.0
        assert stats["efficiency_rate"] == 0.0
        assert stats["issues_open"] == 0

    def test_scoped_by_project_and_ids(self, stages):
        a = engine.create_workflow("S-1", project_id=1)
        b = engine.create_workflow("S-2", project_id=2)
        engine.create_workflow("S-3", project_id=2)
        assert metrics_service.get_production_stats(project_id=2)["total_pieces"] == 2
        assert metrics_service.get_production_stats(workflow_ids=[a.id, b.id])["total_pieces"] == 2
        assert metrics_service.get_production_stats(project_id=1, workflow_ids=[b.id])["total_pieces"] == 0

    def test_average_cycle_time(self, stages):
        now = datetime.now(timezone.utc)
        for i, hours in enumerate((10, 20)):
            wf = engine.create_workflow(f"CT-{i}")
            engine.update_status(wf.id, "in_progress")
            engine.update_status(wf.id, "completed")
            wf.actual_start = now - timedelta(hours=hours)
            wf.actual_end = now
            db.session.commit()
        # still running, ignored
        running = engine.create_workflow("CT-x")
        engine.update_status(running.id, "in_progress")

        assert metrics_service.get_production_stats()["average_cycle_time"] == 15.0

    def test_efficiency_rate(self, workflow):
        tasks = task_service.list_tasks(workflow.id)[:2]
        # estimated 1.0 + 1.0 against 1.5 + 2.5 actual
        for task, actual in zip(tasks, (1.5, 2.5)):
            task_service.update_task(task.id, {"status": "in_progress"})
            task_service.update_task(task.id, {"status": "completed", "actual_hours": actual})
        assert metrics_service.get_production_stats()["efficiency_rate"] == 50.0

    def test_open_issues_counted(self, workflow):
        a = issue_service.report_issue(workflow.id, "material", "high", "Plate short", reported_by="qc")
        issue_service.report_issue(workflow.id, "equipment", "low", "Saw blade dull", reported_by="qc")
        c = issue_service.report_issue(workflow.id, "quality", "medium", "Undercut", reported_by="qc")
        issue_service.transition_issue(a.id, "in_progress")
        issue_service.resolve_issue(c.id, "Reworked")
        assert metrics_service.get_production_stats()["issues_open"] == 2


class TestDailyMetrics:
    def test_today_rollup(self, workflow):
        today = datetime.now(timezone.utc).date()
        tasks = task_service.list_tasks(workflow.id)
        done, failed = tasks[0], tasks[1]
        task_service.update_task(done.id, {"status": "in_progress"})
        task_service.update_task(done.id, {"status": "completed", "actual_hours": 2.0})
        task_service.update_task(failed.id, {"status": "in_progress"})
        task_service.update_task(failed.id, {"status": "failed", "actual_hours": 0.5})
        issue_service.report_issue(workflow.id, "labor", "low", "Short-staffed", reported_by="lead")
        engine.update_status(workflow.id, "in_progress")
        engine.update_status(workflow.id, "completed")

        result = metrics_service.get_daily_metrics(days=7, today=today)
        assert len(result["days"]) == 7
        assert result["end"] == today.isoformat()
        assert result["start"] == (today - timedelta(days=6)).isoformat()

        row = result["days"][-1]
        assert row["date"] == today.isoformat()
        assert row["pieces_completed"] == 1
        assert row["man_hours"] == 2.0
        assert row["estimated_hours"] == 1.0
        assert row["efficiency_rate"] == 50.0
        assert row["rework_hours"] == 0.5
        assert row["issues_reported"] == 1

        assert result["days"][0]["efficiency_rate"] is None
        assert result["totals"] == {
            "pieces_completed": 1,
            "man_hours": 2.0,
            "rework_hours": 0.5,
            "issues_reported": 1,
        }

    @pytest.mark.parametrize("days", [0, 367])
    def test_window_bounds(self, stages, days):
        with pytest.raises(ValidationError):
            metrics_service.get_daily_metrics(days=days)
