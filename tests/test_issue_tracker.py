"""Production issue reporting, resolution and lifecycle."""

import pytest

from piecetrack.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from piecetrack.models.production import ISSUE_TRANSITIONS
from piecetrack.services import issue_service as svc
from piecetrack.services import workflow_engine as engine


def _report(workflow, **overrides):
    kwargs = dict(category="material", severity="high", description="Short 2 plates of 20mm",
                  reported_by="shop-lead")
    kwargs.update(overrides)
    return svc.report_issue(workflow.id, kwargs.pop("category"), kwargs.pop("severity"),
                            kwargs.pop("description"), **kwargs)


class TestReportIssue:
    def test_report_opens_issue(self, workflow):
        issue = _report(workflow, impact_hours="3.5", assigned_to="purchasing")
        assert issue.status == "open"
        assert issue.issue_type == "material"
        assert issue.impact_hours == 3.5
        assert issue.reported_at is not None
        assert issue.resolved_at is None

    def test_critical_issue_does_not_touch_workflow(self, workflow, stages):
        engine.transition_stage(workflow.id, stages[0].id, "alice")
        _report(workflow, severity="critical")
        wf = engine.get_workflow(workflow.id)
        assert wf.status == "in_progress"
        assert wf.to_dict()["open_issue_count"] == 1

    def test_validation_collects_fields(self, workflow):
        with pytest.raises(ValidationError) as exc:
            _report(workflow, category="aliens", severity="meh", description=" ", impact_hours=-2)
        assert set(exc.value.details) == {"issue_type", "severity", "description", "impact_hours"}

    def test_unknown_workflow(self, stages):
        with pytest.raises(NotFoundError):
            svc.report_issue(555, "material", "low", "x", reported_by="qc")


class TestResolveIssue:
    def test_resolve_stamps_resolution(self, workflow):
        issue = _report(workflow)
        issue = svc.resolve_issue(issue.id, "Plates delivered Tuesday")
        assert issue.status == "resolved"
        assert issue.resolution == "Plates delivered Tuesday"
        assert issue.resolved_at is not None

    def test_close_directly(self, workflow):
        issue = svc.resolve_issue(_report(workflow).id, "Duplicate report", status="closed")
        assert issue.status == "closed"
        assert issue.resolved_at is not None

    def test_resolution_required(self, workflow):
        with pytest.raises(ValidationError):
            svc.resolve_issue(_report(workflow).id, "  ")

    def test_bad_target_status(self, workflow):
        with pytest.raises(ValidationError):
            svc.resolve_issue(_report(workflow).id, "done", status="in_progress")

    def test_cannot_resolve_twice(self, workflow):
        issue = svc.resolve_issue(_report(workflow).id, "fixed")
        with pytest.raises(InvalidTransitionError):
            svc.resolve_issue(issue.id, "fixed again")


class TestIssueLifecycle:
    def test_reopen_clears_resolution(self, workflow):
        issue = svc.resolve_issue(_report(workflow).id, "fixed", status="closed")
        issue = svc.transition_issue(issue.id, "open")
        assert issue.status == "open"
        assert issue.resolution is None
        assert issue.resolved_at is None

    @pytest.mark.parametrize("start, target", [
        (s, t) for s, targets in ISSUE_TRANSITIONS.items() for t in targets
    ])
    def test_valid_edges(self, workflow, start, target):
        issue = _report(workflow)
        _force_status(issue, start)
        assert svc.transition_issue(issue.id, target).status == target

    @pytest.mark.parametrize("start, target", [
        ("in_progress", "open"),
        ("resolved", "in_progress"),
        ("closed", "resolved"),
        ("closed", "in_progress"),
    ])
    def test_invalid_edges(self, workflow, start, target):
        issue = _report(workflow)
        _force_status(issue, start)
        with pytest.raises(InvalidTransitionError):
            svc.transition_issue(issue.id, target)

    def test_unknown_status(self, workflow):
        with pytest.raises(ValidationError):
            svc.transition_issue(_report(workflow).id, "escalated")

    def test_assign(self, workflow):
        issue = svc.assign_issue(_report(workflow).id, "maintenance")
        assert issue.assigned_to == "maintenance"
        issue = svc.assign_issue(issue.id, "")
        assert issue.assigned_to is None

    def test_assign_closed_rejected(self, workflow):
        issue = svc.resolve_issue(_report(workflow).id, "n/a", status="closed")
        with pytest.raises(InvalidTransitionError):
            svc.assign_issue(issue.id, "someone")

    def test_list_most_severe_first(self, workflow):
        _report(workflow, severity="low", description="a")
        _report(workflow, severity="critical", description="b")
        _report(workflow, severity="medium", description="c")
        assert [i.severity for i in svc.list_issues(workflow.id)] == ["critical", "medium", "low"]
        assert len(svc.list_issues(workflow.id, status="closed")) == 0


def _force_status(issue, status):
    """Walk an issue from open to *status* along valid edges."""
    path = {
        "open": [],
        "in_progress": ["in_progress"],
        "resolved": ["resolved"],
        "closed": ["closed"],
    }[status]
    for step in path:
        svc.transition_issue(issue.id, step)
