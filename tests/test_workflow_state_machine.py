"""
Exhaustive state-machine transition tests for the production module.

Tests the three machines defined in ``piecetrack/models/production.py``
through the HTTP API:

    1. **ProductionWorkflow** (WORKFLOW_TRANSITIONS) -- 5 states, 7 valid edges
       - not_started -> in_progress | cancelled
       - in_progress -> on_hold | completed | cancelled
       - on_hold -> in_progress | cancelled
       - completed, cancelled -> (terminal)

    2. **ProductionTask** (TASK_TRANSITIONS) -- 5 states, 9 valid edges

    3. **ProductionIssue** (ISSUE_TRANSITIONS) -- 4 states, 7 valid edges

For each machine:
    - Every VALID transition returns HTTP 200 with the new status.
    - Every INVALID transition returns HTTP 409 and leaves the row unchanged.
"""

import pytest

from piecetrack.models import db
from piecetrack.models.production import (
    ISSUE_TRANSITIONS,
    TASK_TRANSITIONS,
    WORKFLOW_TRANSITIONS,
    ProductionIssue,
    ProductionTask,
    ProductionWorkflow,
)

BASE = "/api/v1/production"


# ═════════════════════════════════════════════════════════════════════════════
# ORM Helper Factories (DB-level, bypass the engine to set arbitrary states)
# ═════════════════════════════════════════════════════════════════════════════


def _workflow(status: str = "not_started") -> ProductionWorkflow:
    wf = ProductionWorkflow(piece_mark_id="SM-1", status=status, priority="normal",
                            progress_percentage=0)
    db.session.add(wf)
    db.session.commit()
    return wf


def _task(wf: ProductionWorkflow, stage_id: int, status: str = "pending") -> ProductionTask:
    task = ProductionTask(workflow_id=wf.id, stage_id=stage_id, task_name="Fit-up", status=status)
    db.session.add(task)
    db.session.commit()
    return task


def _issue(wf: ProductionWorkflow, status: str = "open") -> ProductionIssue:
    issue = ProductionIssue(workflow_id=wf.id, issue_type="quality", severity="medium",
                            description="Porosity in weld", reported_by="qc", status=status)
    db.session.add(issue)
    db.session.commit()
    return issue


# ═════════════════════════════════════════════════════════════════════════════
# Parametrize helpers -- generate (from_status, to_status) tuples
# ═════════════════════════════════════════════════════════════════════════════


def _valid_transitions(transitions: dict) -> list[tuple[str, str]]:
    """Return all (from, to) pairs that SHOULD succeed (200)."""
    return [(src, tgt) for src, targets in transitions.items() for tgt in targets]


def _invalid_transitions(transitions: dict) -> list[tuple[str, str]]:
    """Return all (from, to) pairs that SHOULD fail (409), self-moves included."""
    all_statuses = sorted(transitions)
    return [
        (src, tgt)
        for src, valid_targets in transitions.items()
        for tgt in all_statuses
        if tgt not in valid_targets
    ]


# ═════════════════════════════════════════════════════════════════════════════
# 1. ProductionWorkflow
# ═════════════════════════════════════════════════════════════════════════════


class TestWorkflowStateMachine:
    @pytest.mark.parametrize("src, tgt", _valid_transitions(WORKFLOW_TRANSITIONS))
    def test_valid(self, client, src, tgt):
        wf = _workflow(src)
        res = client.post(f"{BASE}/workflows/{wf.id}/status", json={"status": tgt})
        assert res.status_code == 200, res.get_json()
        body = res.get_json()
        assert body["status"] == tgt
        if tgt == "completed":
            assert body["progress_percentage"] == 100
            assert body["actual_end"] is not None
        if tgt == "cancelled":
            assert body["actual_end"] is not None
        if tgt == "in_progress":
            assert body["actual_start"] is not None

    @pytest.mark.parametrize("src, tgt", _invalid_transitions(WORKFLOW_TRANSITIONS))
    def test_invalid(self, client, src, tgt):
        wf = _workflow(src)
        res = client.post(f"{BASE}/workflows/{wf.id}/status", json={"status": tgt})
        assert res.status_code == 409
        assert db.session.get(ProductionWorkflow, wf.id).status == src

    def test_unknown_status_is_422(self, client):
        wf = _workflow()
        res = client.post(f"{BASE}/workflows/{wf.id}/status", json={"status": "shipped"})
        assert res.status_code == 422

    def test_missing_status_is_400(self, client):
        wf = _workflow()
        assert client.post(f"{BASE}/workflows/{wf.id}/status", json={}).status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# 2. ProductionTask
# ═════════════════════════════════════════════════════════════════════════════


class TestTaskStateMachine:
    @pytest.mark.parametrize("src, tgt", _valid_transitions(TASK_TRANSITIONS))
    def test_valid(self, client, stages, src, tgt):
        task = _task(_workflow(), stages[4].id, src)
        res = client.put(f"{BASE}/tasks/{task.id}", json={"status": tgt})
        assert res.status_code == 200, res.get_json()
        body = res.get_json()
        assert body["status"] == tgt
        if tgt in ("completed", "failed"):
            assert body["completed_at"] is not None
        if tgt == "in_progress":
            assert body["started_at"] is not None

    @pytest.mark.parametrize(
        "src, tgt",
        [(s, t) for s, t in _invalid_transitions(TASK_TRANSITIONS) if s != t],
    )
    def test_invalid(self, client, stages, src, tgt):
        task = _task(_workflow(), stages[4].id, src)
        res = client.put(f"{BASE}/tasks/{task.id}", json={"status": tgt})
        assert res.status_code == 409
        assert db.session.get(ProductionTask, task.id).status == src


# ═════════════════════════════════════════════════════════════════════════════
# 3. ProductionIssue
# ═════════════════════════════════════════════════════════════════════════════


class TestIssueStateMachine:
    @pytest.mark.parametrize("src, tgt", _valid_transitions(ISSUE_TRANSITIONS))
    def test_valid(self, client, src, tgt):
        issue = _issue(_workflow(), src)
        res = client.post(f"{BASE}/issues/{issue.id}/transition", json={"status": tgt})
        assert res.status_code == 200, res.get_json()
        body = res.get_json()
        assert body["status"] == tgt
        if tgt in ("resolved", "closed"):
            assert body["resolved_at"] is not None
        if tgt == "open":
            assert body["resolved_at"] is None

    @pytest.mark.parametrize("src, tgt", _invalid_transitions(ISSUE_TRANSITIONS))
    def test_invalid(self, client, src, tgt):
        issue = _issue(_workflow(), src)
        res = client.post(f"{BASE}/issues/{issue.id}/transition", json={"status": tgt})
        assert res.status_code == 409
        assert db.session.get(ProductionIssue, issue.id).status == src
