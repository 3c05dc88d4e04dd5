"""
Production progress & metrics — derived on read.

Nothing here is persisted: every figure is recomputed from workflows,
tasks and issues on each call, so dashboards can never drift from the
underlying records.

    progress_percentage(ordinal, total)    round-half-up(100 × ordinal / total), clamped 0..100
    workflow_progress(status, ordinal, total)
                                           applies completed → 100, not_started → 0
    get_production_stats(...)              status counts, completion rate, cycle time,
                                           efficiency, open issues
    get_daily_metrics(...)                 per-day rollup for the production dashboard
"""

import logging
import math
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import func, select

from piecetrack.core.exceptions import ValidationError
from piecetrack.models import db
from piecetrack.models.production import (
    OPEN_ISSUE_STATUSES,
    WORKFLOW_STATUSES,
    ProductionIssue,
    ProductionTask,
    ProductionWorkflow,
)

logger = logging.getLogger(__name__)


def _as_utc(dt: datetime) -> datetime:
    """Normalise a datetime to UTC-aware regardless of whether SQLite stored it naive."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ── Progress ─────────────────────────────────────────────────────────────────


def progress_percentage(ordinal: int, total: int) -> int:
    """Percentage of the catalog reached at 1-based stage *ordinal*.

    Rounds half up (12.5 → 13) and clamps to [0, 100].
    """
    if total <= 0:
        return 0
    raw = math.floor(100 * ordinal / total + 0.5)
    return max(0, min(100, raw))


def workflow_progress(status: str, ordinal: int, total: int) -> int:
    """Progress for a workflow, honouring the status overrides."""
    if status == "completed":
        return 100
    if status == "not_started":
        return 0
    return progress_percentage(ordinal, total)


# ── Workflow set resolution ──────────────────────────────────────────────────


def _select_workflows(project_id: int | None = None, workflow_ids=None):
    stmt = select(ProductionWorkflow)
    if project_id is not None:
        stmt = stmt.where(ProductionWorkflow.project_id == project_id)
    if workflow_ids is not None:
        stmt = stmt.where(ProductionWorkflow.id.in_(list(workflow_ids)))
    return stmt


# ── Production stats ─────────────────────────────────────────────────────────


def get_production_stats(project_id: int | None = None, workflow_ids=None) -> dict:
    """
    Aggregate dashboard stats over a set of workflows.

    The set is every workflow, narrowed by *project_id* and/or an explicit
    list of *workflow_ids*.
    """
    workflows = list(db.session.execute(_select_workflows(project_id, workflow_ids)).scalars())
    ids = [w.id for w in workflows]
    total = len(workflows)

    by_status = {s: 0 for s in sorted(WORKFLOW_STATUSES)}
    for w in workflows:
        by_status[w.status] = by_status.get(w.status, 0) + 1

    completion_rate = round(by_status["completed"] / total * 100, 1) if total else 0.0

    # Cycle time: completed workflows with both timestamps only
    cycle_hours = [
        (_as_utc(w.actual_end) - _as_utc(w.actual_start)).total_seconds() / 3600
        for w in workflows
        if w.status == "completed" and w.actual_start and w.actual_end
    ]
    average_cycle_time = round(sum(cycle_hours) / len(cycle_hours), 2) if cycle_hours else 0.0

    efficiency_rate = 0.0
    issues_open = 0
    if ids:
        est, act = db.session.execute(
            select(
                func.coalesce(func.sum(ProductionTask.estimated_hours), 0.0),
                func.coalesce(func.sum(ProductionTask.actual_hours), 0.0),
            ).where(
                ProductionTask.workflow_id.in_(ids),
                ProductionTask.status == "completed",
                ProductionTask.actual_hours > 0,
            )
        ).one()
        if act:
            efficiency_rate = round(float(est) / float(act) * 100, 1)

        issues_open = db.session.execute(
            select(func.count(ProductionIssue.id)).where(
                ProductionIssue.workflow_id.in_(ids),
                ProductionIssue.status.in_(OPEN_ISSUE_STATUSES),
            )
        ).scalar() or 0

    return {
        "total_pieces": total,
        "not_started": by_status["not_started"],
        "in_progress": by_status["in_progress"],
        "on_hold": by_status["on_hold"],
        "completed": by_status["completed"],
        "cancelled": by_status["cancelled"],
        "completion_rate": completion_rate,
        "average_cycle_time": average_cycle_time,
        "efficiency_rate": efficiency_rate,
        "issues_open": issues_open,
    }


# ── Daily rollup ─────────────────────────────────────────────────────────────


def get_daily_metrics(
    project_id: int | None = None,
    workflow_ids=None,
    days: int = 30,
    *,
    today: date | None = None,
) -> dict:
    """
    Per-day production rollup for the last *days* days (today included).

    For each day:
        pieces_completed  workflows completed that day
        man_hours         actual hours of tasks completed that day
        estimated_hours   estimated hours of the same tasks
        efficiency_rate   estimated / actual × 100 (None when no hours booked)
        rework_hours      actual hours booked on tasks that failed that day
        issues_reported   issues raised that day
    """
    if days < 1 or days > 366:
        raise ValidationError("days must be between 1 and 366", details={"days": days})

    end = today or datetime.now(timezone.utc).date()
    start = end - timedelta(days=days - 1)
    window_start = datetime.combine(start, datetime.min.time(), tzinfo=timezone.utc)

    workflows = list(db.session.execute(_select_workflows(project_id, workflow_ids)).scalars())
    ids = [w.id for w in workflows]

    buckets = {}
    for offset in range(days):
        d = start + timedelta(days=offset)
        buckets[d] = {
            "date": d.isoformat(),
            "pieces_completed": 0,
            "man_hours": 0.0,
            "estimated_hours": 0.0,
            "efficiency_rate": None,
            "rework_hours": 0.0,
            "issues_reported": 0,
        }

    def _bucket(dt):
        if dt is None:
            return None
        return buckets.get(_as_utc(dt).date())

    for w in workflows:
        b = _bucket(w.actual_end) if w.status == "completed" else None
        if b is not None:
            b["pieces_completed"] += 1

    if ids:
        tasks = db.session.execute(
            select(ProductionTask).where(
                ProductionTask.workflow_id.in_(ids),
                ProductionTask.status.in_(("completed", "failed")),
                ProductionTask.completed_at >= window_start,
            )
        ).scalars()
        for t in tasks:
            b = _bucket(t.completed_at)
            if b is None:
                continue
            if t.status == "completed":
                b["man_hours"] += t.actual_hours or 0.0
                b["estimated_hours"] += t.estimated_hours or 0.0
            else:
                b["rework_hours"] += t.actual_hours or 0.0

        issues = db.session.execute(
            select(ProductionIssue).where(
                ProductionIssue.workflow_id.in_(ids),
                ProductionIssue.reported_at >= window_start,
            )
        ).scalars()
        for i in issues:
            b = _bucket(i.reported_at)
            if b is not None:
                b["issues_reported"] += 1

    rows = []
    for d in sorted(buckets):
        b = buckets[d]
        if b["man_hours"] > 0:
            b["efficiency_rate"] = round(b["estimated_hours"] / b["man_hours"] * 100, 1)
        b["man_hours"] = round(b["man_hours"], 2)
        b["estimated_hours"] = round(b["estimated_hours"], 2)
        b["rework_hours"] = round(b["rework_hours"], 2)
        rows.append(b)

    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "days": rows,
        "totals": {
            "pieces_completed": sum(r["pieces_completed"] for r in rows),
            "man_hours": round(sum(r["man_hours"] for r in rows), 2),
            "rework_hours": round(sum(r["rework_hours"] for r in rows), 2),
            "issues_reported": sum(r["issues_reported"] for r in rows),
        },
    }
