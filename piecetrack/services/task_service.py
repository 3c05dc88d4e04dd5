"""
Production Tasks — template seeding and task lifecycle.

Seeding is idempotent per (workflow, stage): a template task that already
exists for the pair is skipped, so re-running the seeder never duplicates
a checklist. Estimated hours come from the template entry, falling back
to ``TASK_DEFAULT_ESTIMATED_HOURS``; the whole template map can be
replaced through the ``TASK_TEMPLATES`` config key.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select

from piecetrack.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from piecetrack.models import db
from piecetrack.models.production import (
    DEFAULT_TASK_TEMPLATES,
    TASK_STATUSES,
    ProductionStage,
    ProductionTask,
    ProductionWorkflow,
    validate_task_transition,
)
from piecetrack.services import events, stage_catalog

logger = logging.getLogger(__name__)

# Ordered: the first keyword found in the lower-cased task name wins.
_TASK_TYPE_KEYWORDS = (
    ("weld", "welding"),
    ("cut", "cutting"),
    ("drill", "drilling"),
    ("paint", "painting"),
    ("coat", "painting"),
    ("inspect", "inspection"),
    ("assemb", "assembly"),
    ("ship", "shipping"),
)


def task_type_for(task_name: str) -> str:
    """Classify a task by keywords in its name; defaults to ``fabrication``."""
    lowered = task_name.lower()
    for keyword, task_type in _TASK_TYPE_KEYWORDS:
        if keyword in lowered:
            return task_type
    return "fabrication"


def _templates() -> dict:
    return current_app.config.get("TASK_TEMPLATES") or DEFAULT_TASK_TEMPLATES


def _template_entries(entries) -> list[dict]:
    """Accept either ``["name", ...]`` or ``[{"name": ..., "estimated_hours": ...}]``."""
    default_hours = current_app.config.get("TASK_DEFAULT_ESTIMATED_HOURS", 1.0)
    normalised = []
    for entry in entries:
        if isinstance(entry, str):
            entry = {"name": entry}
        hours = entry.get("estimated_hours")
        normalised.append({
            "name": entry["name"],
            "task_type": entry.get("task_type") or task_type_for(entry["name"]),
            "estimated_hours": float(hours) if hours is not None else default_hours,
        })
    return normalised


# ── Seeding ──────────────────────────────────────────────────────────────────


def seed_tasks(
    workflow: ProductionWorkflow,
    stage: ProductionStage | None = None,
    templates: dict | None = None,
) -> list[ProductionTask]:
    """
    Create the template checklist for *workflow*.

    Args:
        workflow: The workflow to seed.
        stage: Restrict seeding to this stage; all template stages otherwise.
        templates: Stage name → entries override; config/defaults otherwise.

    Returns:
        Newly created tasks (empty when everything already existed).
        Only flushes — the caller owns the commit.
    """
    templates = templates if templates is not None else _templates()
    stages = [stage] if stage is not None else stage_catalog.list_stages()

    created = []
    for st in stages:
        entries = templates.get(st.name)
        if not entries:
            continue
        existing = set(db.session.execute(
            select(ProductionTask.task_name).where(
                ProductionTask.workflow_id == workflow.id,
                ProductionTask.stage_id == st.id,
            )
        ).scalars())
        for entry in _template_entries(entries):
            if entry["name"] in existing:
                continue
            created.append(ProductionTask(
                workflow_id=workflow.id,
                stage_id=st.id,
                task_name=entry["name"],
                task_type=entry["task_type"],
                status="pending",
                estimated_hours=entry["estimated_hours"],
            ))
            existing.add(entry["name"])

    db.session.add_all(created)
    db.session.flush()
    if created:
        logger.info("Seeded %d tasks workflow_id=%s", len(created), workflow.id,
                    extra={"workflow_id": workflow.id})
    return created


def seed_workflow_tasks(workflow_id: int, stage_id: int | None = None) -> list[ProductionTask]:
    """Public entry point: seed (or top up) a workflow's checklist and commit."""
    workflow = db.session.get(ProductionWorkflow, workflow_id)
    if not workflow:
        raise NotFoundError(resource="ProductionWorkflow", resource_id=workflow_id)
    stage = stage_catalog.get_stage(stage_id) if stage_id is not None else None
    created = seed_tasks(workflow, stage)
    db.session.commit()
    return created


# ── Queries ──────────────────────────────────────────────────────────────────


def get_task(task_id: int) -> ProductionTask:
    task = db.session.get(ProductionTask, task_id)
    if not task:
        raise NotFoundError(resource="ProductionTask", resource_id=task_id)
    return task


def list_tasks(workflow_id: int, stage_id: int | None = None, status: str | None = None) -> list[ProductionTask]:
    """Tasks of a workflow ordered by catalog position, then creation."""
    if not db.session.get(ProductionWorkflow, workflow_id):
        raise NotFoundError(resource="ProductionWorkflow", resource_id=workflow_id)
    stmt = (
        select(ProductionTask)
        .join(ProductionStage, ProductionTask.stage_id == ProductionStage.id)
        .where(ProductionTask.workflow_id == workflow_id)
        .order_by(ProductionStage.stage_order, ProductionTask.id)
    )
    if stage_id is not None:
        stmt = stmt.where(ProductionTask.stage_id == stage_id)
    if status:
        stmt = stmt.where(ProductionTask.status == status)
    return list(db.session.execute(stmt).scalars())


# ── Lifecycle ────────────────────────────────────────────────────────────────


def _hours(field: str, value) -> float | None:
    if value is None or value == "":
        return None
    try:
        hours = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: value})
    if hours < 0:
        raise ValidationError(f"{field} cannot be negative", details={field: value})
    return hours


def update_task(task_id: int, data: dict, *, actor: str = "system") -> ProductionTask:
    """
    Update a task's status and working fields.

    Status moves follow TASK_TRANSITIONS; ``in_progress`` stamps
    ``started_at`` once, ``completed``/``failed`` stamp ``completed_at``.
    Editable fields: assigned_to, actual_hours, estimated_hours, notes.
    A status change publishes ``TaskStatusChanged`` after the commit.
    """
    task = get_task(task_id)
    now = datetime.now(timezone.utc)
    old = task.status

    new_status = data.get("status")
    if new_status is not None and new_status != task.status:
        if new_status not in TASK_STATUSES:
            raise ValidationError(f"Unknown task status '{new_status}'",
                                  details={"status": sorted(TASK_STATUSES)})
        if not validate_task_transition(task.status, new_status):
            raise InvalidTransitionError("ProductionTask", task.id, task.status, new_status)
        task.status = new_status
        if new_status == "in_progress" and not task.started_at:
            task.started_at = now
        if new_status in ("completed", "failed"):
            task.completed_at = now
        if old == "completed" and new_status == "in_progress":
            task.completed_at = None
        logger.info("Task %s transitioned %s → %s", task.id, old, new_status,
                    extra={"workflow_id": task.workflow_id})

    for f in ("actual_hours", "estimated_hours"):
        if f in data:
            setattr(task, f, _hours(f, data[f]))
    for f in ("assigned_to", "notes"):
        if f in data:
            setattr(task, f, data[f])

    db.session.commit()

    if task.status != old:
        events.publish(events.TaskStatusChanged(
            workflow_id=task.workflow_id,
            task_id=task.id,
            stage_id=task.stage_id,
            from_status=old,
            to_status=task.status,
            actor=actor,
            project_id=task.workflow.project_id,
            timestamp=now,
        ))
    return task
