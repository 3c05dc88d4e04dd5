"""
Production Workflow Engine — piece mark lifecycle.

Business logic for:
    - Workflow creation:   one active workflow per piece mark, tasks seeded on create
    - Stage transitions:   validated moves through the stage catalog, appended to
                           the transition log, progress recomputed from stage ordinal
    - Status lifecycle:    not_started → in_progress ⇄ on_hold → completed | cancelled
    - Timeline view:       per-stage completed / current / upcoming breakdown

Concurrency:
    ProductionWorkflow.version is the mapper's ``version_id_col``. The UPDATE
    emitted on commit carries ``WHERE version = <read version>``; a writer that
    lost the race gets StaleDataError, which is rolled back and surfaced as
    ConcurrencyConflictError. The transition row and the workflow update are
    flushed in the same transaction, so a lost race leaves no orphaned
    transition behind.

Every mutating function commits exactly once and publishes its domain event
only after the commit succeeded.
"""

import logging
from datetime import date, datetime, timezone

from sqlalchemy import case, select
from sqlalchemy.orm.exc import StaleDataError

from piecetrack.core.exceptions import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from piecetrack.models import db
from piecetrack.models.production import (
    PRIORITIES,
    TERMINAL_WORKFLOW_STATUSES,
    WORKFLOW_STATUSES,
    ProductionWorkflow,
    StageTransition,
    validate_workflow_transition,
)
from piecetrack.services import events, stage_catalog
from piecetrack.services.metrics_service import workflow_progress
from piecetrack.services.task_service import seed_tasks
from piecetrack.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

_PRIORITY_RANK = case(
    {p: rank for rank, p in enumerate(reversed(PRIORITIES))},
    value=ProductionWorkflow.priority,
    else_=len(PRIORITIES),
)


def _as_utc(dt: datetime) -> datetime:
    """Normalise a datetime to UTC-aware regardless of whether SQLite stored it naive."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _log_extra(workflow: ProductionWorkflow, event_type: str, actor: str | None = None) -> dict:
    return {"workflow_id": workflow.id, "event_type": event_type, "actor": actor}


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_workflow(workflow_id: int) -> ProductionWorkflow:
    workflow = db.session.get(ProductionWorkflow, workflow_id)
    if not workflow:
        raise NotFoundError(resource="ProductionWorkflow", resource_id=workflow_id)
    return workflow


def list_workflows(
    project_id: int | None = None,
    status: str | None = None,
    piece_mark_id: str | None = None,
) -> list[ProductionWorkflow]:
    """Workflows ordered by priority (urgent first), then creation."""
    stmt = select(ProductionWorkflow)
    if project_id is not None:
        stmt = stmt.where(ProductionWorkflow.project_id == project_id)
    if status:
        stmt = stmt.where(ProductionWorkflow.status == status)
    if piece_mark_id:
        stmt = stmt.where(ProductionWorkflow.piece_mark_id == piece_mark_id)
    stmt = stmt.order_by(_PRIORITY_RANK, ProductionWorkflow.created_at, ProductionWorkflow.id)
    return list(db.session.execute(stmt).scalars())


def get_active_workflow(piece_mark_id: str) -> ProductionWorkflow | None:
    """Return the non-terminal workflow for a piece mark, if any."""
    return db.session.execute(
        select(ProductionWorkflow).where(
            ProductionWorkflow.piece_mark_id == piece_mark_id,
            ProductionWorkflow.status.not_in(TERMINAL_WORKFLOW_STATUSES),
        )
    ).scalars().first()


def list_transitions(workflow_id: int) -> list[StageTransition]:
    """Transition log of a workflow, newest first."""
    get_workflow(workflow_id)
    return list(db.session.execute(
        select(StageTransition)
        .where(StageTransition.workflow_id == workflow_id)
        .order_by(StageTransition.transition_date.desc(), StageTransition.id.desc())
    ).scalars())


def _last_transition(workflow_id: int) -> StageTransition | None:
    return db.session.execute(
        select(StageTransition)
        .where(StageTransition.workflow_id == workflow_id)
        .order_by(StageTransition.transition_date.desc(), StageTransition.id.desc())
        .limit(1)
    ).scalar_one_or_none()


# ── Helpers ──────────────────────────────────────────────────────────────────


def _check_version(workflow: ProductionWorkflow, expected_version: int | None) -> None:
    if expected_version is not None and workflow.version != expected_version:
        raise ConcurrencyConflictError(
            "ProductionWorkflow", workflow.id,
            expected_version=expected_version, actual_version=workflow.version,
        )


def _commit_or_conflict(workflow_id: int, expected_version: int | None) -> None:
    """Commit the pending workflow change, translating a lost version race."""
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning("Version conflict on workflow_id=%s", workflow_id,
                       extra={"workflow_id": workflow_id, "event_type": "version_conflict"})
        raise ConcurrencyConflictError(
            "ProductionWorkflow", workflow_id, expected_version=expected_version,
        )


def _validate_priority(priority: str) -> None:
    if priority not in PRIORITIES:
        raise ValidationError(
            f"Unknown priority '{priority}'",
            details={"priority": f"must be one of {', '.join(PRIORITIES)}"},
        )


def _coerce_project_id(value) -> int | None:
    """Integer project reference; numeric strings are accepted."""
    if value is None or value == "":
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValidationError("project_id must be an integer", details={"project_id": value})


def _clean_assignee(value) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("assigned_to must be a string", details={"assigned_to": value})
    return value.strip() or None


def _parse_schedule(field: str, value) -> date | None:
    try:
        return parse_date_input(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} is not a valid date", details={field: value})


# ── Creation ─────────────────────────────────────────────────────────────────


def create_workflow(
    piece_mark_id: str,
    priority: str = "normal",
    scheduled_start=None,
    scheduled_end=None,
    *,
    project_id: int | None = None,
    assigned_to: str | None = None,
    actor: str = "system",
) -> ProductionWorkflow:
    """
    Start tracking a piece mark through production.

    The workflow starts ``not_started`` with no current stage and 0%
    progress; the template checklist is seeded in the same transaction.

    Raises:
        ValidationError: blank piece mark, bad priority/dates, or the piece
            mark already has an active (non-terminal) workflow.
    """
    piece_mark_id = str(piece_mark_id or "").strip()
    if not piece_mark_id:
        raise ValidationError("piece_mark_id is required", details={"piece_mark_id": "required"})
    _validate_priority(priority)
    project_id = _coerce_project_id(project_id)
    assigned_to = _clean_assignee(assigned_to)
    start = _parse_schedule("scheduled_start", scheduled_start)
    end = _parse_schedule("scheduled_end", scheduled_end)
    if start and end and end < start:
        raise ValidationError(
            "scheduled_end must not be before scheduled_start",
            details={"scheduled_start": start.isoformat(), "scheduled_end": end.isoformat()},
        )

    active = get_active_workflow(piece_mark_id)
    if active:
        raise ValidationError(
            f"Piece mark {piece_mark_id} already has an active workflow",
            details={"piece_mark_id": piece_mark_id, "workflow_id": active.id},
        )

    workflow = ProductionWorkflow(
        piece_mark_id=piece_mark_id,
        project_id=project_id,
        status="not_started",
        priority=priority,
        scheduled_start=start,
        scheduled_end=end,
        progress_percentage=0,
        assigned_to=assigned_to,
    )
    db.session.add(workflow)
    db.session.flush()
    seed_tasks(workflow)
    db.session.commit()

    logger.info("Workflow created id=%s piece_mark=%s", workflow.id, piece_mark_id,
                extra=_log_extra(workflow, "workflow_created", actor))
    events.publish(events.WorkflowCreated(
        workflow_id=workflow.id,
        piece_mark_id=piece_mark_id,
        project_id=project_id,
        actor=actor,
    ))
    return workflow


# ── Stage transitions ────────────────────────────────────────────────────────


def transition_stage(
    workflow_id: int,
    to_stage_id: int,
    actor: str,
    note: str | None = None,
    *,
    expected_version: int | None = None,
) -> ProductionWorkflow:
    """
    Move a workflow to another catalog stage.

    This is the only way to change ``current_stage_id``; every move is
    appended to the transition log with the hours spent since the
    previous move (or since the workflow was created).

    Args:
        workflow_id: Workflow to move.
        to_stage_id: Target stage; must be an active catalog stage and
            differ from the current one.
        actor: Authenticated actor id, trusted verbatim.
        note: Free-text note stored on the transition.
        expected_version: Optimistic-lock version the caller last read.

    Raises:
        NotFoundError, InvalidTransitionError, ValidationError,
        ConcurrencyConflictError
    """
    workflow = get_workflow(workflow_id)
    if workflow.is_terminal:
        raise InvalidTransitionError(
            "ProductionWorkflow", workflow.id, workflow.status, "stage transition",
            reason="workflow is closed",
        )
    _check_version(workflow, expected_version)
    if not actor:
        raise ValidationError("actor is required", details={"actor": "required"})

    stages = stage_catalog.list_stages()
    to_stage = next((s for s in stages if s.id == to_stage_id), None)
    if to_stage is None:
        raise ValidationError(
            f"Stage {to_stage_id} is not an active catalog stage",
            details={"to_stage_id": to_stage_id},
        )
    if workflow.current_stage_id == to_stage.id:
        raise ValidationError(
            f"Workflow {workflow.id} is already at stage '{to_stage.name}'",
            details={"to_stage_id": to_stage_id},
        )

    now = datetime.now(timezone.utc)
    last = _last_transition(workflow.id)
    since = last.transition_date if last else workflow.created_at
    duration_hours = None
    if since is not None:
        duration_hours = round((now - _as_utc(since)).total_seconds() / 3600, 1)

    from_stage_id = workflow.current_stage_id
    old_status = workflow.status

    db.session.add(StageTransition(
        workflow_id=workflow.id,
        from_stage_id=from_stage_id,
        to_stage_id=to_stage.id,
        transitioned_by=actor,
        transition_date=now,
        notes=note,
        duration_hours=duration_hours,
    ))

    workflow.current_stage_id = to_stage.id
    if workflow.status == "not_started":
        workflow.status = "in_progress"
        if not workflow.actual_start:
            workflow.actual_start = now
    ordinal = stage_catalog.stage_ordinal(to_stage, stages)
    workflow.progress_percentage = workflow_progress(workflow.status, ordinal, len(stages))

    _commit_or_conflict(workflow.id, expected_version)

    logger.info(
        "Workflow %s stage %s → %s by %s (progress=%s%%)",
        workflow.id, from_stage_id, to_stage.id, actor, workflow.progress_percentage,
        extra=_log_extra(workflow, "stage_transitioned", actor),
    )
    events.publish(events.StageTransitioned(
        workflow_id=workflow.id,
        from_stage_id=from_stage_id,
        to_stage_id=to_stage.id,
        actor=actor,
        project_id=workflow.project_id,
        timestamp=now,
    ))
    if old_status != workflow.status:
        events.publish(events.StatusChanged(
            workflow_id=workflow.id,
            from_status=old_status,
            to_status=workflow.status,
            actor=actor,
            project_id=workflow.project_id,
            timestamp=now,
        ))
    return workflow


# ── Status lifecycle ─────────────────────────────────────────────────────────


def update_status(
    workflow_id: int,
    status: str,
    *,
    actor: str = "system",
    expected_version: int | None = None,
) -> ProductionWorkflow:
    """
    Move a workflow along the status state machine.

    Side effects:
        in_progress  stamps actual_start if unset
        completed    forces progress to 100 and stamps actual_end
        cancelled    stamps actual_end, progress untouched

    Raises:
        ValidationError: unknown status value.
        InvalidTransitionError: workflow already terminal, or the edge is
            not part of the state machine.
        ConcurrencyConflictError: stale ``expected_version`` or lost race.
    """
    if status not in WORKFLOW_STATUSES:
        raise ValidationError(
            f"Unknown workflow status '{status}'",
            details={"status": sorted(WORKFLOW_STATUSES)},
        )
    workflow = get_workflow(workflow_id)
    old = workflow.status
    if workflow.is_terminal:
        raise InvalidTransitionError("ProductionWorkflow", workflow.id, old, status,
                                     reason="workflow is closed")
    _check_version(workflow, expected_version)
    if not validate_workflow_transition(old, status):
        raise InvalidTransitionError("ProductionWorkflow", workflow.id, old, status)

    now = datetime.now(timezone.utc)
    workflow.status = status
    if status == "in_progress" and not workflow.actual_start:
        workflow.actual_start = now
    if status == "completed":
        workflow.progress_percentage = 100
        workflow.actual_end = now
    elif status == "cancelled":
        workflow.actual_end = now

    _commit_or_conflict(workflow.id, expected_version)

    logger.info("Workflow %s status %s → %s by %s", workflow.id, old, status, actor,
                extra=_log_extra(workflow, "status_changed", actor))
    events.publish(events.StatusChanged(
        workflow_id=workflow.id,
        from_status=old,
        to_status=status,
        actor=actor,
        project_id=workflow.project_id,
        timestamp=now,
    ))
    return workflow


# ── Plain field edits ────────────────────────────────────────────────────────

_EDITABLE_FIELDS = ("priority", "scheduled_start", "scheduled_end", "assigned_to", "project_id")


def update_workflow(
    workflow_id: int,
    data: dict,
    *,
    expected_version: int | None = None,
) -> ProductionWorkflow:
    """Edit scheduling fields. Stage, status and progress are not editable here."""
    workflow = get_workflow(workflow_id)
    _check_version(workflow, expected_version)

    blocked = sorted({"current_stage_id", "status", "progress_percentage", "version"} & set(data))
    if blocked:
        raise ValidationError(
            "Use the transition/status endpoints to change stage or status",
            details={"fields": blocked},
        )

    if "priority" in data:
        _validate_priority(data["priority"])
    start = (_parse_schedule("scheduled_start", data["scheduled_start"])
             if "scheduled_start" in data else workflow.scheduled_start)
    end = (_parse_schedule("scheduled_end", data["scheduled_end"])
           if "scheduled_end" in data else workflow.scheduled_end)
    if start and end and end < start:
        raise ValidationError(
            "scheduled_end must not be before scheduled_start",
            details={"scheduled_start": start.isoformat(), "scheduled_end": end.isoformat()},
        )

    project_id = _coerce_project_id(data["project_id"]) if "project_id" in data else None
    assigned_to = _clean_assignee(data["assigned_to"]) if "assigned_to" in data else None

    for f in _EDITABLE_FIELDS:
        if f not in data:
            continue
        if f == "scheduled_start":
            workflow.scheduled_start = start
        elif f == "scheduled_end":
            workflow.scheduled_end = end
        elif f == "project_id":
            workflow.project_id = project_id
        elif f == "assigned_to":
            workflow.assigned_to = assigned_to
        else:
            setattr(workflow, f, data[f])

    _commit_or_conflict(workflow.id, expected_version)
    logger.info("Workflow updated id=%s", workflow.id)
    return workflow


# ── Timeline ─────────────────────────────────────────────────────────────────


def get_workflow_timeline(workflow_id: int) -> dict:
    """
    Per-stage view of a workflow's journey.

    Each catalog stage is ``completed`` (ordered before the current stage),
    ``current`` or ``upcoming``. Entry/exit timestamps and hours come from
    the transition log; a completed workflow has every stage completed.
    """
    workflow = get_workflow(workflow_id)
    stages = stage_catalog.list_stages()
    transitions = list(db.session.execute(
        select(StageTransition)
        .where(StageTransition.workflow_id == workflow.id)
        .order_by(StageTransition.transition_date, StageTransition.id)
    ).scalars())

    entered = {}
    exited = {}
    for t in transitions:
        entered[t.to_stage_id] = t.transition_date
        if t.from_stage_id is not None:
            exited[t.from_stage_id] = t.transition_date

    current_ordinal = 0
    if workflow.current_stage is not None:
        current_ordinal = stage_catalog.stage_ordinal(workflow.current_stage, stages)

    rows = []
    for ordinal, stage in enumerate(stages, start=1):
        if workflow.status == "completed" or ordinal < current_ordinal:
            state = "completed"
        elif ordinal == current_ordinal:
            state = "current"
        else:
            state = "upcoming"
        started = entered.get(stage.id)
        finished = exited.get(stage.id)
        if state == "current":
            finished = None
        elif state == "completed" and finished is None and stage.id == workflow.current_stage_id:
            finished = workflow.actual_end
        duration = None
        if started and finished:
            duration = round((_as_utc(finished) - _as_utc(started)).total_seconds() / 3600, 1)
        rows.append({
            "stage_id": stage.id,
            "stage_name": stage.name,
            "stage_order": stage.stage_order,
            "department": stage.department,
            "status": state,
            "started_at": started.isoformat() if started else None,
            "completed_at": finished.isoformat() if finished else None,
            "duration_hours": duration,
        })

    return {
        "workflow_id": workflow.id,
        "piece_mark_id": workflow.piece_mark_id,
        "status": workflow.status,
        "progress": workflow.progress_percentage,
        "stages": rows,
    }
