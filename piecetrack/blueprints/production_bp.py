"""
Production Blueprint — piece mark workflows, tasks, issues and metrics.

Endpoints:
  Stages:     GET  /production/stages, GET /production/stages/<id>
  Workflows:  GET/POST /production/workflows, GET/PUT /production/workflows/<id>
              POST /production/workflows/<id>/transition
              POST /production/workflows/<id>/status
              GET  /production/workflows/<id>/transitions
              GET  /production/workflows/<id>/timeline
  Tasks:      GET  /production/workflows/<id>/tasks
              POST /production/workflows/<id>/tasks/seed
              GET/PUT /production/tasks/<id>
  Issues:     GET/POST /production/workflows/<id>/issues
              GET  /production/issues/<id>
              POST /production/issues/<id>/resolve
              POST /production/issues/<id>/transition
              POST /production/issues/<id>/assign
  Metrics:    GET  /production/stats, GET /production/metrics/daily

Actor identity is taken verbatim from the ``X-Actor-Id`` header, falling
back to an ``actor`` field in the JSON body. Optimistic-lock versions are
read from ``If-Match`` or a ``version`` body field.
"""

import logging

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

from piecetrack.blueprints import paginate_list
from piecetrack.core.exceptions import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from piecetrack.services import issue_service, metrics_service, stage_catalog, task_service
from piecetrack.services import workflow_engine as engine
from piecetrack.utils.errors import E, api_error
from piecetrack.utils.helpers import parse_date_input, parse_int_arg

logger = logging.getLogger(__name__)

production_bp = Blueprint("production", __name__, url_prefix="/api/v1/production")


# ── Error handlers ───────────────────────────────────────────────────────────


@production_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@production_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@production_bp.errorhandler(InvalidTransitionError)
def _handle_invalid_transition(error: InvalidTransitionError):
    return api_error(E.CONFLICT_STATE, str(error), details={
        "current_status": error.current_status,
        "requested": error.requested,
    })


@production_bp.errorhandler(ConcurrencyConflictError)
def _handle_conflict(error: ConcurrencyConflictError):
    details = {}
    if error.expected_version is not None:
        details["expected_version"] = error.expected_version
    if error.actual_version is not None:
        details["actual_version"] = error.actual_version
    return api_error(E.CONFLICT_VERSION, str(error), details=details)


@production_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in production_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── Request helpers ──────────────────────────────────────────────────────────


def _json() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _actor(data: dict) -> str | None:
    return request.headers.get("X-Actor-Id") or data.get("actor") or None


def _expected_version(data: dict):
    """Return (version, error_response)."""
    raw = request.headers.get("If-Match")
    if raw is not None:
        raw = raw.strip().strip('"')
    else:
        raw = data.get("version")
    if raw is None or raw == "" or raw == "*":
        return None, None
    try:
        return int(raw), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_FORMAT, "version must be an integer",
                               details={"version": raw})


def _int_arg(name: str):
    """Return (value, error_response) for an optional integer query arg."""
    try:
        return parse_int_arg(request.args.get(name)), None
    except ValueError:
        return None, api_error(E.VALIDATION_FORMAT, f"{name} must be an integer")


def _workflow_ids_arg():
    raw = request.args.get("workflow_ids")
    if not raw:
        return None, None
    try:
        return [int(x) for x in raw.split(",") if x.strip()], None
    except ValueError:
        return None, api_error(E.VALIDATION_FORMAT, "workflow_ids must be comma-separated integers")


# ═════════════════════════════════════════════════════════════════════════════
# Stage catalog
# ═════════════════════════════════════════════════════════════════════════════


@production_bp.route("/stages", methods=["GET"])
def list_stages():
    include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
    stages = stage_catalog.list_stages(include_inactive=include_inactive)
    return jsonify([s.to_dict() for s in stages]), 200


@production_bp.route("/stages/<int:stage_id>", methods=["GET"])
def get_stage(stage_id):
    return jsonify(stage_catalog.get_stage(stage_id).to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════════
# Workflows
# ═════════════════════════════════════════════════════════════════════════════


@production_bp.route("/workflows", methods=["GET"])
def list_workflows():
    project_id, err = _int_arg("project_id")
    if err:
        return err
    workflows = engine.list_workflows(
        project_id=project_id,
        status=request.args.get("status"),
        piece_mark_id=request.args.get("piece_mark_id"),
    )
    items, total = paginate_list(workflows)
    return jsonify({"items": [w.to_dict() for w in items], "total": total}), 200


@production_bp.route("/workflows", methods=["POST"])
def create_workflow():
    data = _json()
    piece_mark_id = str(data.get("piece_mark_id") or "").strip()
    if not piece_mark_id:
        return api_error(E.VALIDATION_REQUIRED, "piece_mark_id is required")

    workflow = engine.create_workflow(
        piece_mark_id,
        priority=data.get("priority") or "normal",
        scheduled_start=data.get("scheduled_start"),
        scheduled_end=data.get("scheduled_end"),
        project_id=data.get("project_id"),
        assigned_to=data.get("assigned_to"),
        actor=_actor(data) or "system",
    )
    return jsonify(workflow.to_dict()), 201


@production_bp.route("/workflows/<int:workflow_id>", methods=["GET"])
def get_workflow(workflow_id):
    include_children = request.args.get("include") == "children"
    workflow = engine.get_workflow(workflow_id)
    return jsonify(workflow.to_dict(include_children=include_children)), 200


@production_bp.route("/workflows/<int:workflow_id>", methods=["PUT"])
def update_workflow(workflow_id):
    data = _json()
    expected_version, err = _expected_version(data)
    if err:
        return err
    fields = {k: v for k, v in data.items() if k not in ("actor", "version")}
    workflow = engine.update_workflow(workflow_id, fields, expected_version=expected_version)
    return jsonify(workflow.to_dict()), 200


@production_bp.route("/workflows/<int:workflow_id>/transition", methods=["POST"])
def transition_workflow(workflow_id):
    """Move a workflow to another stage. Body: {to_stage_id, note?, version?}."""
    data = _json()
    to_stage_id = data.get("to_stage_id")
    if to_stage_id is None:
        return api_error(E.VALIDATION_REQUIRED, "to_stage_id is required")
    try:
        to_stage_id = int(to_stage_id)
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_FORMAT, "to_stage_id must be an integer")
    actor = _actor(data)
    if not actor:
        return api_error(E.VALIDATION_REQUIRED, "actor is required (X-Actor-Id header)")
    expected_version, err = _expected_version(data)
    if err:
        return err

    workflow = engine.transition_stage(
        workflow_id, to_stage_id, actor,
        note=data.get("note") or data.get("notes"),
        expected_version=expected_version,
    )
    return jsonify(workflow.to_dict()), 200


@production_bp.route("/workflows/<int:workflow_id>/status", methods=["POST"])
def update_workflow_status(workflow_id):
    """Body: {status, version?}."""
    data = _json()
    status = data.get("status")
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    expected_version, err = _expected_version(data)
    if err:
        return err

    workflow = engine.update_status(
        workflow_id, status,
        actor=_actor(data) or "system",
        expected_version=expected_version,
    )
    return jsonify(workflow.to_dict()), 200


@production_bp.route("/workflows/<int:workflow_id>/transitions", methods=["GET"])
def list_workflow_transitions(workflow_id):
    transitions = engine.list_transitions(workflow_id)
    return jsonify([t.to_dict() for t in transitions]), 200


@production_bp.route("/workflows/<int:workflow_id>/timeline", methods=["GET"])
def workflow_timeline(workflow_id):
    return jsonify(engine.get_workflow_timeline(workflow_id)), 200


# ═════════════════════════════════════════════════════════════════════════════
# Tasks
# ═════════════════════════════════════════════════════════════════════════════


@production_bp.route("/workflows/<int:workflow_id>/tasks", methods=["GET"])
def list_workflow_tasks(workflow_id):
    stage_id, err = _int_arg("stage_id")
    if err:
        return err
    tasks = task_service.list_tasks(workflow_id, stage_id=stage_id, status=request.args.get("status"))
    return jsonify([t.to_dict() for t in tasks]), 200


@production_bp.route("/workflows/<int:workflow_id>/tasks/seed", methods=["POST"])
def seed_workflow_tasks(workflow_id):
    """Top up the template checklist; idempotent. Body: {stage_id?}."""
    data = _json()
    stage_id = data.get("stage_id")
    if stage_id is not None:
        try:
            stage_id = int(stage_id)
        except (TypeError, ValueError):
            return api_error(E.VALIDATION_FORMAT, "stage_id must be an integer")
    created = task_service.seed_workflow_tasks(workflow_id, stage_id=stage_id)
    return jsonify({
        "created": len(created),
        "tasks": [t.to_dict() for t in created],
    }), 201 if created else 200


@production_bp.route("/tasks/<int:task_id>", methods=["GET"])
def get_task(task_id):
    return jsonify(task_service.get_task(task_id).to_dict()), 200


@production_bp.route("/tasks/<int:task_id>", methods=["PUT"])
def update_task(task_id):
    data = _json()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body is required")
    updated = task_service.update_task(task_id, data, actor=_actor(data) or "system")
    return jsonify(updated.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════════
# Issues
# ═════════════════════════════════════════════════════════════════════════════


@production_bp.route("/workflows/<int:workflow_id>/issues", methods=["GET"])
def list_workflow_issues(workflow_id):
    issues = issue_service.list_issues(workflow_id, status=request.args.get("status"))
    return jsonify([i.to_dict() for i in issues]), 200


@production_bp.route("/workflows/<int:workflow_id>/issues", methods=["POST"])
def report_workflow_issue(workflow_id):
    """Body: {issue_type, severity, description, impact_hours?, assigned_to?}."""
    data = _json()
    category = data.get("issue_type") or data.get("category")
    missing = [f for f, v in (("issue_type", category),
                              ("severity", data.get("severity")),
                              ("description", data.get("description"))) if not v]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"Missing required fields: {', '.join(missing)}",
                         details={"missing": missing})
    reported_by = _actor(data) or data.get("reported_by")
    if not reported_by:
        return api_error(E.VALIDATION_REQUIRED, "reported_by is required (X-Actor-Id header)")

    issue = issue_service.report_issue(
        workflow_id, category, data["severity"], data["description"],
        reported_by=reported_by,
        impact_hours=data.get("impact_hours"),
        assigned_to=data.get("assigned_to"),
    )
    return jsonify(issue.to_dict()), 201


@production_bp.route("/issues/<int:issue_id>", methods=["GET"])
def get_issue(issue_id):
    return jsonify(issue_service.get_issue(issue_id).to_dict()), 200


@production_bp.route("/issues/<int:issue_id>/resolve", methods=["POST"])
def resolve_issue(issue_id):
    """Body: {resolution, status?: resolved|closed}."""
    data = _json()
    if not data.get("resolution"):
        return api_error(E.VALIDATION_REQUIRED, "resolution is required")
    issue = issue_service.resolve_issue(
        issue_id, data["resolution"], status=data.get("status") or "resolved",
    )
    return jsonify(issue.to_dict()), 200


@production_bp.route("/issues/<int:issue_id>/transition", methods=["POST"])
def transition_issue(issue_id):
    data = _json()
    status = data.get("status")
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    return jsonify(issue_service.transition_issue(issue_id, status).to_dict()), 200


@production_bp.route("/issues/<int:issue_id>/assign", methods=["POST"])
def assign_issue(issue_id):
    data = _json()
    if "assigned_to" not in data:
        return api_error(E.VALIDATION_REQUIRED, "assigned_to is required")
    return jsonify(issue_service.assign_issue(issue_id, data["assigned_to"]).to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════════
# Metrics
# ═════════════════════════════════════════════════════════════════════════════


@production_bp.route("/stats", methods=["GET"])
def production_stats():
    project_id, err = _int_arg("project_id")
    if err:
        return err
    workflow_ids, err = _workflow_ids_arg()
    if err:
        return err
    return jsonify(metrics_service.get_production_stats(
        project_id=project_id, workflow_ids=workflow_ids,
    )), 200


@production_bp.route("/metrics/daily", methods=["GET"])
def daily_metrics():
    project_id, err = _int_arg("project_id")
    if err:
        return err
    days, err = _int_arg("days")
    if err:
        return err
    workflow_ids, err = _workflow_ids_arg()
    if err:
        return err
    try:
        until = parse_date_input(request.args.get("until"))
    except ValueError as exc:
        return api_error(E.VALIDATION_FORMAT, str(exc), details={"until": request.args.get("until")})
    return jsonify(metrics_service.get_daily_metrics(
        project_id=project_id, workflow_ids=workflow_ids,
        days=days if days is not None else 30, today=until,
    )), 200
