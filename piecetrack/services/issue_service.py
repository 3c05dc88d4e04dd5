"""
Production Issues — problem reports raised against a workflow.

Lifecycle:
    open → in_progress | resolved | closed
    in_progress → resolved | closed
    resolved → closed | open
    closed → open

Re-opening an issue clears its resolution and ``resolved_at``. Issues
never change the workflow's status; a critical issue is reported, not
escalated.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import case, select

from piecetrack.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from piecetrack.models import db
from piecetrack.models.production import (
    ISSUE_SEVERITIES,
    ISSUE_STATUSES,
    ISSUE_TYPES,
    ProductionIssue,
    ProductionWorkflow,
    validate_issue_transition,
)

logger = logging.getLogger(__name__)

_SEVERITY_RANK = case(
    {s: rank for rank, s in enumerate(reversed(ISSUE_SEVERITIES))},
    value=ProductionIssue.severity,
    else_=len(ISSUE_SEVERITIES),
)


def get_issue(issue_id: int) -> ProductionIssue:
    issue = db.session.get(ProductionIssue, issue_id)
    if not issue:
        raise NotFoundError(resource="ProductionIssue", resource_id=issue_id)
    return issue


def list_issues(workflow_id: int, status: str | None = None) -> list[ProductionIssue]:
    """Issues of a workflow, most severe first, then newest."""
    if not db.session.get(ProductionWorkflow, workflow_id):
        raise NotFoundError(resource="ProductionWorkflow", resource_id=workflow_id)
    stmt = select(ProductionIssue).where(ProductionIssue.workflow_id == workflow_id)
    if status:
        stmt = stmt.where(ProductionIssue.status == status)
    stmt = stmt.order_by(_SEVERITY_RANK, ProductionIssue.reported_at.desc(), ProductionIssue.id.desc())
    return list(db.session.execute(stmt).scalars())


def report_issue(
    workflow_id: int,
    category: str,
    severity: str,
    description: str,
    *,
    reported_by: str,
    impact_hours: float | None = None,
    assigned_to: str | None = None,
) -> ProductionIssue:
    """Raise a new ``open`` issue against a workflow."""
    workflow = db.session.get(ProductionWorkflow, workflow_id)
    if not workflow:
        raise NotFoundError(resource="ProductionWorkflow", resource_id=workflow_id)

    errors = {}
    if category not in ISSUE_TYPES:
        errors["issue_type"] = f"must be one of {', '.join(sorted(ISSUE_TYPES))}"
    if severity not in ISSUE_SEVERITIES:
        errors["severity"] = f"must be one of {', '.join(ISSUE_SEVERITIES)}"
    if not (description or "").strip():
        errors["description"] = "required"
    if not reported_by:
        errors["reported_by"] = "required"
    if impact_hours is not None:
        try:
            impact_hours = float(impact_hours)
        except (TypeError, ValueError):
            errors["impact_hours"] = "must be a number"
        else:
            if impact_hours < 0:
                errors["impact_hours"] = "cannot be negative"
    if errors:
        raise ValidationError("Invalid issue report", details=errors)

    issue = ProductionIssue(
        workflow_id=workflow.id,
        issue_type=category,
        severity=severity,
        description=description.strip(),
        impact_hours=impact_hours,
        reported_by=reported_by,
        assigned_to=assigned_to,
        status="open",
    )
    db.session.add(issue)
    db.session.commit()

    log = logger.warning if severity == "critical" else logger.info
    log("Issue reported id=%s workflow_id=%s %s/%s", issue.id, workflow.id, category, severity,
        extra={"workflow_id": workflow.id, "event_type": "issue_reported", "actor": reported_by})
    return issue


def _apply_status(issue: ProductionIssue, new_status: str) -> str:
    if new_status not in ISSUE_STATUSES:
        raise ValidationError(f"Unknown issue status '{new_status}'",
                              details={"status": sorted(ISSUE_STATUSES)})
    old = issue.status
    if not validate_issue_transition(old, new_status):
        raise InvalidTransitionError("ProductionIssue", issue.id, old, new_status)
    issue.status = new_status
    if new_status in ("resolved", "closed") and not issue.resolved_at:
        issue.resolved_at = datetime.now(timezone.utc)
    if new_status == "open":
        issue.resolution = None
        issue.resolved_at = None
    return old


def resolve_issue(issue_id: int, resolution: str, *, status: str = "resolved") -> ProductionIssue:
    """Close out an issue with a resolution note (``resolved`` or ``closed``)."""
    if status not in ("resolved", "closed"):
        raise ValidationError("status must be 'resolved' or 'closed'", details={"status": status})
    if not (resolution or "").strip():
        raise ValidationError("resolution is required", details={"resolution": "required"})
    issue = get_issue(issue_id)
    old = _apply_status(issue, status)
    issue.resolution = resolution.strip()
    db.session.commit()
    logger.info("Issue %s %s → %s", issue.id, old, status,
                extra={"workflow_id": issue.workflow_id, "event_type": "issue_resolved"})
    return issue


def transition_issue(issue_id: int, new_status: str) -> ProductionIssue:
    issue = get_issue(issue_id)
    old = _apply_status(issue, new_status)
    db.session.commit()
    logger.info("Issue %s %s → %s", issue.id, old, new_status,
                extra={"workflow_id": issue.workflow_id, "event_type": "issue_transitioned"})
    return issue


def assign_issue(issue_id: int, assigned_to: str | None) -> ProductionIssue:
    """Set or clear the assignee. Closed issues cannot be reassigned."""
    issue = get_issue(issue_id)
    if issue.status == "closed":
        raise InvalidTransitionError("ProductionIssue", issue.id, issue.status, "reassign",
                                     reason="issue is closed")
    issue.assigned_to = assigned_to or None
    db.session.commit()
    return issue
