"""
Piece Mark Production Tracker
Production workflow domain models.

Models:
    - ProductionStage:     ordered catalog of named production stages (reference data)
    - ProductionWorkflow:  one record per piece mark moving through the catalog
    - StageTransition:     immutable, append-only log of stage-to-stage moves
    - ProductionTask:      per-stage checklist items seeded from templates
    - ProductionIssue:     ad-hoc problem reports raised against a workflow

Architecture:
    ProductionStage ──1:N──▶ ProductionWorkflow   (current stage only)
    ProductionWorkflow ──1:N──▶ StageTransition
    ProductionWorkflow ──1:N──▶ ProductionTask ──N:1──▶ ProductionStage
    ProductionWorkflow ──1:N──▶ ProductionIssue

Lifecycle states:
    ProductionWorkflow:  not_started → in_progress ⇄ on_hold → completed | cancelled
    ProductionTask:      pending → in_progress → completed | failed, pending → skipped
    ProductionIssue:     open → in_progress → resolved → closed
"""

from datetime import datetime, timezone

from sqlalchemy import event

from piecetrack.core.exceptions import ValidationError
from piecetrack.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

DEPARTMENTS = {"engineering", "shop", "paint", "shipping", "field"}

WORKFLOW_STATUSES = {
    "not_started", "in_progress", "on_hold", "completed", "cancelled",
}

TERMINAL_WORKFLOW_STATUSES = {"completed", "cancelled"}

PRIORITIES = ("low", "normal", "high", "urgent")

TASK_STATUSES = {"pending", "in_progress", "completed", "skipped", "failed"}

TASK_TYPES = {
    "fabrication", "welding", "drilling", "cutting",
    "assembly", "painting", "inspection", "shipping",
}

ISSUE_TYPES = {
    "material", "equipment", "labor", "quality",
    "design", "weather", "other",
}

ISSUE_SEVERITIES = ("low", "medium", "high", "critical")

ISSUE_STATUSES = {"open", "in_progress", "resolved", "closed"}

OPEN_ISSUE_STATUSES = ("open", "in_progress")


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

WORKFLOW_TRANSITIONS = {
    "not_started": ["in_progress", "cancelled"],
    "in_progress": ["on_hold", "completed", "cancelled"],
    "on_hold":     ["in_progress", "cancelled"],
    "completed":   [],
    "cancelled":   [],
}

TASK_TRANSITIONS = {
    "pending":     ["in_progress", "skipped"],
    "in_progress": ["completed", "failed", "pending"],
    "completed":   ["in_progress"],           # rework
    "failed":      ["in_progress", "skipped"],
    "skipped":     ["pending"],
}

ISSUE_TRANSITIONS = {
    "open":        ["in_progress", "resolved", "closed"],
    "in_progress": ["resolved", "closed"],
    "resolved":    ["closed", "open"],         # re-open if the problem recurs
    "closed":      ["open"],
}


def validate_workflow_transition(old_status, new_status):
    """Return True if ProductionWorkflow status transition is valid."""
    return new_status in WORKFLOW_TRANSITIONS.get(old_status, [])


def validate_task_transition(old_status, new_status):
    """Return True if ProductionTask status transition is valid."""
    return new_status in TASK_TRANSITIONS.get(old_status, [])


def validate_issue_transition(old_status, new_status):
    """Return True if ProductionIssue status transition is valid."""
    return new_status in ISSUE_TRANSITIONS.get(old_status, [])


# ── Reference data ───────────────────────────────────────────────────────────

DEFAULT_STAGES = [
    {"name": "Engineering Review", "stage_order": 1, "department": "engineering",
     "required_approvals": 1, "estimated_hours": 2.0},
    {"name": "Material Preparation", "stage_order": 2, "department": "shop",
     "required_approvals": 1, "estimated_hours": 4.0},
    {"name": "Cutting", "stage_order": 3, "department": "shop",
     "required_approvals": 0, "estimated_hours": 3.0},
    {"name": "Drilling & Punching", "stage_order": 4, "department": "shop",
     "required_approvals": 0, "estimated_hours": 2.5},
    {"name": "Fitting", "stage_order": 5, "department": "shop",
     "required_approvals": 0, "estimated_hours": 4.0},
    {"name": "Welding", "stage_order": 6, "department": "shop",
     "required_approvals": 1, "estimated_hours": 6.0},
    {"name": "Quality Inspection", "stage_order": 7, "department": "shop",
     "required_approvals": 1, "estimated_hours": 1.5},
    {"name": "Surface Preparation", "stage_order": 8, "department": "paint",
     "required_approvals": 0, "estimated_hours": 2.0},
    {"name": "Painting/Galvanizing", "stage_order": 9, "department": "paint",
     "required_approvals": 1, "estimated_hours": 4.0},
    {"name": "Final QC", "stage_order": 10, "department": "shop",
     "required_approvals": 1, "estimated_hours": 1.0},
    {"name": "Shipping Preparation", "stage_order": 11, "department": "shipping",
     "required_approvals": 0, "estimated_hours": 2.0},
    {"name": "Ready for Shipment", "stage_order": 12, "department": "shipping",
     "required_approvals": 1, "estimated_hours": 0.5},
]

# Stage name → checklist seeded for every new workflow.
# Stages without an entry get no tasks.
DEFAULT_TASK_TEMPLATES = {
    "Engineering Review": [
        {"name": "Review drawings", "estimated_hours": 1.0},
        {"name": "Verify specifications", "estimated_hours": 1.0},
    ],
    "Material Preparation": [
        {"name": "Order materials", "estimated_hours": 1.0},
        {"name": "Receive materials", "estimated_hours": 1.0},
        {"name": "Stage materials", "estimated_hours": 2.0},
    ],
    "Cutting": [
        {"name": "Setup cutting equipment", "estimated_hours": 0.5},
        {"name": "Cut to dimensions", "estimated_hours": 2.0},
        {"name": "Quality check cuts", "estimated_hours": 0.5},
    ],
    "Welding": [
        {"name": "Setup welding", "estimated_hours": 1.0},
        {"name": "Perform welds", "estimated_hours": 4.0},
        {"name": "Visual inspection", "estimated_hours": 1.0},
    ],
    "Quality Inspection": [
        {"name": "Dimensional check", "estimated_hours": 0.5},
        {"name": "Weld inspection", "estimated_hours": 0.5},
        {"name": "Document results", "estimated_hours": 0.5},
    ],
    "Painting/Galvanizing": [
        {"name": "Surface preparation", "estimated_hours": 1.0},
        {"name": "Apply coating", "estimated_hours": 2.0},
        {"name": "Final inspection", "estimated_hours": 1.0},
    ],
}


# ═════════════════════════════════════════════════════════════════════════════
# 1. ProductionStage
# ═════════════════════════════════════════════════════════════════════════════


class ProductionStage(db.Model):
    """
    One named step of the fabrication sequence.
    Reference data: created at setup time, rarely mutated.
    """

    __tablename__ = "production_stages"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    stage_order = db.Column(
        db.Integer, nullable=False, unique=True,
        comment="1-based position in the catalog",
    )
    department = db.Column(
        db.String(20), nullable=False,
        comment="engineering | shop | paint | shipping | field",
    )
    required_approvals = db.Column(db.Integer, nullable=False, default=1)
    estimated_hours = db.Column(db.Float, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "department IN ('engineering','shop','paint','shipping','field')",
            name="ck_production_stage_department",
        ),
        db.CheckConstraint("stage_order > 0", name="ck_production_stage_order"),
        db.CheckConstraint("required_approvals >= 0", name="ck_production_stage_approvals"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "stage_order": self.stage_order,
            "department": self.department,
            "required_approvals": self.required_approvals,
            "estimated_hours": self.estimated_hours,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<ProductionStage {self.stage_order}: {self.name}>"


def seed_default_stages():
    """
    Create the standard 12-stage fabrication catalog.
    Stages that already exist (matched by name) are left untouched.
    """
    existing = {name for (name,) in db.session.query(ProductionStage.name).all()}
    created = []
    for d in DEFAULT_STAGES:
        if d["name"] in existing:
            continue
        created.append(ProductionStage(**d))
    db.session.add_all(created)
    db.session.flush()
    return created


# ═════════════════════════════════════════════════════════════════════════════
# 2. ProductionWorkflow
# ═════════════════════════════════════════════════════════════════════════════


class ProductionWorkflow(db.Model):
    """
    A piece mark's journey through the stage catalog.

    ``version`` is SQLAlchemy's optimistic-lock column: every UPDATE is
    issued as ``WHERE id = ? AND version = ?`` and bumps the value, so two
    writers starting from the same row cannot both commit.
    """

    __tablename__ = "production_workflows"

    id = db.Column(db.Integer, primary_key=True)
    piece_mark_id = db.Column(
        db.String(64), nullable=False, index=True,
        comment="Reference to the tracked piece mark (owned by the piece-mark service)",
    )
    project_id = db.Column(db.Integer, nullable=True, index=True)
    current_stage_id = db.Column(
        db.Integer, db.ForeignKey("production_stages.id", ondelete="RESTRICT"),
        nullable=True, index=True,
    )
    status = db.Column(
        db.String(20), nullable=False, default="not_started", index=True,
        comment="not_started | in_progress | on_hold | completed | cancelled",
    )
    priority = db.Column(
        db.String(10), nullable=False, default="normal",
        comment="low | normal | high | urgent",
    )

    # Timeline
    scheduled_start = db.Column(db.Date, nullable=True)
    scheduled_end = db.Column(db.Date, nullable=True)
    actual_start = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_end = db.Column(db.DateTime(timezone=True), nullable=True)

    progress_percentage = db.Column(db.Integer, nullable=False, default=0)
    assigned_to = db.Column(db.String(100), nullable=True)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('not_started','in_progress','on_hold','completed','cancelled')",
            name="ck_production_workflow_status",
        ),
        db.CheckConstraint(
            "priority IN ('low','normal','high','urgent')",
            name="ck_production_workflow_priority",
        ),
        db.CheckConstraint(
            "progress_percentage >= 0 AND progress_percentage <= 100",
            name="ck_production_workflow_progress",
        ),
    )

    # ── Relationships ────────────────────────────────────────────────────
    current_stage = db.relationship("ProductionStage", foreign_keys=[current_stage_id])
    transitions = db.relationship(
        "StageTransition", backref="workflow", lazy="dynamic",
        order_by="StageTransition.id",
    )
    tasks = db.relationship(
        "ProductionTask", backref="workflow", lazy="dynamic",
        order_by="ProductionTask.id",
    )
    issues = db.relationship(
        "ProductionIssue", backref="workflow", lazy="dynamic",
        order_by="ProductionIssue.reported_at.desc()",
    )

    @property
    def is_terminal(self):
        return self.status in TERMINAL_WORKFLOW_STATUSES

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "piece_mark_id": self.piece_mark_id,
            "project_id": self.project_id,
            "current_stage_id": self.current_stage_id,
            "current_stage": self.current_stage.to_dict() if self.current_stage else None,
            "status": self.status,
            "priority": self.priority,
            "scheduled_start": _iso(self.scheduled_start),
            "scheduled_end": _iso(self.scheduled_end),
            "actual_start": _iso(self.actual_start),
            "actual_end": _iso(self.actual_end),
            "progress_percentage": self.progress_percentage,
            "assigned_to": self.assigned_to,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            # Aggregated stats
            "task_count": self.tasks.count(),
            "open_issue_count": self.issues.filter(
                ProductionIssue.status.in_(OPEN_ISSUE_STATUSES)
            ).count(),
        }
        if include_children:
            result["transitions"] = [t.to_dict() for t in self.transitions]
            result["tasks"] = [t.to_dict() for t in self.tasks]
            result["issues"] = [i.to_dict() for i in self.issues]
        return result

    def __repr__(self):
        return f"<ProductionWorkflow {self.id}: {self.piece_mark_id} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. StageTransition
# ═════════════════════════════════════════════════════════════════════════════


class StageTransition(db.Model):
    """
    Immutable record of one stage move.
    ``duration_hours`` is computed at write time from the previous
    transition (or the workflow's creation when there is none).
    """

    __tablename__ = "stage_transitions"
    __table_args__ = (
        db.Index("idx_stage_transitions_workflow_date", "workflow_id", "transition_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("production_workflows.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    from_stage_id = db.Column(
        db.Integer, db.ForeignKey("production_stages.id"), nullable=True,
    )
    to_stage_id = db.Column(
        db.Integer, db.ForeignKey("production_stages.id"), nullable=False,
    )
    transitioned_by = db.Column(db.String(100), nullable=False)
    transition_date = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    notes = db.Column(db.Text, nullable=True)
    duration_hours = db.Column(db.Float, nullable=True)

    from_stage = db.relationship("ProductionStage", foreign_keys=[from_stage_id])
    to_stage = db.relationship("ProductionStage", foreign_keys=[to_stage_id])

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "from_stage_id": self.from_stage_id,
            "from_stage_name": self.from_stage.name if self.from_stage else None,
            "to_stage_id": self.to_stage_id,
            "to_stage_name": self.to_stage.name if self.to_stage else None,
            "transitioned_by": self.transitioned_by,
            "transition_date": _iso(self.transition_date),
            "notes": self.notes,
            "duration_hours": self.duration_hours,
        }

    def __repr__(self):
        return f"<StageTransition {self.id}: {self.from_stage_id} → {self.to_stage_id}>"


@event.listens_for(StageTransition, "before_update")
def _reject_transition_update(mapper, connection, target):
    raise ValidationError(
        "Stage transitions are append-only",
        details={"stage_transition_id": target.id},
    )


@event.listens_for(StageTransition, "before_delete")
def _reject_transition_delete(mapper, connection, target):
    raise ValidationError(
        "Stage transitions are append-only",
        details={"stage_transition_id": target.id},
    )


# ═════════════════════════════════════════════════════════════════════════════
# 4. ProductionTask
# ═════════════════════════════════════════════════════════════════════════════


class ProductionTask(db.Model):
    """
    Checklist item for one (workflow, stage) pair.
    Seeded in bulk from DEFAULT_TASK_TEMPLATES; progressed independently.
    """

    __tablename__ = "production_tasks"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("production_workflows.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    stage_id = db.Column(
        db.Integer, db.ForeignKey("production_stages.id"), nullable=False, index=True,
    )
    task_name = db.Column(db.String(200), nullable=False)
    task_type = db.Column(
        db.String(20), nullable=False, default="fabrication",
        comment="fabrication | welding | drilling | cutting | assembly | painting | inspection | shipping",
    )
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    assigned_to = db.Column(db.String(100), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    estimated_hours = db.Column(db.Float, nullable=True)
    actual_hours = db.Column(db.Float, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.UniqueConstraint(
            "workflow_id", "stage_id", "task_name",
            name="uq_production_task_workflow_stage_name",
        ),
        db.CheckConstraint(
            "status IN ('pending','in_progress','completed','skipped','failed')",
            name="ck_production_task_status",
        ),
    )

    stage = db.relationship("ProductionStage")

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "stage_id": self.stage_id,
            "stage_name": self.stage.name if self.stage else None,
            "task_name": self.task_name,
            "task_type": self.task_type,
            "status": self.status,
            "assigned_to": self.assigned_to,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<ProductionTask {self.id}: {self.task_name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 5. ProductionIssue
# ═════════════════════════════════════════════════════════════════════════════


class ProductionIssue(db.Model):
    """
    Problem report (material shortage, equipment failure, weld defect …)
    raised against a workflow. Does not change the workflow's status.
    """

    __tablename__ = "production_issues"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("production_workflows.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    issue_type = db.Column(
        db.String(20), nullable=False,
        comment="material | equipment | labor | quality | design | weather | other",
    )
    severity = db.Column(db.String(10), nullable=False, comment="low | medium | high | critical")
    description = db.Column(db.Text, nullable=False)
    impact_hours = db.Column(db.Float, nullable=True)
    reported_by = db.Column(db.String(100), nullable=False)
    assigned_to = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="open", index=True)
    resolution = db.Column(db.Text, nullable=True)
    reported_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.CheckConstraint(
            "severity IN ('low','medium','high','critical')",
            name="ck_production_issue_severity",
        ),
        db.CheckConstraint(
            "status IN ('open','in_progress','resolved','closed')",
            name="ck_production_issue_status",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "issue_type": self.issue_type,
            "severity": self.severity,
            "description": self.description,
            "impact_hours": self.impact_hours,
            "reported_by": self.reported_by,
            "assigned_to": self.assigned_to,
            "status": self.status,
            "resolution": self.resolution,
            "reported_at": _iso(self.reported_at),
            "resolved_at": _iso(self.resolved_at),
        }

    def __repr__(self):
        return f"<ProductionIssue {self.id}: {self.issue_type}/{self.severity} [{self.status}]>"
