"""
Approval workflow domain models.

Models:
    - ApprovalWorkflow: named, ordered template of approval steps
    - ApprovalStep: one role-gated checkpoint inside a workflow
    - ProjectApproval: the live approval run attached to a project
    - ApprovalStepRecord: latest decision per step within a run

ApprovalStepRecord is NOT append-only. It holds one row per
(project_approval_id, step_id); re-deciding a step overwrites the row.
The append-only trail lives in audit_logs.
"""

from datetime import datetime, timezone

from pms.models import db

# ── Constants ────────────────────────────────────────────────────────────────

STATUS_PENDING = "pending"
STATUS_FOR_EVALUATION = "for_evaluation"
STATUS_FOR_APPROVAL = "for_approval"
STATUS_APPROVED = "approved"
STATUS_APPROVED_WITH_CONDITIONS = "approved_with_conditions"
STATUS_COMPLETED = "completed"
STATUS_REJECTED = "rejected"  # legacy rows only, never written

OVERALL_STATUSES = {
    STATUS_PENDING,
    STATUS_FOR_EVALUATION,
    STATUS_FOR_APPROVAL,
    STATUS_APPROVED,
    STATUS_APPROVED_WITH_CONDITIONS,
    STATUS_COMPLETED,
    STATUS_REJECTED,
}

IN_PROGRESS_STATUSES = (STATUS_PENDING, STATUS_FOR_EVALUATION, STATUS_FOR_APPROVAL)
APPROVED_STATUSES = (STATUS_APPROVED, STATUS_APPROVED_WITH_CONDITIONS)

DECISION_APPROVED = "approved"
DECISION_APPROVED_WITH_CONDITIONS = "approved_with_conditions"
DECISION_RETURNED = "returned"

APPROVAL_DECISIONS = {DECISION_APPROVED, DECISION_APPROVED_WITH_CONDITIONS}
STEP_RECORD_STATUSES = APPROVAL_DECISIONS | {DECISION_RETURNED}


def _iso(value):
    return value.isoformat() if value else None


class ApprovalWorkflow(db.Model):
    """Workflow template. project_type_id=None means it applies to every type."""

    __tablename__ = "approval_workflows"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    project_type_id = db.Column(
        db.Integer, db.ForeignKey("project_types.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    steps = db.relationship(
        "ApprovalStep", back_populates="workflow",
        order_by="ApprovalStep.step_order", cascade="all, delete-orphan",
    )

    def to_dict(self, include_steps=False):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "project_type_id": self.project_type_id,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
        }
        if include_steps:
            d["steps"] = [s.to_dict() for s in self.steps]
        return d

    def __repr__(self):
        return f"<ApprovalWorkflow {self.id}: {self.name}>"


class ApprovalStep(db.Model):
    """One checkpoint in a workflow, bound to the role that must act on it."""

    __tablename__ = "approval_steps"
    __table_args__ = (
        db.UniqueConstraint("workflow_id", "step_order", name="uq_approval_step_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("approval_workflows.id", ondelete="CASCADE"), nullable=False,
    )
    step_order = db.Column(db.Integer, nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False)
    step_name = db.Column(db.String(255), nullable=False)
    # Declared for future branching, not consulted by the engine.
    is_required = db.Column(db.Boolean, nullable=False, default=True)
    can_skip = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    workflow = db.relationship("ApprovalWorkflow", back_populates="steps")
    role = db.relationship("Role")

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "step_order": self.step_order,
            "role_id": self.role_id,
            "role": self.role.name if self.role else None,
            "step_name": self.step_name,
            "is_required": self.is_required,
            "can_skip": self.can_skip,
        }

    def __repr__(self):
        return f"<ApprovalStep {self.id}: #{self.step_order} {self.step_name}>"


class ProjectApproval(db.Model):
    """
    Run-time state of a workflow attached to one project.

    One row per project; initiate() upserts by project_id.
    current_step_id is NULL once the last step has been approved.
    """

    __tablename__ = "project_approvals"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("approval_workflows.id"), nullable=False,
    )
    current_step_id = db.Column(
        db.Integer, db.ForeignKey("approval_steps.id", ondelete="SET NULL"), nullable=True,
    )
    overall_status = db.Column(
        db.String(30), nullable=False, default=STATUS_PENDING, index=True,
        comment="pending | for_evaluation | for_approval | approved | approved_with_conditions | completed",
    )
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    project = db.relationship("Project")
    workflow = db.relationship("ApprovalWorkflow")
    current_step = db.relationship("ApprovalStep", foreign_keys=[current_step_id])
    step_records = db.relationship(
        "ApprovalStepRecord", back_populates="approval",
        lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self, include_records=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "project_code": self.project.project_code if self.project else None,
            "project_title": self.project.title if self.project else None,
            "workflow_id": self.workflow_id,
            "workflow": self.workflow.name if self.workflow else None,
            "current_step_id": self.current_step_id,
            "current_step": self.current_step.to_dict() if self.current_step else None,
            "overall_status": self.overall_status,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }
        if include_records:
            d["step_records"] = [r.to_dict() for r in self.step_records]
        return d

    def __repr__(self):
        return f"<ProjectApproval {self.id}: project={self.project_id} {self.overall_status}>"


class ApprovalStepRecord(db.Model):
    """Latest decision recorded for one step within one approval run."""

    __tablename__ = "approval_step_records"
    __table_args__ = (
        db.UniqueConstraint(
            "project_approval_id", "step_id", name="uq_step_record_approval_step",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_approval_id = db.Column(
        db.Integer, db.ForeignKey("project_approvals.id", ondelete="CASCADE"), nullable=False,
    )
    step_id = db.Column(
        db.Integer, db.ForeignKey("approval_steps.id", ondelete="CASCADE"), nullable=False,
    )
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = db.Column(
        db.String(30), nullable=False,
        comment="approved | approved_with_conditions | returned",
    )
    comments = db.Column(db.Text)
    conditions = db.Column(db.Text)
    submitted_at = db.Column(db.DateTime(timezone=True))
    reviewed_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    approval = db.relationship("ProjectApproval", back_populates="step_records")
    step = db.relationship("ApprovalStep")
    approver = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "project_approval_id": self.project_approval_id,
            "step_id": self.step_id,
            "step_order": self.step.step_order if self.step else None,
            "step_name": self.step.step_name if self.step else None,
            "approver_id": self.approver_id,
            "approver": self.approver.full_name if self.approver else None,
            "status": self.status,
            "comments": self.comments,
            "conditions": self.conditions,
            "submitted_at": _iso(self.submitted_at),
            "reviewed_at": _iso(self.reviewed_at),
        }

    def __repr__(self):
        return f"<ApprovalStepRecord {self.id}: step={self.step_id} {self.status}>"
