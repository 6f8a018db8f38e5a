"""
Approval Engine — sequential multi-role approval runs for projects.

State machine over ProjectApproval.overall_status, driven by the position of
the current step rather than by explicit transitions:

    step_order <= 1  → pending
    step_order == 2  → for_evaluation
    step_order >= 3  → for_approval
    last step approved → approved | approved_with_conditions
    complete()         → completed

``rejected`` is a legacy value: listing it is supported, producing it is
not. Rejecting a project means returning it to step 1.

Step records hold the latest decision per (run, step); every decision is
also appended to audit_logs.

approve / return_for_revision / complete / bootstrap lock the run row
(SELECT ... FOR UPDATE), check every precondition before writing, and
commit once. initiate() and complete() accept ``commit=False`` so the
project coordinator can fold them into its own transaction.

Usage:
    engine = ApprovalEngine()
    run = engine.initiate(project.id, project.project_type_id, user.id)
    run = engine.approve(run.id, officer, "approved", comments="ok")
"""

from __future__ import annotations

import logging

from sqlalchemy import and_, or_, select

from pms.core.exceptions import (
    AuthorizationError,
    FieldViolation,
    NotFoundError,
    StateError,
    ValidationError,
)
from pms.models import db
from pms.models.approval import (
    APPROVAL_DECISIONS,
    APPROVED_STATUSES,
    DECISION_APPROVED,
    DECISION_APPROVED_WITH_CONDITIONS,
    DECISION_RETURNED,
    IN_PROGRESS_STATUSES,
    STATUS_APPROVED,
    STATUS_APPROVED_WITH_CONDITIONS,
    STATUS_COMPLETED,
    STATUS_FOR_APPROVAL,
    STATUS_FOR_EVALUATION,
    STATUS_PENDING,
    STATUS_REJECTED,
    ApprovalStep,
    ApprovalStepRecord,
    ProjectApproval,
)
from pms.models.audit import write_audit
from pms.models.project import Project
from pms.services.authorizer import RoleAuthorizer
from pms.services.workflow_store import WorkflowDefinitionStore
from pms.utils.clock import SystemClock

logger = logging.getLogger(__name__)

PROPONENT_SUBMISSION_COMMENT = "Project submitted by proponent."

MSG_NO_CURRENT_STEP = "Approval has no current step."
MSG_PROPONENT_ONLY = "Only the project proponent can process this step."
MSG_WRONG_ROLE = "Current approval step is assigned to another role."
MSG_NO_STEPS = "Approval workflow has no steps."
MSG_NOT_APPROVED = "Only approved workflows can be marked completed."
MSG_CONDITIONS_REQUIRED = "Please specify the conditions for approval."
MSG_COMMENTS_REQUIRED = "The comments field is required."


def derive_status(step_order: int | None) -> str:
    """In-progress status for a run whose current step has this order."""
    order = int(step_order or 0)
    if order <= 1:
        return STATUS_PENDING
    if order == 2:
        return STATUS_FOR_EVALUATION
    return STATUS_FOR_APPROVAL


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class ApprovalEngine:
    def __init__(self, store=None, authorizer=None, clock=None):
        self.store = store if store is not None else WorkflowDefinitionStore.from_config()
        self.authorizer = authorizer if authorizer is not None else RoleAuthorizer()
        self.clock = clock if clock is not None else SystemClock()

    # ── Loading ─────────────────────────────────────────────────────────

    def get(self, approval_id: int) -> ProjectApproval:
        approval = db.session.get(ProjectApproval, approval_id)
        if approval is None:
            raise NotFoundError(resource="ProjectApproval", resource_id=approval_id)
        return approval

    def _lock(self, approval_id: int) -> ProjectApproval:
        """Load the run with a row lock held until commit/rollback."""
        approval = db.session.execute(
            select(ProjectApproval)
            .where(ProjectApproval.id == approval_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if approval is None:
            raise NotFoundError(resource="ProjectApproval", resource_id=approval_id)
        return approval

    def _upsert_step_record(self, approval: ProjectApproval, step_id: int, **fields) -> ApprovalStepRecord:
        record = db.session.execute(
            select(ApprovalStepRecord).where(
                ApprovalStepRecord.project_approval_id == approval.id,
                ApprovalStepRecord.step_id == step_id,
            )
        ).scalar_one_or_none()
        if record is None:
            record = ApprovalStepRecord(project_approval_id=approval.id, step_id=step_id)
            db.session.add(record)
        for key, value in fields.items():
            setattr(record, key, value)
        return record

    def _audit(self, approval: ProjectApproval, action: str, actor_id, diff: dict) -> None:
        write_audit(
            entity_type="project_approval",
            entity_id=approval.id,
            action=action,
            project_id=approval.project_id,
            actor_user_id=actor_id,
            diff=diff,
            timestamp=self.clock.now(),
        )

    # ── Transitions ─────────────────────────────────────────────────────

    def initiate(
        self,
        project_id: int,
        project_type_id: int | None,
        proponent_user_id: int,
        *,
        commit: bool = True,
    ) -> ProjectApproval | None:
        """Seed (or re-seed) the project's approval run.

        Returns None when no workflow applies or the workflow has no steps;
        the caller carries on without a run.
        """
        workflow = self.store.resolve_workflow_for(project_type_id)
        if workflow is None:
            logger.info("No approval workflow for project", extra={"project_id": project_id})
            return None
        steps = self.store.list_steps(workflow)
        if not steps:
            logger.warning(
                "Approval workflow %r has no steps", workflow.name, extra={"project_id": project_id},
            )
            return None

        first_step = steps[0]
        current = steps[1] if len(steps) > 1 else first_step
        now = self.clock.now()

        approval = db.session.execute(
            select(ProjectApproval)
            .where(ProjectApproval.project_id == project_id)
            .order_by(ProjectApproval.id)
            .limit(1)
        ).scalar_one_or_none()
        if approval is None:
            approval = ProjectApproval(project_id=project_id)
            db.session.add(approval)
        approval.workflow_id = workflow.id
        approval.current_step_id = current.id
        approval.overall_status = derive_status(current.step_order)
        approval.started_at = now
        approval.completed_at = None
        db.session.flush()

        # The proponent's own submission satisfies step 1.
        self._upsert_step_record(
            approval,
            first_step.id,
            approver_id=proponent_user_id,
            status=DECISION_APPROVED,
            comments=PROPONENT_SUBMISSION_COMMENT,
            conditions=None,
            submitted_at=now,
            reviewed_at=now,
        )
        db.session.flush()
        self._audit(approval, "approval.initiate", proponent_user_id, {
            "workflow_id": workflow.id,
            "current_step_id": current.id,
            "overall_status": approval.overall_status,
        })
        if commit:
            db.session.commit()

        logger.info(
            "Approval run initiated",
            extra={
                "project_id": project_id,
                "approval_id": approval.id,
                "user_id": proponent_user_id,
                "step_id": current.id,
                "overall_status": approval.overall_status,
            },
        )
        return approval

    def approve(
        self,
        approval_id: int,
        acting_user,
        decision: str,
        comments: str | None = None,
        conditions: str | None = None,
    ) -> ProjectApproval:
        """Record the actor's decision on the current step and advance the run."""
        violations = []
        if decision not in APPROVAL_DECISIONS:
            violations.append(FieldViolation(
                "status", f"status must be one of {sorted(APPROVAL_DECISIONS)}",
            ))
        elif decision == DECISION_APPROVED_WITH_CONDITIONS and _blank(conditions):
            violations.append(FieldViolation("conditions", MSG_CONDITIONS_REQUIRED))
        if violations:
            raise ValidationError.from_violations(violations)

        approval = self._lock(approval_id)
        step = approval.current_step
        if step is None:
            raise StateError(MSG_NO_CURRENT_STEP)
        self._check_actor(approval, step, acting_user)

        now = self.clock.now()
        self._upsert_step_record(
            approval,
            step.id,
            approver_id=acting_user.id,
            status=decision,
            comments=comments,
            conditions=conditions,
            submitted_at=now,
            reviewed_at=now,
        )

        next_step = self.store.next_step_after(approval.workflow_id, step.step_order)
        if next_step is not None:
            approval.current_step_id = next_step.id
            approval.overall_status = derive_status(next_step.step_order)
            approval.completed_at = None
        else:
            approval.overall_status = (
                STATUS_APPROVED_WITH_CONDITIONS
                if decision == DECISION_APPROVED_WITH_CONDITIONS
                else STATUS_APPROVED
            )
            approval.completed_at = now
            approval.current_step_id = None
        db.session.flush()

        self._audit(approval, "approval.approve", acting_user.id, {
            "step_id": step.id,
            "step_order": step.step_order,
            "decision": decision,
            "comments": comments,
            "conditions": conditions,
            "overall_status": approval.overall_status,
        })
        db.session.commit()
        # current_step relationship is stale after the FK moved
        db.session.refresh(approval)

        logger.info(
            "Approval step decided",
            extra={
                "approval_id": approval.id,
                "project_id": approval.project_id,
                "user_id": acting_user.id,
                "step_id": step.id,
                "overall_status": approval.overall_status,
            },
        )
        return approval

    def _check_actor(self, approval: ProjectApproval, step: ApprovalStep, acting_user) -> None:
        if step.step_order == 1:
            project = db.session.get(Project, approval.project_id)
            if project is None or acting_user is None or project.created_by != acting_user.id:
                raise AuthorizationError(MSG_PROPONENT_ONLY, required_role="Proponent")
            return
        if not self.authorizer.can_act(acting_user, step.role_id):
            raise AuthorizationError(
                MSG_WRONG_ROLE,
                required_role_id=step.role_id,
                required_role=step.role.name if step.role else None,
            )

    def return_for_revision(self, approval_id: int, acting_user, comments: str | None) -> ProjectApproval:
        """Send the run back to step 1 / pending, recording ``returned`` on the current step."""
        if _blank(comments):
            raise ValidationError.from_violations([FieldViolation("comments", MSG_COMMENTS_REQUIRED)])

        approval = self._lock(approval_id)
        first_step = self.store.first_step(approval.workflow_id)
        if first_step is None:
            raise StateError(MSG_NO_STEPS)
        returned_step_id = approval.current_step_id
        if returned_step_id is None:
            raise StateError(MSG_NO_CURRENT_STEP)

        now = self.clock.now()
        record = self._upsert_step_record(
            approval,
            returned_step_id,
            approver_id=acting_user.id if acting_user is not None else None,
            status=DECISION_RETURNED,
            comments=comments,
            conditions=None,
            reviewed_at=now,
        )
        if record.submitted_at is None:
            record.submitted_at = now

        approval.current_step_id = first_step.id
        approval.overall_status = STATUS_PENDING
        approval.completed_at = None
        db.session.flush()

        self._audit(approval, "approval.return", record.approver_id, {
            "step_id": returned_step_id,
            "comments": comments,
            "overall_status": approval.overall_status,
        })
        db.session.commit()
        db.session.refresh(approval)

        logger.info(
            "Approval returned for revision",
            extra={
                "approval_id": approval.id,
                "project_id": approval.project_id,
                "user_id": record.approver_id,
                "step_id": returned_step_id,
                "overall_status": approval.overall_status,
            },
        )
        return approval

    # Kept for clients of the old reject endpoint; never produces "rejected".
    def reject(self, approval_id: int, acting_user, comments: str | None) -> ProjectApproval:
        return self.return_for_revision(approval_id, acting_user, comments)

    def complete(self, approval_id: int, *, actor_id: int | None = None, commit: bool = True) -> ProjectApproval:
        approval = self._lock(approval_id)
        if approval.overall_status not in APPROVED_STATUSES:
            raise StateError(MSG_NOT_APPROVED)
        previous = approval.overall_status
        approval.overall_status = STATUS_COMPLETED
        approval.completed_at = self.clock.now()
        db.session.flush()
        self._audit(approval, "approval.complete", actor_id, {
            "overall_status": {"old": previous, "new": STATUS_COMPLETED},
        })
        if commit:
            db.session.commit()

        logger.info(
            "Approval run completed",
            extra={"approval_id": approval.id, "project_id": approval.project_id, "user_id": actor_id},
        )
        return approval

    def bootstrap(self, approval_id: int, *, actor_id: int | None = None) -> ProjectApproval:
        """Repair a legacy row: status recomputed purely from the current step."""
        approval = self._lock(approval_id)
        step = approval.current_step
        order = step.step_order if step is not None else 0
        previous = approval.overall_status
        approval.overall_status = derive_status(order)
        db.session.flush()
        if previous != approval.overall_status:
            self._audit(approval, "approval.bootstrap", actor_id, {
                "overall_status": {"old": previous, "new": approval.overall_status},
            })
        db.session.commit()

        logger.info(
            "Approval status bootstrapped",
            extra={
                "approval_id": approval.id,
                "project_id": approval.project_id,
                "overall_status": approval.overall_status,
            },
        )
        return approval

    # ── Queries ─────────────────────────────────────────────────────────

    def approvals_query(self, status: str | None = None):
        q = ProjectApproval.query
        if status:
            q = q.filter(ProjectApproval.overall_status == status)
        return q.order_by(ProjectApproval.id)

    def pending_query(self, user):
        """Runs waiting on this user: the current step is bound to their role, or it is step 1 of a project they created."""
        return (
            ProjectApproval.query
            .join(ApprovalStep, ProjectApproval.current_step_id == ApprovalStep.id)
            .join(Project, ProjectApproval.project_id == Project.id)
            .filter(
                or_(
                    ApprovalStep.role_id == user.default_role_id,
                    and_(ApprovalStep.step_order == 1, Project.created_by == user.id),
                ),
                ProjectApproval.overall_status.in_(IN_PROGRESS_STATUSES),
            )
            .order_by(ProjectApproval.id)
        )

    def pending_for_user(self, user) -> list[ProjectApproval]:
        return self.pending_query(user).all()

    def approved_query(self):
        return (
            ProjectApproval.query
            .filter(ProjectApproval.overall_status.in_(APPROVED_STATUSES + (STATUS_COMPLETED,)))
            .order_by(ProjectApproval.id)
        )

    def list_approved(self) -> list[ProjectApproval]:
        return self.approved_query().all()

    def rejected_query(self):
        return self.approvals_query(STATUS_REJECTED)

    def list_rejected(self) -> list[ProjectApproval]:
        return self.rejected_query().all()

    def list_approvals(self, status: str | None = None) -> list[ProjectApproval]:
        return self.approvals_query(status).all()

    def history(self, approval_id: int) -> list[ApprovalStepRecord]:
        """Step records of the run, most recently reviewed first."""
        self.get(approval_id)
        return list(db.session.execute(
            select(ApprovalStepRecord)
            .where(ApprovalStepRecord.project_approval_id == approval_id)
            .order_by(ApprovalStepRecord.reviewed_at.desc(), ApprovalStepRecord.id.desc())
        ).scalars())

    def latest_completable_for_project(self, project_id: int) -> ProjectApproval | None:
        return db.session.execute(
            select(ProjectApproval)
            .where(
                ProjectApproval.project_id == project_id,
                ProjectApproval.overall_status.in_(APPROVED_STATUSES),
            )
            .order_by(ProjectApproval.id.desc())
            .limit(1)
        ).scalar_one_or_none()
