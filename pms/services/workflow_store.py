"""
Workflow Definition Store — read-only lookup of approval workflow templates.

Resolution order for ``resolve_workflow_for(project_type_id)``:
    1. the active workflow named DEFAULT_APPROVAL_WORKFLOW_NAME
    2. the active workflow scoped to the project type, else an active
       unscoped (project_type_id IS NULL) one
    3. None

Steps are always read ordered by step_order; "next step" means the step
with the smallest step_order strictly greater than the given one, so
sparse orders (1, 2, 5) work. Nothing is cached.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import or_, select

from pms.models import db
from pms.models.approval import ApprovalStep, ApprovalWorkflow
from pms.workflow_config import DEFAULT_APPROVAL_WORKFLOW_NAME

logger = logging.getLogger(__name__)


class WorkflowDefinitionStore:
    def __init__(self, default_workflow_name: str = DEFAULT_APPROVAL_WORKFLOW_NAME):
        self.default_workflow_name = default_workflow_name

    @classmethod
    def from_config(cls, config=None) -> "WorkflowDefinitionStore":
        config = config if config is not None else current_app.config
        return cls(config.get("DEFAULT_APPROVAL_WORKFLOW_NAME", DEFAULT_APPROVAL_WORKFLOW_NAME))

    def resolve_workflow_for(self, project_type_id: int | None) -> ApprovalWorkflow | None:
        """Pick the workflow a new project of this type runs through."""
        default = db.session.execute(
            select(ApprovalWorkflow)
            .where(
                ApprovalWorkflow.name == self.default_workflow_name,
                ApprovalWorkflow.is_active.is_(True),
            )
            .order_by(ApprovalWorkflow.id)
            .limit(1)
        ).scalar_one_or_none()
        if default is not None:
            return default

        if project_type_id is None:
            scope = ApprovalWorkflow.project_type_id.is_(None)
        else:
            scope = or_(
                ApprovalWorkflow.project_type_id == project_type_id,
                ApprovalWorkflow.project_type_id.is_(None),
            )
        return db.session.execute(
            select(ApprovalWorkflow)
            .where(ApprovalWorkflow.is_active.is_(True), scope)
            # type-specific match before the catch-all
            .order_by(ApprovalWorkflow.project_type_id.is_(None), ApprovalWorkflow.id)
            .limit(1)
        ).scalar_one_or_none()

    def list_steps(self, workflow: ApprovalWorkflow | int) -> list[ApprovalStep]:
        workflow_id = workflow if isinstance(workflow, int) else workflow.id
        return list(db.session.execute(
            select(ApprovalStep)
            .where(ApprovalStep.workflow_id == workflow_id)
            .order_by(ApprovalStep.step_order)
        ).scalars())

    def first_step(self, workflow: ApprovalWorkflow | int) -> ApprovalStep | None:
        steps = self.list_steps(workflow)
        return steps[0] if steps else None

    def next_step_after(self, workflow: ApprovalWorkflow | int, step_order: int) -> ApprovalStep | None:
        workflow_id = workflow if isinstance(workflow, int) else workflow.id
        return db.session.execute(
            select(ApprovalStep)
            .where(
                ApprovalStep.workflow_id == workflow_id,
                ApprovalStep.step_order > step_order,
            )
            .order_by(ApprovalStep.step_order)
            .limit(1)
        ).scalar_one_or_none()
