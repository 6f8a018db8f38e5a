"""
Reference-data seeding: lifecycle stages, project statuses, and the
default sequential approval workflow with its roles.

Each function is idempotent (insert-or-update keyed by name) and only
flushes; the CLI command or test fixture commits.

Usage:
    flask seed-stages
    flask seed-workflow
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import select, update

from pms import workflow_config
from pms.models import db
from pms.models.approval import ApprovalStep, ApprovalWorkflow
from pms.models.auth import Role
from pms.models.lookup import ProjectStage, ProjectStatus
from pms.models.project import Project, ProjectStageHistory

logger = logging.getLogger(__name__)

LEGACY_SEQUENCE_ORDER = 999

_ROLE_DESCRIPTIONS = {
    "Proponent": "Project proponent / originator",
    "Project Officer": "Manages assigned projects",
    "Workgroup Head": "Heads a workgroup",
    "ManCom": "Management Committee member",
    "Board": "Board member",
}


def _by_name(model, name):
    return db.session.execute(select(model).where(model.name == name)).scalar_one_or_none()


def seed_stages(stage_flow: list[str] | None = None) -> int:
    """Upsert the canonical stages and retire legacy ones.

    Projects and history rows still pointing at the legacy combined
    "Construction Operation" stage are moved to "Construction".
    Returns the number of stages created.
    """
    flow = stage_flow or current_app.config.get("PROJECT_STAGE_FLOW", workflow_config.PROJECT_STAGE_FLOW)
    created = 0
    for order, name in enumerate(flow, start=1):
        stage = _by_name(ProjectStage, name)
        if stage is None:
            stage = ProjectStage(name=name)
            db.session.add(stage)
            created += 1
        stage.sequence_order = order
        stage.description = f"Project {name.lower()} stage"
        stage.is_active = True
    db.session.flush()

    for legacy_name, description in workflow_config.LEGACY_STAGES.items():
        legacy = _by_name(ProjectStage, legacy_name)
        if legacy is None:
            continue
        replacement = _by_name(ProjectStage, "Construction")
        if replacement is not None:
            db.session.execute(
                update(Project)
                .where(Project.current_stage_id == legacy.id)
                .values(current_stage_id=replacement.id)
            )
            db.session.execute(
                update(ProjectStageHistory)
                .where(ProjectStageHistory.to_stage_id == legacy.id)
                .values(to_stage_id=replacement.id)
            )
            db.session.execute(
                update(ProjectStageHistory)
                .where(ProjectStageHistory.from_stage_id == legacy.id)
                .values(from_stage_id=replacement.id)
            )
        legacy.is_active = False
        legacy.description = description
        legacy.sequence_order = LEGACY_SEQUENCE_ORDER
        logger.info("Retired legacy stage %s", legacy_name)
    db.session.flush()

    if created:
        logger.info("Seeded %d project stages", created)
    return created


def seed_statuses() -> int:
    created = 0
    for name, color in workflow_config.DEFAULT_PROJECT_STATUSES:
        if _by_name(ProjectStatus, name) is None:
            db.session.add(ProjectStatus(name=name, color_code=color, is_active=True))
            created += 1
    if created:
        db.session.flush()
        logger.info("Seeded %d project statuses", created)
    return created


def seed_default_workflow(name: str | None = None) -> ApprovalWorkflow:
    """Upsert the default sequential workflow and make it the only active one."""
    name = name or current_app.config.get(
        "DEFAULT_APPROVAL_WORKFLOW_NAME", workflow_config.DEFAULT_APPROVAL_WORKFLOW_NAME,
    )

    roles = {}
    for _, role_name, _ in workflow_config.DEFAULT_APPROVAL_STEPS:
        role = _by_name(Role, role_name)
        if role is None:
            role = Role(name=role_name, is_system_role=True)
            db.session.add(role)
        role.description = _ROLE_DESCRIPTIONS.get(role_name, role.description)
        roles[role_name] = role
    db.session.flush()

    workflow = _by_name(ApprovalWorkflow, name)
    if workflow is None:
        workflow = ApprovalWorkflow(name=name)
        db.session.add(workflow)
    workflow.description = "Sequential routing: " + " -> ".join(
        role_name for _, role_name, _ in workflow_config.DEFAULT_APPROVAL_STEPS
    )
    workflow.project_type_id = None
    workflow.is_active = True
    db.session.flush()

    for step_order, role_name, step_name in workflow_config.DEFAULT_APPROVAL_STEPS:
        step = db.session.execute(
            select(ApprovalStep).where(
                ApprovalStep.workflow_id == workflow.id,
                ApprovalStep.step_order == step_order,
            )
        ).scalar_one_or_none()
        if step is None:
            step = ApprovalStep(workflow_id=workflow.id, step_order=step_order)
            db.session.add(step)
        step.role_id = roles[role_name].id
        step.step_name = step_name
        step.is_required = True
        step.can_skip = False

    db.session.execute(
        update(ApprovalWorkflow)
        .where(ApprovalWorkflow.name != name)
        .values(is_active=False)
    )
    db.session.flush()
    logger.info("Seeded approval workflow %r", name)
    return workflow
