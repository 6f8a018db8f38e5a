"""
Project Lifecycle Coordinator — project create/update around the stage
policy and the approval engine.

Create:
    creator holds a create permission → stage resolves to an active
    canonical stage equal to the first stage → that stage's required
    fields are filled → persist with a generated code → stage/status
    history "Project created" → audit → initiate the approval run
    (no workflow is fine) → single commit.

Update:
    creator or edit permission → (stage submitted) legal one-hop move,
    reason when the stage changes, required fields of the target stage
    with submitted-over-stored values → persist → history/audit → on a
    terminal stage, complete the latest approved run if there is one.

Access:
    creator, global view/edit permissions, or an active project membership
    (can_view / can_edit). Create adds the creator as the owner member.

Every input problem found is reported together in one ValidationError;
nothing is written until all checks pass.
"""

from __future__ import annotations

import logging
import re

from flask import current_app
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from pms import workflow_config
from pms.core.exceptions import (
    AuthorizationError,
    ConflictError,
    FieldViolation,
    NotFoundError,
    ValidationError,
)
from pms.models import db
from pms.models.audit import write_audit
from pms.models.auth import Role, User
from pms.models.lookup import Industry, ProjectStage, ProjectStatus, ProjectType, Sector
from pms.models.project import (
    MEMBER_ASSIGNMENT_TYPES,
    Project,
    ProjectMember,
    ProjectStageHistory,
    ProjectStatusHistory,
)
from pms.services.approval_engine import ApprovalEngine
from pms.services.authorizer import RoleAuthorizer
from pms.services.stage_policy import (
    REASON_FIELD,
    STAGE_FIELD,
    StageFlowPolicy,
    merge_candidate_values,
)
from pms.utils.clock import SystemClock
from pms.utils.helpers import parse_date, parse_decimal, parse_int

logger = logging.getLogger(__name__)

CREATED_REASON = "Project created"

_REFERENCE_FIELDS = {
    "project_type_id": ProjectType,
    "industry_id": Industry,
    "sector_id": Sector,
    "project_officer_id": User,
    "workgroup_head_id": User,
}
_DATE_FIELDS = ("proposal_date", "start_date", "target_completion_date", "actual_completion_date")
_MONEY_FIELDS = ("estimated_cost", "actual_cost")
_COORDINATE_RANGES = {"location_lat": 90, "location_lng": 180}
_TEXT_FIELDS = {
    "title": 255,
    "description": None,
    "currency": 3,
    "location_address": None,
    "proponent_name": 255,
    "proponent_contact": 255,
    "proponent_email": 255,
}
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

CREATE_FIELDS = (
    "title", "description", "project_type_id", "industry_id", "sector_id",
    "estimated_cost", "currency", "proposal_date", "start_date", "target_completion_date",
    "location_address", "location_lat", "location_lng", "project_officer_id",
    "workgroup_head_id", "proponent_name", "proponent_contact", "proponent_email",
)
UPDATE_FIELDS = CREATE_FIELDS + ("actual_cost", "actual_completion_date", "is_archived")
REASON_MAX_LENGTH = 500

MEMBER_FLAGS = ("can_view", "can_edit", "can_delete", "can_approve", "can_manage_members")
_MEMBER_DEFAULTS = {
    "assignment_type": "member",
    "can_view": True,
    "can_edit": False,
    "can_delete": False,
    "can_approve": False,
    "can_manage_members": False,
}
_BOOL_STRINGS = {"1": True, "true": True, "0": False, "false": False}


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_bool(value):
    """true/false, 1/0 and their string forms; anything else is None."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return {1: True, 0: False}.get(value)
    if isinstance(value, str):
        return _BOOL_STRINGS.get(value.strip().lower())
    return None


class ProjectLifecycleCoordinator:
    def __init__(self, policy=None, engine=None, authorizer=None, clock=None, code_generator=None):
        self.clock = clock if clock is not None else SystemClock()
        self.authorizer = authorizer if authorizer is not None else RoleAuthorizer()
        self.policy = policy if policy is not None else StageFlowPolicy.from_config()
        self.engine = engine if engine is not None else ApprovalEngine(
            authorizer=self.authorizer, clock=self.clock,
        )
        self.code_generator = code_generator or self.generate_project_code

    # ── Permissions ─────────────────────────────────────────────────────

    def can_create(self, user) -> bool:
        return user is not None and self.authorizer.has_any_permission(
            user, workflow_config.PROJECT_CREATE_PERMISSIONS,
        )

    def active_member(self, project: Project, user_id: int) -> ProjectMember | None:
        return db.session.execute(
            select(ProjectMember).where(
                ProjectMember.project_id == project.id,
                ProjectMember.user_id == user_id,
                ProjectMember.removed_at.is_(None),
            )
        ).scalar_one_or_none()

    def can_edit(self, user, project: Project) -> bool:
        if user is None:
            return False
        if project.created_by == user.id:
            return True
        if self.authorizer.has_any_permission(user, workflow_config.PROJECT_EDIT_PERMISSIONS):
            return True
        member = self.active_member(project, user.id)
        return bool(member and member.can_edit)

    def can_view(self, user, project: Project) -> bool:
        if user is None:
            return False
        if self.authorizer.has_any_permission(user, workflow_config.PROJECT_VIEW_PERMISSIONS):
            return True
        if self.can_edit(user, project):
            return True
        member = self.active_member(project, user.id)
        return bool(member and member.can_view)

    def can_manage_members(self, user, project: Project) -> bool:
        if user is None:
            return False
        if self.authorizer.has_any_permission(user, workflow_config.PROJECT_MEMBER_MANAGE_PERMISSIONS):
            return True
        if self.can_edit(user, project):
            return True
        member = self.active_member(project, user.id)
        return bool(member and member.can_manage_members)

    # ── Input coercion ──────────────────────────────────────────────────

    def _coerce(self, data: dict, allowed: tuple, violations: list) -> dict:
        """Parse the submitted subset of ``allowed`` into column values.

        Format problems become violations. Unset references (None/0) are
        stored as None; whether they are required is the stage policy's call.
        """
        values = {}
        for field in allowed:
            if field not in data:
                continue
            raw = data[field]

            if field in _REFERENCE_FIELDS:
                if _blank(raw) or raw in (0, "0"):
                    values[field] = None
                    continue
                ref_id = parse_int(raw)
                if ref_id is None or db.session.get(_REFERENCE_FIELDS[field], ref_id) is None:
                    violations.append(FieldViolation(field, f"The selected {field.replace('_', ' ')} is invalid."))
                    continue
                values[field] = ref_id

            elif field in _DATE_FIELDS:
                parsed = parse_date(raw)
                if parsed is None and not _blank(raw):
                    violations.append(FieldViolation(field, f"The {field.replace('_', ' ')} is not a valid date."))
                    continue
                values[field] = parsed

            elif field in _MONEY_FIELDS:
                amount = parse_decimal(raw)
                if amount is None and not _blank(raw):
                    violations.append(FieldViolation(field, f"The {field.replace('_', ' ')} must be a number."))
                    continue
                if amount is not None and amount < 0:
                    violations.append(FieldViolation(field, f"The {field.replace('_', ' ')} must be at least 0."))
                    continue
                values[field] = amount

            elif field in _COORDINATE_RANGES:
                coord = parse_decimal(raw)
                bound = _COORDINATE_RANGES[field]
                if coord is None and not _blank(raw):
                    violations.append(FieldViolation(field, f"The {field.replace('_', ' ')} must be a number."))
                    continue
                if coord is not None and not (-bound <= coord <= bound):
                    violations.append(FieldViolation(
                        field, f"The {field.replace('_', ' ')} must be between -{bound} and {bound}.",
                    ))
                    continue
                values[field] = coord

            elif field == "is_archived":
                flag = parse_bool(raw)
                if flag is None:
                    violations.append(FieldViolation(field, "The is archived field must be true or false."))
                    continue
                values[field] = flag

            else:
                text = None if raw is None else str(raw).strip()
                max_len = _TEXT_FIELDS.get(field)
                if text and max_len and len(text) > max_len:
                    violations.append(FieldViolation(
                        field, f"The {field.replace('_', ' ')} may not be greater than {max_len} characters.",
                    ))
                    continue
                if field == "currency" and text and len(text) != 3:
                    violations.append(FieldViolation(field, "The currency must be 3 characters."))
                    continue
                if field == "proponent_email" and text and not _EMAIL_RE.match(text):
                    violations.append(FieldViolation(field, "The proponent email must be a valid email address."))
                    continue
                values[field] = text.upper() if field == "currency" and text else (text or None)

        reason = data.get(REASON_FIELD)
        if reason is not None:
            if not isinstance(reason, str):
                violations.append(FieldViolation(REASON_FIELD, "The stage change reason must be a string."))
            elif len(reason) > REASON_MAX_LENGTH:
                violations.append(FieldViolation(
                    REASON_FIELD,
                    f"The stage change reason may not be greater than {REASON_MAX_LENGTH} characters.",
                ))
        return values

    def _lookup_stage(self, raw, violations: list) -> ProjectStage | None:
        stage_id = parse_int(raw)
        stage = db.session.get(ProjectStage, stage_id) if stage_id else None
        if stage is None:
            violations.append(FieldViolation(STAGE_FIELD, "The selected current stage id is invalid."))
        return stage

    def _lookup_status(self, raw, violations: list) -> ProjectStatus | None:
        status_id = parse_int(raw)
        status = db.session.get(ProjectStatus, status_id) if status_id else None
        if status is None:
            violations.append(FieldViolation("status_id", "The selected status id is invalid."))
        return status

    def _default_status(self) -> ProjectStatus | None:
        return db.session.execute(
            select(ProjectStatus).where(ProjectStatus.name == workflow_config.DEFAULT_PROJECT_STATUS)
        ).scalar_one_or_none()

    # ── Project code ────────────────────────────────────────────────────

    def generate_project_code(self) -> str:
        """``{PREFIX}-{YEAR}-{NNN}``: one past the highest number used this year."""
        prefix = current_app.config.get("PROJECT_CODE_PREFIX", "BDG")
        year = self.clock.now().year
        stem = f"{prefix}-{year}-"
        codes = db.session.execute(
            select(Project.project_code).where(Project.project_code.like(f"{stem}%"))
        ).scalars()
        highest = 0
        for code in codes:
            number = parse_int(code.rsplit("-", 1)[-1])
            if number is not None and number > highest:
                highest = number
        return f"{stem}{highest + 1:03d}"

    def _code_taken(self, code: str) -> bool:
        return db.session.execute(
            select(Project.id).where(Project.project_code == code).limit(1)
        ).first() is not None

    def _insert_with_unique_code(self, build_project) -> Project:
        max_attempts = int(current_app.config.get("PROJECT_CODE_MAX_ATTEMPTS", 3))
        code = None
        for attempt in range(1, max_attempts + 1):
            code = self.code_generator()
            if self._code_taken(code):
                logger.warning("Project code %s already taken (attempt %d/%d)", code, attempt, max_attempts)
                continue
            project = build_project(code)
            db.session.add(project)
            try:
                db.session.flush()
            except IntegrityError:
                # the project row is the first write of this transaction
                db.session.rollback()
                logger.warning("Project code %s collided on insert (attempt %d/%d)", code, attempt, max_attempts)
                continue
            return project
        raise ConflictError(resource="Project", field="project_code", value=code)

    # ── Operations ──────────────────────────────────────────────────────

    def get_project(self, project_id: int) -> Project:
        project = db.session.get(Project, project_id)
        if project is None:
            raise NotFoundError(resource="Project", resource_id=project_id)
        return project

    def get_for_viewer(self, project_id: int, viewer) -> Project:
        project = self.get_project(project_id)
        if not self.can_view(viewer, project):
            raise AuthorizationError("Unauthorized to view this project")
        return project

    def create_project(self, creator, data: dict) -> Project:
        if not self.can_create(creator):
            raise AuthorizationError("Unauthorized to create projects")

        violations = []
        values = self._coerce(data, CREATE_FIELDS, violations)
        if _blank(data.get("title")):
            violations.append(FieldViolation("title", "Project title is required."))

        stage = None
        if _blank(data.get(STAGE_FIELD)):
            violations.append(FieldViolation(STAGE_FIELD, "The current stage id field is required."))
        else:
            stage = self._lookup_stage(data.get(STAGE_FIELD), violations)

        if _blank(data.get("status_id")):
            status = self._default_status()
            if status is None:
                violations.append(FieldViolation("status_id", "The status id field is required."))
        else:
            status = self._lookup_status(data.get("status_id"), violations)

        start, target = values.get("start_date"), values.get("target_completion_date")
        if start and target and target < start:
            violations.append(FieldViolation(
                "target_completion_date",
                "Target completion date must be on or after the start date.",
            ))

        if stage is not None:
            stage_name = self.policy.resolve_active_stage(stage)
            violations.extend(self.policy.validate_initial_stage(stage_name, data))

        if violations:
            raise ValidationError.from_violations(violations)

        now = self.clock.now()

        def build(code):
            return Project(
                project_code=code,
                created_by=creator.id,
                current_stage_id=stage.id,
                status_id=status.id,
                created_at=now,
                updated_at=now,
                **values,
            )

        project = self._insert_with_unique_code(build)

        db.session.add(ProjectStageHistory(
            project_id=project.id, from_stage_id=None, to_stage_id=stage.id,
            changed_by=creator.id, change_reason=CREATED_REASON, changed_at=now,
        ))
        db.session.add(ProjectStatusHistory(
            project_id=project.id, from_status_id=None, to_status_id=status.id,
            changed_by=creator.id, change_reason=CREATED_REASON, changed_at=now,
        ))
        db.session.add(ProjectMember(
            project_id=project.id,
            user_id=creator.id,
            role_id=creator.default_role_id,
            assignment_type="owner",
            can_view=True,
            can_edit=True,
            can_delete=True,
            can_approve=True,
            can_manage_members=True,
            assigned_by=creator.id,
            assigned_at=now,
        ))
        write_audit(
            entity_type="project",
            entity_id=project.id,
            action="project.create",
            project_id=project.id,
            actor_user_id=creator.id,
            diff={"project_code": project.project_code, "stage": stage.name, "status": status.name},
            timestamp=now,
        )

        approval = self.engine.initiate(project.id, project.project_type_id, creator.id, commit=False)
        db.session.commit()

        logger.info(
            "Project created",
            extra={
                "project_id": project.id,
                "user_id": creator.id,
                "stage": stage.name,
                "approval_id": approval.id if approval else None,
            },
        )
        return project

    def update_project(self, project_id: int, editor, data: dict) -> Project:
        project = self.get_project(project_id)
        if not self.can_edit(editor, project):
            raise AuthorizationError("Unauthorized to edit this project")

        violations = []
        values = self._coerce(data, UPDATE_FIELDS, violations)
        if "title" in data and _blank(data.get("title")):
            violations.append(FieldViolation("title", "Project title is required."))

        current_stage = db.session.get(ProjectStage, project.current_stage_id)
        current_name = self.policy.resolve_active_stage(current_stage)

        stage_submitted = STAGE_FIELD in data
        target_stage = None
        target_name = None
        if stage_submitted:
            target_stage = self._lookup_stage(data.get(STAGE_FIELD), violations)
            if target_stage is not None:
                target_name = self.policy.resolve_active_stage(target_stage)

        new_status = None
        if "status_id" in data:
            new_status = self._lookup_status(data.get("status_id"), violations)

        if not stage_submitted or target_name is not None:
            check_stage = target_name or current_name
            candidate = merge_candidate_values(
                data, project, self.policy.required_fields_for(check_stage),
            )
            violations.extend(self.policy.validate_stage_move(
                current_name,
                target_name,
                candidate,
                has_reason=not _blank(data.get(REASON_FIELD)),
            ))

        if violations:
            raise ValidationError.from_violations(violations)

        now = self.clock.now()
        changes = {}
        for field, value in values.items():
            old = getattr(project, field)
            if old != value:
                changes[field] = {"old": old, "new": value}
                setattr(project, field, value)

        stage_changed = target_stage is not None and target_stage.id != project.current_stage_id
        if stage_changed:
            db.session.add(ProjectStageHistory(
                project_id=project.id,
                from_stage_id=project.current_stage_id,
                to_stage_id=target_stage.id,
                changed_by=editor.id,
                change_reason=data.get(REASON_FIELD),
                changed_at=now,
            ))
            changes["current_stage"] = {"old": current_name, "new": target_name}
            project.current_stage_id = target_stage.id

        if new_status is not None and new_status.id != project.status_id:
            db.session.add(ProjectStatusHistory(
                project_id=project.id,
                from_status_id=project.status_id,
                to_status_id=new_status.id,
                changed_by=editor.id,
                change_reason=data.get("status_change_reason"),
                changed_at=now,
            ))
            changes["status_id"] = {"old": project.status_id, "new": new_status.id}
            project.status_id = new_status.id

        if changes:
            project.updated_at = now
            write_audit(
                entity_type="project",
                entity_id=project.id,
                action="project.stage_change" if stage_changed else "project.update",
                project_id=project.id,
                actor_user_id=editor.id,
                diff=changes,
                timestamp=now,
            )

        completed = None
        if target_name is not None and self.policy.is_terminal(target_name):
            approval = self.engine.latest_completable_for_project(project.id)
            if approval is not None:
                completed = self.engine.complete(approval.id, actor_id=editor.id, commit=False)

        db.session.commit()

        logger.info(
            "Project updated",
            extra={
                "project_id": project.id,
                "user_id": editor.id,
                "stage": target_name or current_name,
                "approval_id": completed.id if completed else None,
            },
        )
        return project

    def toggle_archive(self, project_id: int, editor) -> Project:
        project = self.get_project(project_id)
        if not self.can_edit(editor, project):
            raise AuthorizationError("Unauthorized to archive this project")
        project.is_archived = not project.is_archived
        project.updated_at = self.clock.now()
        write_audit(
            entity_type="project",
            entity_id=project.id,
            action="project.archive",
            project_id=project.id,
            actor_user_id=editor.id,
            diff={"is_archived": {"old": not project.is_archived, "new": project.is_archived}},
            timestamp=project.updated_at,
        )
        db.session.commit()
        logger.info(
            "Project %s", "archived" if project.is_archived else "unarchived",
            extra={"project_id": project.id, "user_id": editor.id},
        )
        return project

    # ── Members ─────────────────────────────────────────────────────────

    def list_members(self, project_id: int, viewer) -> list[ProjectMember]:
        project = self.get_for_viewer(project_id, viewer)
        return db.session.execute(
            select(ProjectMember)
            .where(ProjectMember.project_id == project.id, ProjectMember.removed_at.is_(None))
            .order_by(ProjectMember.assigned_at, ProjectMember.id)
        ).scalars().all()

    def add_member(self, project_id: int, actor, data: dict) -> ProjectMember:
        """Grant (or re-grant) a user access to a project.

        Unset flags default to view-only membership. A removed member is
        reactivated with the new grant.
        """
        project = self.get_project(project_id)
        if not self.can_manage_members(actor, project):
            raise AuthorizationError("Unauthorized to manage project members")

        violations = []
        user_id = parse_int(data.get("user_id"))
        if _blank(data.get("user_id")):
            violations.append(FieldViolation("user_id", "The user id field is required."))
        elif user_id is None or db.session.get(User, user_id) is None:
            violations.append(FieldViolation("user_id", "The selected user id is invalid."))

        role_id = parse_int(data.get("role_id"))
        if _blank(data.get("role_id")):
            violations.append(FieldViolation("role_id", "The role id field is required."))
        elif role_id is None or db.session.get(Role, role_id) is None:
            violations.append(FieldViolation("role_id", "The selected role id is invalid."))

        grant = dict(_MEMBER_DEFAULTS)
        assignment_type = data.get("assignment_type")
        if not _blank(assignment_type):
            if assignment_type not in MEMBER_ASSIGNMENT_TYPES:
                violations.append(FieldViolation("assignment_type", "The selected assignment type is invalid."))
            else:
                grant["assignment_type"] = assignment_type
        for flag in MEMBER_FLAGS:
            if flag not in data:
                continue
            parsed = parse_bool(data[flag])
            if parsed is None:
                violations.append(FieldViolation(
                    flag, f"The {flag.replace('_', ' ')} field must be true or false.",
                ))
                continue
            grant[flag] = parsed

        if violations:
            raise ValidationError.from_violations(violations)

        now = self.clock.now()
        member = db.session.execute(
            select(ProjectMember).where(
                ProjectMember.project_id == project.id, ProjectMember.user_id == user_id,
            )
        ).scalar_one_or_none()
        if member is None:
            member = ProjectMember(project_id=project.id, user_id=user_id)
            db.session.add(member)
        member.role_id = role_id
        for key, value in grant.items():
            setattr(member, key, value)
        member.assigned_by = actor.id
        member.assigned_at = now
        member.removed_at = None
        db.session.flush()

        write_audit(
            entity_type="project",
            entity_id=project.id,
            action="project.member_add",
            project_id=project.id,
            actor_user_id=actor.id,
            diff={"user_id": user_id, "role_id": role_id, **grant},
            timestamp=now,
        )
        db.session.commit()
        logger.info(
            "Project member saved",
            extra={"project_id": project.id, "user_id": actor.id},
        )
        return member

    def remove_member(self, project_id: int, member_id: int, actor) -> ProjectMember:
        project = self.get_project(project_id)
        if not self.can_manage_members(actor, project):
            raise AuthorizationError("Unauthorized to manage project members")
        member = db.session.get(ProjectMember, member_id)
        if member is None or member.project_id != project.id:
            raise NotFoundError(resource="ProjectMember", resource_id=member_id)

        now = self.clock.now()
        member.removed_at = now
        write_audit(
            entity_type="project",
            entity_id=project.id,
            action="project.member_remove",
            project_id=project.id,
            actor_user_id=actor.id,
            diff={"member_id": member.id, "user_id": member.user_id},
            timestamp=now,
        )
        db.session.commit()
        logger.info(
            "Project member removed",
            extra={"project_id": project.id, "user_id": actor.id},
        )
        return member

    def timeline(self, project_id: int, viewer) -> dict:
        """Stage and status history, newest first."""
        project = self.get_for_viewer(project_id, viewer)
        stage_history = db.session.execute(
            select(ProjectStageHistory)
            .where(ProjectStageHistory.project_id == project.id)
            .order_by(ProjectStageHistory.changed_at.desc(), ProjectStageHistory.id.desc())
        ).scalars()
        status_history = db.session.execute(
            select(ProjectStatusHistory)
            .where(ProjectStatusHistory.project_id == project.id)
            .order_by(ProjectStatusHistory.changed_at.desc(), ProjectStatusHistory.id.desc())
        ).scalars()
        return {
            "project_id": project.id,
            "stage_history": [h.to_dict() for h in stage_history],
            "status_history": [h.to_dict() for h in status_history],
        }

    def projects_query(self, viewer, *, include_archived: bool = False, stage_id: int | None = None):
        q = Project.query
        if not self.authorizer.has_any_permission(
            viewer,
            workflow_config.PROJECT_VIEW_PERMISSIONS + workflow_config.PROJECT_EDIT_PERMISSIONS,
        ):
            memberships = select(ProjectMember.project_id).where(
                ProjectMember.user_id == viewer.id,
                ProjectMember.removed_at.is_(None),
                ProjectMember.can_view.is_(True),
            )
            q = q.filter(or_(Project.created_by == viewer.id, Project.id.in_(memberships)))
        if not include_archived:
            q = q.filter(Project.is_archived.is_(False))
        if stage_id:
            q = q.filter(Project.current_stage_id == stage_id)
        return q.order_by(Project.created_at.desc(), Project.id.desc())
