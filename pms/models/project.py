"""Project domain model plus stage/status history."""

from datetime import datetime, timezone

from pms.models import db


class Project(db.Model):
    """A proposed or running project moving through the lifecycle stages."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    project_code = db.Column(db.String(50), unique=True, nullable=False)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    project_type_id = db.Column(db.Integer, db.ForeignKey("project_types.id"), nullable=True, index=True)
    industry_id = db.Column(db.Integer, db.ForeignKey("industries.id"), nullable=True)
    sector_id = db.Column(db.Integer, db.ForeignKey("sectors.id"), nullable=True)

    # ── Financials ──
    estimated_cost = db.Column(db.Numeric(15, 2), nullable=True)
    actual_cost = db.Column(db.Numeric(15, 2), nullable=True)
    currency = db.Column(db.String(3), nullable=True, default="PHP")

    # ── Lifecycle ──
    current_stage_id = db.Column(
        db.Integer, db.ForeignKey("project_stages.id"), nullable=False, index=True,
    )
    status_id = db.Column(
        db.Integer, db.ForeignKey("project_statuses.id"), nullable=False, index=True,
    )

    proposal_date = db.Column(db.Date, nullable=True)
    start_date = db.Column(db.Date, nullable=True)
    target_completion_date = db.Column(db.Date, nullable=True)
    actual_completion_date = db.Column(db.Date, nullable=True)

    # ── Location ──
    location_address = db.Column(db.Text, nullable=True)
    location_lat = db.Column(db.Numeric(10, 8), nullable=True)
    location_lng = db.Column(db.Numeric(11, 8), nullable=True)

    # ── People ──
    project_officer_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    workgroup_head_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    proponent_name = db.Column(db.String(255), nullable=True)
    proponent_contact = db.Column(db.String(255), nullable=True)
    proponent_email = db.Column(db.String(255), nullable=True)

    is_archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    current_stage = db.relationship("ProjectStage", foreign_keys=[current_stage_id])
    status = db.relationship("ProjectStatus", foreign_keys=[status_id])
    creator = db.relationship("User", foreign_keys=[created_by])
    stage_history = db.relationship(
        "ProjectStageHistory", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    status_history = db.relationship(
        "ProjectStatusHistory", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        """Serialize core project fields for API responses."""
        return {
            "id": self.id,
            "project_code": self.project_code,
            "title": self.title,
            "description": self.description,
            "project_type_id": self.project_type_id,
            "industry_id": self.industry_id,
            "sector_id": self.sector_id,
            "estimated_cost": float(self.estimated_cost) if self.estimated_cost is not None else None,
            "actual_cost": float(self.actual_cost) if self.actual_cost is not None else None,
            "currency": self.currency,
            "current_stage_id": self.current_stage_id,
            "current_stage": self.current_stage.name if self.current_stage else None,
            "status_id": self.status_id,
            "status": self.status.name if self.status else None,
            "proposal_date": self.proposal_date.isoformat() if self.proposal_date else None,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "target_completion_date": (
                self.target_completion_date.isoformat() if self.target_completion_date else None
            ),
            "actual_completion_date": (
                self.actual_completion_date.isoformat() if self.actual_completion_date else None
            ),
            "location_address": self.location_address,
            "location_lat": float(self.location_lat) if self.location_lat is not None else None,
            "location_lng": float(self.location_lng) if self.location_lng is not None else None,
            "project_officer_id": self.project_officer_id,
            "workgroup_head_id": self.workgroup_head_id,
            "proponent_name": self.proponent_name,
            "proponent_contact": self.proponent_contact,
            "proponent_email": self.proponent_email,
            "is_archived": self.is_archived,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.project_code}>"


class ProjectStageHistory(db.Model):
    """One row per stage change (from, to, who, why). Creation has from=None."""

    __tablename__ = "project_stage_history"
    __table_args__ = (
        db.Index("ix_stage_history_project_changed", "project_id", "changed_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    from_stage_id = db.Column(db.Integer, db.ForeignKey("project_stages.id"), nullable=True)
    to_stage_id = db.Column(db.Integer, db.ForeignKey("project_stages.id"), nullable=False)
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    change_reason = db.Column(db.Text, nullable=True)
    changed_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    from_stage = db.relationship("ProjectStage", foreign_keys=[from_stage_id])
    to_stage = db.relationship("ProjectStage", foreign_keys=[to_stage_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "from_stage_id": self.from_stage_id,
            "from_stage": self.from_stage.name if self.from_stage else None,
            "to_stage_id": self.to_stage_id,
            "to_stage": self.to_stage.name if self.to_stage else None,
            "changed_by": self.changed_by,
            "change_reason": self.change_reason,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
        }


class ProjectStatusHistory(db.Model):
    __tablename__ = "project_status_history"
    __table_args__ = (
        db.Index("ix_status_history_project_changed", "project_id", "changed_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    from_status_id = db.Column(db.Integer, db.ForeignKey("project_statuses.id"), nullable=True)
    to_status_id = db.Column(db.Integer, db.ForeignKey("project_statuses.id"), nullable=False)
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    change_reason = db.Column(db.Text, nullable=True)
    changed_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    from_status = db.relationship("ProjectStatus", foreign_keys=[from_status_id])
    to_status = db.relationship("ProjectStatus", foreign_keys=[to_status_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "from_status_id": self.from_status_id,
            "from_status": self.from_status.name if self.from_status else None,
            "to_status_id": self.to_status_id,
            "to_status": self.to_status.name if self.to_status else None,
            "changed_by": self.changed_by,
            "change_reason": self.change_reason,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
        }


MEMBER_ASSIGNMENT_TYPES = ("member", "owner", "collaborator", "observer")


class ProjectMember(db.Model):
    """Per-project access grant. ``removed_at`` set means the grant is revoked."""

    __tablename__ = "project_members"
    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", name="uq_project_member_user"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=True, index=True)
    assignment_type = db.Column(db.String(50), nullable=False, default="member")

    can_view = db.Column(db.Boolean, nullable=False, default=True)
    can_edit = db.Column(db.Boolean, nullable=False, default=False)
    can_delete = db.Column(db.Boolean, nullable=False, default=False)
    can_approve = db.Column(db.Boolean, nullable=False, default=False)
    can_manage_members = db.Column(db.Boolean, nullable=False, default=False)

    assigned_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    assigned_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    removed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", foreign_keys=[user_id])
    role = db.relationship("Role", foreign_keys=[role_id])

    @property
    def is_active(self) -> bool:
        return self.removed_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "user_name": self.user.full_name if self.user else None,
            "role_id": self.role_id,
            "role": self.role.name if self.role else None,
            "assignment_type": self.assignment_type,
            "can_view": self.can_view,
            "can_edit": self.can_edit,
            "can_delete": self.can_delete,
            "can_approve": self.can_approve,
            "can_manage_members": self.can_manage_members,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "removed_at": self.removed_at.isoformat() if self.removed_at else None,
        }
