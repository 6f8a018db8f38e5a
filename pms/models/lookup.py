"""
Lookup tables referenced by projects: types, industries, sectors,
lifecycle stages and statuses.

ProjectStage.sequence_order is informational only. The canonical stage
order is the configured PROJECT_STAGE_FLOW name list (see stage_policy);
a stage row with is_active=False is a legacy stage and can never be the
target of a project mutation.
"""

from datetime import datetime, timezone

from pms.models import db


class _NamedLookup:
    """Shared columns/serialisation for the simple name+description lookups."""

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}: {self.name}>"


class ProjectType(_NamedLookup, db.Model):
    __tablename__ = "project_types"


class Industry(_NamedLookup, db.Model):
    __tablename__ = "industries"


class Sector(_NamedLookup, db.Model):
    __tablename__ = "sectors"


class ProjectStage(db.Model):
    """Named lifecycle stage (Proposal, Evaluation, ...)."""

    __tablename__ = "project_stages"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    sequence_order = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sequence_order": self.sequence_order,
            "description": self.description,
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return f"<ProjectStage {self.id}: {self.name}>"


class ProjectStatus(db.Model):
    __tablename__ = "project_statuses"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    color_code = db.Column(db.String(7))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "color_code": self.color_code,
            "is_active": self.is_active,
        }
