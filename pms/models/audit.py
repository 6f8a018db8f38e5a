"""
Project Management System
Audit domain model.

Models:
    - AuditLog: immutable, append-only trail of lifecycle events.

approval_step_records keeps only the latest decision per step; every
decision is also appended here so repeated decisions are never lost.
"""

import json
from datetime import datetime, timezone

from pms.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {"project", "project_approval"}

AUDIT_ACTIONS = {
    # Project lifecycle
    "project.create",
    "project.update",
    "project.stage_change",
    "project.archive",
    "project.member_add",
    "project.member_remove",
    # Approval run
    "approval.initiate",
    "approval.approve",
    "approval.return",
    "approval.complete",
    "approval.bootstrap",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every lifecycle event.

    One row per action. ``diff_json`` carries an old→new snapshot for
    field-level changes or the decision payload for approval actions.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project", "project_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Polymorphic entity reference
    entity_type = db.Column(db.String(30), nullable=False, comment="project | project_approval")
    entity_id = db.Column(db.String(36), nullable=False)

    action = db.Column(db.String(60), nullable=False, comment="approval.approve | project.update | …")
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    project_id: int | None = None,
    actor_user_id: int | None = None,
    diff: dict | None = None,
    timestamp: datetime | None = None,
) -> AuditLog:
    """Append one audit row and flush; the caller owns the commit.

    Unknown entity types or actions raise ValueError.
    """
    if entity_type not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity type: {entity_type}")
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    log = AuditLog(
        project_id=project_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_user_id=actor_user_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    if timestamp is not None:
        log.timestamp = timestamp
    db.session.add(log)
    db.session.flush()
    return log
