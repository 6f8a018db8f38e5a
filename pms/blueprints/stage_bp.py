"""
Stage Blueprint — the configured lifecycle stage flow.

Routes:
  GET    /stages            – canonical flow with required fields and stage row ids
  POST   /stages/validate   – dry-run a stage move, returns every violation
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify
from sqlalchemy import select

from pms.blueprints import json_object, register_error_handlers
from pms.core.exceptions import FieldViolation, ValidationError
from pms.models import db
from pms.models.lookup import ProjectStage
from pms.services.stage_policy import StageFlowPolicy

logger = logging.getLogger(__name__)

stage_bp = Blueprint("stage", __name__, url_prefix="/api/v1")
register_error_handlers(stage_bp)


@stage_bp.route("/stages", methods=["GET"])
def list_stages():
    policy = StageFlowPolicy.from_config()
    rows = {
        s.name: s
        for s in db.session.execute(select(ProjectStage)).scalars()
    }
    stages = []
    for entry in policy.describe():
        row = rows.get(entry["name"])
        entry["id"] = row.id if row else None
        entry["is_active"] = bool(row and row.is_active)
        stages.append(entry)
    return jsonify(stages)


@stage_bp.route("/stages/validate", methods=["POST"])
def validate_move():
    """Check a stage move without writing anything.

    Body: { from_stage, to_stage?, values: {field: value}, stage_change_reason? }
    Stage names are the configured flow names.
    """
    data = json_object()
    policy = StageFlowPolicy.from_config()
    from_stage = data.get("from_stage")
    to_stage = data.get("to_stage") or None

    unknown = []
    if not policy.contains(from_stage):
        unknown.append(FieldViolation("from_stage", "The from stage is not a configured stage."))
    if to_stage is not None and not policy.contains(to_stage):
        unknown.append(FieldViolation("to_stage", "The to stage is not a configured stage."))
    values = data.get("values")
    if values is None:
        values = {}
    elif not isinstance(values, dict):
        unknown.append(FieldViolation("values", "The values field must be an object."))
    if unknown:
        raise ValidationError.from_violations(unknown)

    reason = data.get("stage_change_reason")
    has_reason = isinstance(reason, str) and bool(reason.strip())
    violations = policy.validate_stage_move(
        from_stage, to_stage, values, has_reason=has_reason,
    )
    return jsonify({
        "valid": not violations,
        "violations": [v.to_dict() for v in violations],
    })
