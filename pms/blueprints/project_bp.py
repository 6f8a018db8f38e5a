"""
Project Blueprint — project lifecycle (create, edit, stage moves, archive).

Routes:
  GET    /projects                          – projects visible to the caller
  POST   /projects                          – create (starts the approval run)
  GET    /projects/<pid>                    – project detail with its approval run
  PUT    /projects/<pid>                    – update / move to the next stage
  PATCH  /projects/<pid>                    – same as PUT
  GET    /projects/<pid>/timeline           – stage and status history
  POST   /projects/<pid>/archive            – toggle is_archived
  GET    /projects/<pid>/members            – active members
  POST   /projects/<pid>/members            – add or re-grant a member
  DELETE /projects/<pid>/members/<mid>      – revoke a membership

Stage moves: send current_stage_id (and stage_change_reason when it
changes). Only a move to the next configured stage is accepted.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from pms.blueprints import json_object, paginate_query, register_error_handlers, require_user
from pms.models import db
from pms.models.approval import ProjectApproval
from pms.services.project_service import ProjectLifecycleCoordinator
from pms.utils.helpers import parse_int

logger = logging.getLogger(__name__)

project_bp = Blueprint("project", __name__, url_prefix="/api/v1")
register_error_handlers(project_bp)


def _coordinator() -> ProjectLifecycleCoordinator:
    return ProjectLifecycleCoordinator()


def _detail(project) -> dict:
    d = project.to_dict()
    approval = (
        db.session.query(ProjectApproval)
        .filter(ProjectApproval.project_id == project.id)
        .order_by(ProjectApproval.id.desc())
        .first()
    )
    d["approval"] = approval.to_dict() if approval else None
    return d


@project_bp.route("/projects", methods=["GET"])
def list_projects():
    """Query params: include_archived=true, stage_id, limit, offset."""
    user, err = require_user()
    if err:
        return err
    query = _coordinator().projects_query(
        user,
        include_archived=request.args.get("include_archived") == "true",
        stage_id=parse_int(request.args.get("stage_id")),
    )
    items, total = paginate_query(query)
    return jsonify({"items": [p.to_dict() for p in items], "total": total})


@project_bp.route("/projects", methods=["POST"])
def create_project():
    user, err = require_user()
    if err:
        return err
    data = json_object()
    project = _coordinator().create_project(user, data)
    return jsonify(_detail(project)), 201


@project_bp.route("/projects/<int:pid>", methods=["GET"])
def get_project(pid):
    user, err = require_user()
    if err:
        return err
    project = _coordinator().get_for_viewer(pid, user)
    return jsonify(_detail(project))


@project_bp.route("/projects/<int:pid>", methods=["PUT", "PATCH"])
def update_project(pid):
    user, err = require_user()
    if err:
        return err
    data = json_object()
    project = _coordinator().update_project(pid, user, data)
    return jsonify(_detail(project))


@project_bp.route("/projects/<int:pid>/timeline", methods=["GET"])
def project_timeline(pid):
    user, err = require_user()
    if err:
        return err
    return jsonify(_coordinator().timeline(pid, user))


@project_bp.route("/projects/<int:pid>/archive", methods=["POST"])
def toggle_archive(pid):
    user, err = require_user()
    if err:
        return err
    project = _coordinator().toggle_archive(pid, user)
    return jsonify(project.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Members
# ═════════════════════════════════════════════════════════════════════════════

@project_bp.route("/projects/<int:pid>/members", methods=["GET"])
def list_members(pid):
    user, err = require_user()
    if err:
        return err
    return jsonify([m.to_dict() for m in _coordinator().list_members(pid, user)])


@project_bp.route("/projects/<int:pid>/members", methods=["POST"])
def add_member(pid):
    """Body: { user_id, role_id, assignment_type?, can_view?, can_edit?, can_delete?,
    can_approve?, can_manage_members? }"""
    user, err = require_user()
    if err:
        return err
    member = _coordinator().add_member(pid, user, json_object())
    return jsonify(member.to_dict()), 201


@project_bp.route("/projects/<int:pid>/members/<int:member_id>", methods=["DELETE"])
def remove_member(pid, member_id):
    user, err = require_user()
    if err:
        return err
    member = _coordinator().remove_member(pid, member_id, user)
    return jsonify(member.to_dict())
