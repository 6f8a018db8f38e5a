"""
Approval Blueprint — sequential project approval runs.

Routes:
  GET    /approvals?status=                 – list runs (optionally by overall_status)
  GET    /approvals/pending                 – runs waiting on the current user
  GET    /approvals/approved                – approved / conditionally approved / completed runs
  GET    /approvals/rejected                – legacy rejected runs
  GET    /approvals/<aid>                   – one run with its step records
  GET    /approvals/<aid>/history           – step records, most recently reviewed first
  POST   /approvals/<aid>/approve           – decide the current step
  POST   /approvals/<aid>/return            – send the run back to the proponent
  POST   /approvals/<aid>/reject            – same as /return
  POST   /approvals/<aid>/complete          – close an approved run
  POST   /approvals/<aid>/bootstrap         – recompute status from the current step

Every route needs a bearer token. The service layer owns all business
logic and commits; domain errors are mapped by register_error_handlers.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from pms.blueprints import json_object, paginate_query, register_error_handlers, require_user
from pms.services.approval_engine import ApprovalEngine

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approval", __name__, url_prefix="/api/v1")
register_error_handlers(approval_bp)


def _engine() -> ApprovalEngine:
    return ApprovalEngine()


def _page(query):
    items, total = paginate_query(query)
    return jsonify({"items": [a.to_dict() for a in items], "total": total})


# ═════════════════════════════════════════════════════════════════════════════
# LISTINGS
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/approvals", methods=["GET"])
def list_approvals():
    _, err = require_user()
    if err:
        return err
    return _page(_engine().approvals_query(request.args.get("status")))


@approval_bp.route("/approvals/pending", methods=["GET"])
def pending_approvals():
    """Runs whose current step is the user's role, or step 1 of their own project."""
    user, err = require_user()
    if err:
        return err
    return _page(_engine().pending_query(user))


@approval_bp.route("/approvals/approved", methods=["GET"])
def approved_approvals():
    _, err = require_user()
    if err:
        return err
    return _page(_engine().approved_query())


@approval_bp.route("/approvals/rejected", methods=["GET"])
def rejected_approvals():
    _, err = require_user()
    if err:
        return err
    return _page(_engine().rejected_query())


@approval_bp.route("/approvals/<int:aid>", methods=["GET"])
def get_approval(aid):
    _, err = require_user()
    if err:
        return err
    return jsonify(_engine().get(aid).to_dict(include_records=True))


@approval_bp.route("/approvals/<int:aid>/history", methods=["GET"])
def approval_history(aid):
    _, err = require_user()
    if err:
        return err
    return jsonify([r.to_dict() for r in _engine().history(aid)])


# ═════════════════════════════════════════════════════════════════════════════
# DECISIONS
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/approvals/<int:aid>/approve", methods=["POST"])
def approve(aid):
    """Decide the current step.

    Body: { status: "approved" | "approved_with_conditions", comments?, conditions? }
    """
    user, err = require_user()
    if err:
        return err
    data = json_object()
    approval = _engine().approve(
        aid,
        user,
        data.get("status"),
        comments=data.get("comments"),
        conditions=data.get("conditions"),
    )
    return jsonify(approval.to_dict(include_records=True))


@approval_bp.route("/approvals/<int:aid>/return", methods=["POST"])
def return_for_revision(aid):
    """Body: { comments }"""
    user, err = require_user()
    if err:
        return err
    data = json_object()
    approval = _engine().return_for_revision(aid, user, data.get("comments"))
    return jsonify(approval.to_dict(include_records=True))


@approval_bp.route("/approvals/<int:aid>/reject", methods=["POST"])
def reject(aid):
    user, err = require_user()
    if err:
        return err
    data = json_object()
    approval = _engine().reject(aid, user, data.get("comments"))
    return jsonify(approval.to_dict(include_records=True))


@approval_bp.route("/approvals/<int:aid>/complete", methods=["POST"])
def complete(aid):
    user, err = require_user()
    if err:
        return err
    approval = _engine().complete(aid, actor_id=user.id)
    return jsonify(approval.to_dict())


@approval_bp.route("/approvals/<int:aid>/bootstrap", methods=["POST"])
def bootstrap(aid):
    user, err = require_user()
    if err:
        return err
    approval = _engine().bootstrap(aid, actor_id=user.id)
    return jsonify(approval.to_dict())
