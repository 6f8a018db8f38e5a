"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — simple 200 for load balancers
    GET /api/v1/health/live   — database round-trip plus reference-data check
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select

from pms.models import db
from pms.models.approval import ApprovalWorkflow
from pms.models.lookup import ProjectStage

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def ready():
    return jsonify({"status": "ok", "app": "Project Management System"}), 200


def _reference_data_check():
    """Seeded stages and an active workflow; missing data is reported, not fatal."""
    flow = current_app.config["PROJECT_STAGE_FLOW"]
    seeded = db.session.scalar(
        select(func.count(ProjectStage.id)).where(
            ProjectStage.name.in_(flow), ProjectStage.is_active.is_(True),
        )
    )
    workflows = db.session.scalar(
        select(func.count(ApprovalWorkflow.id)).where(ApprovalWorkflow.is_active.is_(True))
    )
    complete = seeded == len(flow) and workflows > 0
    return {
        "status": "ok" if complete else "incomplete",
        "stages": f"{seeded}/{len(flow)}",
        "active_workflows": workflows,
    }


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {
            "status": "ok",
            "latency_ms": round((time.perf_counter() - t0) * 1000, 1),
        }
        checks["reference_data"] = _reference_data_check()
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check database failure: %s", exc)

    if checks.get("reference_data", {}).get("status") == "incomplete":
        logger.warning("Reference data incomplete; run flask seed-stages / seed-workflow")

    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), 200 if overall else 503
