"""
Project Management System
Blueprint registry and shared view helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from pms.core.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ConflictError,
    FieldViolation,
    NotFoundError,
    StateError,
    ValidationError,
)
from pms.middleware.jwt_auth import current_user
from pms.models import db
from pms.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def require_user():
    """(user, None) for an authenticated request, else (None, 401 response)."""
    user = current_user()
    if user is None:
        return None, api_error(E.UNAUTHORIZED, "Authentication required")
    return user, None


def json_object() -> dict:
    """Request body as a dict. No body gives {}; a non-object body is a 422."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError.from_violations(
            [FieldViolation("body", "The request body must be a JSON object.")]
        )
    return data


def register_error_handlers(bp):
    """Map domain exceptions raised by services to JSON error responses.

    Every handler rolls the session back first so a failed request never
    leaves a half-written transaction behind.
    """

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        db.session.rollback()
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        db.session.rollback()
        details = {
            "errors": error.details,
            "violations": [v.to_dict() for v in error.violations],
        }
        return api_error(E.VALIDATION_INVALID, str(error), details=details)

    @bp.errorhandler(AuthorizationError)
    def _handle_forbidden(error: AuthorizationError):
        db.session.rollback()
        details = None
        if error.required_role_id is not None or error.required_role:
            details = {
                "required_role_id": error.required_role_id,
                "required_role": error.required_role,
            }
        return api_error(E.FORBIDDEN, str(error), details=details)

    @bp.errorhandler(StateError)
    def _handle_state(error: StateError):
        db.session.rollback()
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(ConfigurationError)
    def _handle_configuration(error: ConfigurationError):
        db.session.rollback()
        logger.error("Configuration error in %s endpoint=%s: %s", bp.name, request.endpoint, error)
        return api_error(E.CONFIGURATION, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
