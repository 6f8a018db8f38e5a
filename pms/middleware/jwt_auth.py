"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

    Authorization: Bearer <token>  →  g.jwt_user_id, g.jwt_role_id

The hook never rejects a request by itself. Views that need an actor call
``current_user()`` which resolves the User row or returns None, and the
view answers 401.
"""

import logging

import jwt as pyjwt
from flask import g, request

from pms.models import db
from pms.models.auth import User
from pms.services.jwt_service import read_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_role_id = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = read_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token", extra={"path": path})
            return
        except pyjwt.InvalidTokenError:
            logger.info("Invalid access token", extra={"path": path})
            return

        try:
            g.jwt_user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            return
        g.jwt_role_id = payload.get("role_id")


def current_user() -> User | None:
    """Return the active User behind the bearer token, or None."""
    user_id = getattr(g, "jwt_user_id", None)
    if user_id is None:
        return None
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user
