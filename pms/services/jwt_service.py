"""
Bearer token handling for the approval API.

Users sign in through the organisation's identity provider; this service
only needs to trust the tokens it hands back. Claims carried:

    sub      user id (string, PyJWT rejects integers)
    role_id  default role at issue time, informational only
    iss      JWT_ISSUER, checked on decode
    iat/exp  lifetime from JWT_ACCESS_EXPIRES seconds

Authorisation never trusts ``role_id``: approval checks always reload the
user's current role from the database.
"""

from datetime import timedelta

import jwt
from flask import current_app

from pms.utils.clock import SystemClock

ALGORITHM = "HS256"


def _signing_key() -> str:
    cfg = current_app.config
    return cfg.get("JWT_SECRET_KEY") or cfg["SECRET_KEY"]


def _issuer() -> str:
    return current_app.config.get("JWT_ISSUER", "pms")


def issue_token(user, clock=None) -> str:
    """Sign a token for ``user`` (a ``User`` row)."""
    issued = (clock or SystemClock()).now()
    lifetime = timedelta(seconds=current_app.config.get("JWT_ACCESS_EXPIRES", 900))
    claims = {
        "sub": str(user.id),
        "iss": _issuer(),
        "iat": issued,
        "exp": issued + lifetime,
    }
    if user.default_role_id is not None:
        claims["role_id"] = user.default_role_id
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def read_token(token: str) -> dict:
    """Verify signature, expiry and issuer; return the claims.

    Raises ``jwt.InvalidTokenError`` subclasses on any failure.
    """
    return jwt.decode(
        token,
        _signing_key(),
        algorithms=[ALGORITHM],
        issuer=_issuer(),
        options={"require": ["sub", "exp"]},
    )
