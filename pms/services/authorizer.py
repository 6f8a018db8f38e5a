"""
Authorization capability checks used by the approval engine and the
project coordinator.

The engine only asks two questions:
    can_act(user, step_role_id)           may this user act on a step bound to that role
    has_any_permission(user_id, names)    does the user hold any of these permission names

RoleAuthorizer answers them from the user's default role and that role's
permissions. Role/permission management itself lives elsewhere; tests can
pass any object with the same two methods.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import select

from pms.models import db
from pms.models.auth import Permission, RolePermission, User

logger = logging.getLogger(__name__)


def _user_id(user) -> int | None:
    return user if isinstance(user, int) or user is None else user.id


class RoleAuthorizer:
    """Default-role based authorizer backed by roles/role_permissions."""

    def can_act(self, user: User, step_role_id: int | None) -> bool:
        if user is None or step_role_id is None:
            return False
        return user.default_role_id is not None and int(user.default_role_id) == int(step_role_id)

    def permissions_for(self, user_id: int) -> set[str]:
        """Permission names granted to the user's default role."""
        user = db.session.get(User, user_id)
        if user is None or user.default_role_id is None:
            return set()
        rows = db.session.execute(
            select(Permission.name)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == user.default_role_id)
        ).scalars()
        return set(rows)

    def has_any_permission(self, user, names: Iterable[str]) -> bool:
        uid = _user_id(user)
        if uid is None:
            return False
        granted = self.permissions_for(uid)
        return any(n in granted for n in names)
