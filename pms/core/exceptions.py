"""
Domain exception hierarchy.

Services raise these types; blueprints register handlers against them
once and get consistent HTTP status codes everywhere.

Usage:
    from pms.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ProjectApproval", resource_id=42)
    raise ValidationError("Stage change reason is required ...",
                          violations=[FieldViolation("stage_change_reason", "...")])

Status mapping:
    NotFoundError       404
    ValidationError     422  (every violation in one response)
    AuthorizationError  403  (names the role the step requires)
    ConflictError       409
    StateError          409
    ConfigurationError  500  (stage/workflow configuration inconsistent)
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldViolation:
    """One failed check on one input field."""

    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Project").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Stage/field checks never fail fast: the caller collects every
    FieldViolation and raises once, so ``violations`` is the full list.
    ``details`` maps field → list of messages for API responses.
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        violations: list[FieldViolation] | None = None,
    ) -> None:
        self.violations = list(violations or [])
        if details is None:
            details = {}
            for v in self.violations:
                details.setdefault(v.field, []).append(v.message)
        self.details = details
        super().__init__(message)

    @classmethod
    def from_violations(cls, violations: list[FieldViolation]) -> "ValidationError":
        """Build one error whose message is the first violation's message."""
        message = violations[0].message if violations else "Validation failed"
        return cls(message, violations=violations)


class ConflictError(Exception):
    """Raised when an operation would violate a unique constraint.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class AuthorizationError(Exception):
    """Raised when the acting user may not perform the operation.

    ``required_role_id`` names the role a step requires; None when the
    requirement is "the project proponent" or a permission set.
    """

    def __init__(
        self,
        message: str,
        required_role_id: int | None = None,
        required_role: str | None = None,
    ) -> None:
        self.required_role_id = required_role_id
        self.required_role = required_role
        super().__init__(message)


class StateError(Exception):
    """Raised when the approval run is not in a state that allows the operation."""


class ConfigurationError(Exception):
    """Raised when workflow or stage configuration is inconsistent.

    Never recovered from: a stage name outside the configured flow is a
    deployment problem, not user input.
    """
