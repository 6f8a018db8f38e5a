"""
Stage Flow Policy — configuration-driven linear lifecycle stage rules.

Answers three questions without touching the database session:
    - is stage A → stage B a legal move (exactly one hop forward, or no move)
    - which fields required by a stage are missing from the candidate values
    - does the move need a change reason (any actual stage change does)

Stages are identified by NAME. Their canonical order is the configured
PROJECT_STAGE_FLOW list; stored ids and sequence_order are never used for
ordering. A name outside the flow is a ConfigurationError, never a
silently-allowed move.

All checks return FieldViolation lists; the coordinator aggregates them
into a single ValidationError so a client sees every problem at once.

Usage:
    policy = StageFlowPolicy.from_config()
    violations = policy.validate_stage_move("Proposal", "Evaluation",
                                            field_values, has_reason=True)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from flask import current_app

from pms import workflow_config
from pms.core.exceptions import ConfigurationError, FieldViolation

logger = logging.getLogger(__name__)

STAGE_FIELD = "current_stage_id"
REASON_FIELD = "stage_change_reason"

MSG_UNKNOWN_STAGE = "Invalid stage detected in workflow definition."
MSG_REASON_REQUIRED = "Stage change reason is required when moving to the next stage."


def is_missing(value) -> bool:
    """None, "", 0 and "0" count as unset (a foreign key of 0 is no reference)."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == "" or value == "0"
    if isinstance(value, bool):
        return False
    return isinstance(value, int) and value == 0


def merge_candidate_values(
    submitted: Mapping,
    existing: Mapping | object | None,
    fields: Iterable[str],
) -> dict:
    """Layer submitted values over stored ones for the given fields.

    A submitted key wins even when its value is None; an omitted key falls
    back to the stored value, so partial updates only answer for the
    fields they touch. ``existing`` may be a mapping or a model instance.
    """
    merged = {}
    for f in fields:
        if f in submitted:
            merged[f] = submitted[f]
        elif existing is None:
            merged[f] = None
        elif isinstance(existing, Mapping):
            merged[f] = existing.get(f)
        else:
            merged[f] = getattr(existing, f, None)
    return merged


class StageFlowPolicy:
    """Immutable view over the configured stage flow."""

    def __init__(
        self,
        stage_flow: list[str],
        required_fields: Mapping[str, list[str]] | None = None,
        field_labels: Mapping[str, str] | None = None,
        terminal_stages: Iterable[str] | None = None,
    ):
        if not stage_flow:
            raise ConfigurationError("Stage flow must define at least one stage")
        if len(set(stage_flow)) != len(stage_flow):
            raise ConfigurationError("Stage flow contains duplicate stage names")
        self._flow = tuple(stage_flow)
        self._index = {name: i for i, name in enumerate(self._flow)}
        self._required = {k: tuple(v) for k, v in (required_fields or {}).items()}
        self._labels = dict(field_labels or {})
        self._terminal = frozenset(terminal_stages or ())

    @classmethod
    def from_config(cls, config=None) -> "StageFlowPolicy":
        """Build from Flask config keys, falling back to workflow_config defaults."""
        config = config if config is not None else current_app.config
        return cls(
            stage_flow=config.get("PROJECT_STAGE_FLOW", workflow_config.PROJECT_STAGE_FLOW),
            required_fields=config.get(
                "PROJECT_STAGE_REQUIRED_FIELDS", workflow_config.PROJECT_STAGE_REQUIRED_FIELDS,
            ),
            field_labels=config.get("PROJECT_FIELD_LABELS", workflow_config.PROJECT_FIELD_LABELS),
            terminal_stages=config.get(
                "PROJECT_TERMINAL_STAGES", workflow_config.PROJECT_TERMINAL_STAGES,
            ),
        )

    # ── Flow queries ────────────────────────────────────────────────────

    @property
    def stages(self) -> tuple[str, ...]:
        return self._flow

    def first_stage(self) -> str:
        return self._flow[0]

    def contains(self, stage_name: str | None) -> bool:
        return isinstance(stage_name, str) and stage_name in self._index

    def index_of(self, stage_name: str) -> int:
        try:
            return self._index[stage_name]
        except KeyError:
            raise ConfigurationError(
                f"{MSG_UNKNOWN_STAGE} Stage {stage_name!r} is not part of the configured flow."
            ) from None

    def next_stage(self, stage_name: str) -> str | None:
        i = self.index_of(stage_name) + 1
        return self._flow[i] if i < len(self._flow) else None

    def is_terminal(self, stage_name: str) -> bool:
        return stage_name in self._terminal

    def required_fields_for(self, stage_name: str) -> tuple[str, ...]:
        return self._required.get(stage_name, ())

    def label_for(self, field: str) -> str:
        return self._labels.get(field) or field.replace("_", " ")

    # ── Rules ───────────────────────────────────────────────────────────

    def is_legal_transition(self, from_stage: str, to_stage: str) -> bool:
        """Legal iff ``to`` is exactly one position after ``from`` or the same stage.

        Raises ConfigurationError when either name is outside the flow.
        """
        from_index = self.index_of(from_stage)
        to_index = self.index_of(to_stage)
        if from_index == to_index:
            return True
        return to_index == from_index + 1

    def require_reason_for_advance(self, from_stage: str, to_stage: str, has_reason: bool = False) -> bool:
        """True when a change reason is mandatory for this move.

        ``has_reason`` does not change the answer; it is accepted so call
        sites read the same as validate_stage_move.
        """
        return from_stage != to_stage

    def missing_fields_for(self, stage_name: str, candidate_values: Mapping) -> list[str]:
        """Required fields of the stage whose candidate value counts as unset, in config order."""
        return [
            f for f in self.required_fields_for(stage_name)
            if is_missing(candidate_values.get(f))
        ]

    def missing_field_violations(self, stage_name: str, candidate_values: Mapping) -> list[FieldViolation]:
        return [
            FieldViolation(f, f"The {self.label_for(f)} is required for {stage_name} stage.")
            for f in self.missing_fields_for(stage_name, candidate_values)
        ]

    def validate_initial_stage(self, stage_name: str, field_values: Mapping) -> list[FieldViolation]:
        """Checks for a new project: it starts at the first stage with that stage's fields filled."""
        self.index_of(stage_name)
        violations = []
        first = self.first_stage()
        if stage_name != first:
            violations.append(
                FieldViolation(STAGE_FIELD, f"New projects must start at {first} stage.")
            )
        violations.extend(self.missing_field_violations(stage_name, field_values))
        return violations

    def validate_stage_move(
        self,
        from_stage: str,
        to_stage: str | None,
        field_values: Mapping,
        has_reason: bool,
    ) -> list[FieldViolation]:
        """Every violation for moving ``from_stage`` → ``to_stage``.

        ``to_stage=None`` means the update keeps the current stage; the
        current stage's required fields are still checked. ``field_values``
        should already be merged with stored values (merge_candidate_values).
        """
        target = to_stage if to_stage is not None else from_stage
        violations = []

        if not self.is_legal_transition(from_stage, target):
            allowed = self.next_stage(from_stage) or "N/A"
            violations.append(FieldViolation(
                STAGE_FIELD,
                f"Invalid stage transition. Allowed next stage after {from_stage} is {allowed}.",
            ))

        if self.require_reason_for_advance(from_stage, target, has_reason) and not has_reason:
            violations.append(FieldViolation(REASON_FIELD, MSG_REASON_REQUIRED))

        violations.extend(self.missing_field_violations(target, field_values))
        return violations

    def resolve_active_stage(self, stage) -> str:
        """Name of a stored stage row that may be used as a project stage.

        The row must be active AND its name must be in the configured flow.
        Legacy rows (is_active=False) are rejected even if the name matches.
        """
        if stage is None:
            raise ConfigurationError(MSG_UNKNOWN_STAGE)
        if not getattr(stage, "is_active", True):
            raise ConfigurationError(
                f"Stage {stage.name!r} is inactive and cannot be used in the project flow."
            )
        self.index_of(stage.name)
        return stage.name

    def describe(self) -> list[dict]:
        """The flow as a list of dicts, for the stage catalogue endpoint."""
        out = []
        for i, name in enumerate(self._flow):
            out.append({
                "name": name,
                "position": i + 1,
                "next_stage": self._flow[i + 1] if i + 1 < len(self._flow) else None,
                "is_terminal": name in self._terminal,
                "required_fields": [
                    {"field": f, "label": self.label_for(f)} for f in self.required_fields_for(name)
                ],
            })
        return out
