"""
StageFlowPolicy unit tests.

Tests cover:
  - one-hop forward / same-stage legality, backward and skip rejection
  - reason requirement on stage change
  - required-field merge (omitted keeps stored, explicit 0 is missing)
  - initial stage rule
  - active canonical stage resolution (legacy / inactive / unknown)
  - config-driven flows
"""
from types import SimpleNamespace

import pytest

from pms.core.exceptions import ConfigurationError
from pms.services.stage_policy import (
    MSG_REASON_REQUIRED,
    REASON_FIELD,
    STAGE_FIELD,
    StageFlowPolicy,
    is_missing,
    merge_candidate_values,
)
from pms.workflow_config import (
    PROJECT_FIELD_LABELS,
    PROJECT_STAGE_FLOW,
    PROJECT_STAGE_REQUIRED_FIELDS,
    PROJECT_TERMINAL_STAGES,
)


@pytest.fixture()
def policy():
    return StageFlowPolicy(
        PROJECT_STAGE_FLOW,
        PROJECT_STAGE_REQUIRED_FIELDS,
        PROJECT_FIELD_LABELS,
        PROJECT_TERMINAL_STAGES,
    )


def _fields(violations):
    return [v.field for v in violations]


@pytest.mark.unit
class TestTransitions:
    @pytest.mark.parametrize("i", range(len(PROJECT_STAGE_FLOW) - 1))
    def test_next_stage_is_legal(self, policy, i):
        assert policy.is_legal_transition(PROJECT_STAGE_FLOW[i], PROJECT_STAGE_FLOW[i + 1])

    @pytest.mark.parametrize("stage", PROJECT_STAGE_FLOW)
    def test_same_stage_is_legal(self, policy, stage):
        assert policy.is_legal_transition(stage, stage)

    def test_skip_is_illegal(self, policy):
        assert not policy.is_legal_transition("Proposal", "Approval")

    def test_backward_is_illegal(self, policy):
        assert not policy.is_legal_transition("Evaluation", "Proposal")

    def test_unknown_stage_raises_configuration_error(self, policy):
        with pytest.raises(ConfigurationError):
            policy.is_legal_transition("Proposal", "Construction Operation")

    def test_last_stage_has_no_next(self, policy):
        assert policy.next_stage("Divestment") is None
        assert policy.next_stage("Proposal") == "Evaluation"

    def test_terminal_stages(self, policy):
        assert policy.is_terminal("Completion")
        assert policy.is_terminal("Divestment")
        assert not policy.is_terminal("Operation")


@pytest.mark.unit
class TestValidateStageMove:
    def test_skip_names_the_only_legal_next_stage(self, policy):
        violations = policy.validate_stage_move("Proposal", "Implementation", {}, has_reason=True)
        stage_msgs = [v.message for v in violations if v.field == STAGE_FIELD]
        assert stage_msgs == [
            "Invalid stage transition. Allowed next stage after Proposal is Evaluation."
        ]

    def test_backward_from_last_stage_reports_na(self, policy):
        violations = policy.validate_stage_move("Divestment", "Completion", {}, has_reason=True)
        assert (
            "Invalid stage transition. Allowed next stage after Divestment is N/A."
            in [v.message for v in violations]
        )

    def test_advance_requires_reason(self, policy):
        values = {"title": "t", "project_type_id": 1, "industry_id": 1, "sector_id": 1,
                  "proposal_date": "2025-01-01"}
        violations = policy.validate_stage_move("Proposal", "Evaluation", values, has_reason=False)
        assert len(violations) == 1
        assert violations[0].field == REASON_FIELD
        assert violations[0].message == MSG_REASON_REQUIRED

    def test_advance_with_reason_and_fields_is_clean(self, policy):
        values = {"title": "t", "project_type_id": 1, "industry_id": 1, "sector_id": 1,
                  "proposal_date": "2025-01-01"}
        assert policy.validate_stage_move("Proposal", "Evaluation", values, has_reason=True) == []

    def test_same_stage_is_reason_exempt(self, policy):
        values = {"start_date": "2025-02-01"}
        assert policy.validate_stage_move("Operation", "Operation", values, has_reason=False) == []

    def test_no_target_checks_current_stage_fields(self, policy):
        violations = policy.validate_stage_move("Operation", None, {"start_date": None}, has_reason=False)
        assert _fields(violations) == ["start_date"]
        assert violations[0].message == "The start date is required for Operation stage."

    def test_all_violations_reported_together(self, policy):
        violations = policy.validate_stage_move("Evaluation", "Implementation", {}, has_reason=False)
        fields = _fields(violations)
        assert fields[0] == STAGE_FIELD
        assert REASON_FIELD in fields
        assert fields[2:] == ["start_date", "target_completion_date", "estimated_cost", "currency"]

    def test_require_reason_for_advance(self, policy):
        assert policy.require_reason_for_advance("Proposal", "Evaluation")
        assert not policy.require_reason_for_advance("Proposal", "Proposal")


@pytest.mark.unit
class TestRequiredFieldMerge:
    def test_omitted_field_keeps_stored_value(self, policy):
        stored = SimpleNamespace(start_date="2025-01-01", target_completion_date="2026-01-01",
                                 estimated_cost=5, currency="PHP")
        merged = merge_candidate_values({}, stored, policy.required_fields_for("Implementation"))
        assert policy.missing_fields_for("Implementation", merged) == []

    def test_explicit_zero_is_missing(self, policy):
        stored = SimpleNamespace(start_date="2025-01-01", target_completion_date="2026-01-01",
                                 estimated_cost=5, currency="PHP")
        merged = merge_candidate_values(
            {"estimated_cost": 0}, stored, policy.required_fields_for("Implementation"),
        )
        assert policy.missing_fields_for("Implementation", merged) == ["estimated_cost"]

    def test_mapping_existing_values(self):
        merged = merge_candidate_values({"a": None}, {"a": 1, "b": 2}, ["a", "b", "c"])
        assert merged == {"a": None, "b": 2, "c": None}

    @pytest.mark.parametrize("value,missing", [
        (None, True),
        ("", True),
        ("   ", True),
        ("0", True),
        (0, True),
        (5, False),
        ("x", False),
        (False, False),
    ])
    def test_is_missing(self, value, missing):
        assert is_missing(value) is missing


@pytest.mark.unit
class TestInitialStage:
    def test_must_start_at_first_stage(self, policy):
        violations = policy.validate_initial_stage("Evaluation", {
            "title": "t", "project_type_id": 1, "industry_id": 1, "sector_id": 1,
            "proposal_date": "2025-01-01",
        })
        assert [v.message for v in violations] == ["New projects must start at Proposal stage."]

    def test_first_stage_fields_listed_in_config_order(self, policy):
        violations = policy.validate_initial_stage("Proposal", {"title": "t"})
        assert _fields(violations) == [
            "description", "project_type_id", "industry_id", "sector_id", "proposal_date",
        ]


@pytest.mark.unit
class TestResolveActiveStage:
    def test_active_canonical_stage(self, policy):
        assert policy.resolve_active_stage(SimpleNamespace(name="Evaluation", is_active=True)) == "Evaluation"

    def test_legacy_stage_rejected(self, policy):
        with pytest.raises(ConfigurationError):
            policy.resolve_active_stage(SimpleNamespace(name="Construction Operation", is_active=False))

    def test_inactive_canonical_name_rejected(self, policy):
        with pytest.raises(ConfigurationError):
            policy.resolve_active_stage(SimpleNamespace(name="Construction", is_active=False))

    def test_active_but_unknown_rejected(self, policy):
        with pytest.raises(ConfigurationError):
            policy.resolve_active_stage(SimpleNamespace(name="Feasibility", is_active=True))

    def test_missing_row_rejected(self, policy):
        with pytest.raises(ConfigurationError):
            policy.resolve_active_stage(None)


@pytest.mark.unit
class TestConfiguredFlow:
    def test_custom_flow_and_labels(self):
        custom = StageFlowPolicy(
            ["Idea", "Build", "Done"],
            {"Build": ["budget"]},
            {"budget": "approved budget"},
            ["Done"],
        )
        assert custom.first_stage() == "Idea"
        assert custom.is_legal_transition("Idea", "Build")
        violations = custom.validate_stage_move("Idea", "Build", {}, has_reason=True)
        assert [v.message for v in violations] == ["The approved budget is required for Build stage."]

    def test_unlabelled_field_falls_back_to_spaced_name(self):
        custom = StageFlowPolicy(["A"], {"A": ["site_permit_no"]})
        assert custom.label_for("site_permit_no") == "site permit no"

    def test_from_config_reads_app_config(self, app):
        app.config["PROJECT_STAGE_FLOW"] = ["Idea", "Done"]
        try:
            assert StageFlowPolicy.from_config().stages == ("Idea", "Done")
        finally:
            app.config["PROJECT_STAGE_FLOW"] = list(PROJECT_STAGE_FLOW)

    def test_empty_flow_rejected(self):
        with pytest.raises(ConfigurationError):
            StageFlowPolicy([])

    def test_duplicate_stage_rejected(self):
        with pytest.raises(ConfigurationError):
            StageFlowPolicy(["A", "B", "A"])

    def test_describe(self, policy):
        described = policy.describe()
        assert [d["name"] for d in described] == PROJECT_STAGE_FLOW
        assert described[0]["next_stage"] == "Evaluation"
        assert described[-1]["is_terminal"] is True
        assert {"field": "title", "label": "project title"} in described[0]["required_fields"]
