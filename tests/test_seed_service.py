"""
Reference-data seeding tests: stages, statuses, default workflow, CLI.
"""
import pytest

from pms.models import db
from pms.models.approval import ApprovalWorkflow
from pms.models.auth import Role
from pms.models.lookup import ProjectStage, ProjectStatus
from pms.models.project import ProjectStageHistory
from pms.services.seed_service import (
    LEGACY_SEQUENCE_ORDER,
    seed_default_workflow,
    seed_stages,
    seed_statuses,
)
from pms.workflow_config import (
    DEFAULT_APPROVAL_WORKFLOW_NAME,
    DEFAULT_PROJECT_STATUSES,
    PROJECT_STAGE_FLOW,
)


@pytest.mark.unit
class TestSeedStages:
    def test_canonical_stages_in_flow_order(self):
        assert seed_stages() == len(PROJECT_STAGE_FLOW)
        db.session.commit()
        rows = ProjectStage.query.order_by(ProjectStage.sequence_order).all()
        assert [s.name for s in rows] == PROJECT_STAGE_FLOW
        assert all(s.is_active for s in rows)
        assert rows[0].description == "Project proposal stage"

    def test_idempotent(self):
        seed_stages()
        db.session.commit()
        assert seed_stages() == 0
        assert ProjectStage.query.count() == len(PROJECT_STAGE_FLOW)

    def test_legacy_stage_retired_and_references_moved(self, make_user, make_project):
        legacy = ProjectStage(name="Construction Operation", sequence_order=5, is_active=True)
        db.session.add(legacy)
        db.session.commit()
        # make_project seeds the canonical stages through reference_data
        creator = make_user()
        project = make_project(creator, current_stage_id=legacy.id)
        db.session.add(ProjectStageHistory(
            project_id=project.id, from_stage_id=None, to_stage_id=legacy.id, changed_by=creator.id,
        ))
        db.session.commit()

        seed_stages()
        db.session.commit()
        db.session.expire_all()

        legacy = ProjectStage.query.filter_by(name="Construction Operation").one()
        construction = ProjectStage.query.filter_by(name="Construction").one()
        assert legacy.is_active is False
        assert legacy.sequence_order == LEGACY_SEQUENCE_ORDER
        assert project.current_stage_id == construction.id
        assert ProjectStageHistory.query.filter_by(to_stage_id=legacy.id).count() == 0


@pytest.mark.unit
class TestSeedStatuses:
    def test_default_statuses(self):
        assert seed_statuses() == len(DEFAULT_PROJECT_STATUSES)
        assert seed_statuses() == 0
        assert ProjectStatus.query.filter_by(name="Draft").one().color_code == "#6c757d"


@pytest.mark.unit
class TestSeedWorkflow:
    def test_five_step_sequence(self):
        workflow = seed_default_workflow()
        db.session.commit()
        assert workflow.name == DEFAULT_APPROVAL_WORKFLOW_NAME
        assert workflow.project_type_id is None
        assert [(s.step_order, s.role.name) for s in workflow.steps] == [
            (1, "Proponent"),
            (2, "Project Officer"),
            (3, "Workgroup Head"),
            (4, "ManCom"),
            (5, "Board"),
        ]
        assert workflow.description == (
            "Sequential routing: Proponent -> Project Officer -> Workgroup Head -> ManCom -> Board"
        )

    def test_idempotent_and_deactivates_others(self):
        other = ApprovalWorkflow(name="Legacy Flow", is_active=True)
        db.session.add(other)
        db.session.commit()

        first = seed_default_workflow()
        second = seed_default_workflow()
        db.session.commit()

        assert first.id == second.id
        assert len(second.steps) == 5
        assert Role.query.count() == 5
        assert db.session.get(ApprovalWorkflow, other.id).is_active is False


@pytest.mark.unit
class TestSeedCLI:
    def test_seed_commands(self, app):
        runner = app.test_cli_runner()
        assert runner.invoke(args=["seed-stages"]).exit_code == 0
        assert runner.invoke(args=["seed-workflow"]).exit_code == 0
        assert ProjectStage.query.count() == len(PROJECT_STAGE_FLOW)
        assert ApprovalWorkflow.query.filter_by(name=DEFAULT_APPROVAL_WORKFLOW_NAME).count() == 1
