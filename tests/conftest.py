"""
Shared pytest fixtures for the Project Management System test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - clock: FixedClock pinned to 2025-01-01 09:00 UTC
    - reference_data: seeded stages + statuses
    - seeded: reference_data + the default five-step approval workflow
    - make_user / make_workflow / make_project: row factories
    - auth_headers: bearer token headers for a user
"""

import itertools
from datetime import date

import pytest

from pms import create_app
from pms.models import db as _db
from pms.models.approval import ApprovalStep, ApprovalWorkflow
from pms.models.auth import Permission, Role, RolePermission, User
from pms.models.lookup import Industry, ProjectStage, ProjectStatus, ProjectType, Sector
from pms.models.project import Project
from pms.services.jwt_service import issue_token
from pms.services.seed_service import seed_default_workflow, seed_stages, seed_statuses
from pms.utils.clock import FixedClock


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def clock():
    return FixedClock()


# ── Reference data ───────────────────────────────────────────────────────


@pytest.fixture()
def reference_data():
    """Canonical stages, default statuses and one type/industry/sector."""
    seed_stages()
    seed_statuses()
    project_type = ProjectType(name="Infrastructure")
    industry = Industry(name="Energy")
    sector = Sector(name="Renewables")
    _db.session.add_all([project_type, industry, sector])
    _db.session.commit()
    return {
        "stages": {s.name: s for s in ProjectStage.query.all()},
        "statuses": {s.name: s for s in ProjectStatus.query.all()},
        "project_type": project_type,
        "industry": industry,
        "sector": sector,
    }


@pytest.fixture()
def seeded(reference_data):
    """reference_data plus the default Proponent → ... → Board workflow."""
    workflow = seed_default_workflow()
    _db.session.commit()
    data = dict(reference_data)
    data["workflow"] = workflow
    data["roles"] = {r.name: r for r in Role.query.all()}
    return data


# ── Factories ────────────────────────────────────────────────────────────


def _get_or_create_role(name):
    role = Role.query.filter_by(name=name).first()
    if role is None:
        role = Role(name=name)
        _db.session.add(role)
        _db.session.flush()
    return role


def _grant(role, permission_name):
    perm = Permission.query.filter_by(name=permission_name).first()
    if perm is None:
        resource, _, action = permission_name.partition(".")
        perm = Permission(name=permission_name, resource=resource, action=action or resource)
        _db.session.add(perm)
        _db.session.flush()
    exists = RolePermission.query.filter_by(role_id=role.id, permission_id=perm.id).first()
    if exists is None:
        _db.session.add(RolePermission(role_id=role.id, permission_id=perm.id))


@pytest.fixture()
def make_user():
    """make_user(role="Project Officer", permissions=["projects.view"]) → User"""
    counter = itertools.count(1)

    def _make(role=None, permissions=(), is_active=True):
        n = next(counter)
        role_obj = None
        if role or permissions:
            role_obj = _get_or_create_role(role or f"Custom Role {n}")
            for name in permissions:
                _grant(role_obj, name)
        user = User(
            username=f"user{n}",
            email=f"user{n}@example.com",
            first_name="Test",
            last_name=f"User {n}",
            default_role_id=role_obj.id if role_obj else None,
            is_active=is_active,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_workflow():
    """make_workflow("Three Step", ["Proponent", "Project Officer", "Workgroup Head"])

    ``orders`` overrides the default 1..n step orders.
    """

    def _make(name, role_names, *, orders=None, project_type_id=None, is_active=True):
        workflow = ApprovalWorkflow(name=name, project_type_id=project_type_id, is_active=is_active)
        _db.session.add(workflow)
        _db.session.flush()
        orders = orders or list(range(1, len(role_names) + 1))
        for order, role_name in zip(orders, role_names):
            role = _get_or_create_role(role_name)
            _db.session.add(ApprovalStep(
                workflow_id=workflow.id,
                step_order=order,
                role_id=role.id,
                step_name=f"{role_name} Review",
            ))
        _db.session.commit()
        return workflow

    return _make


@pytest.fixture()
def make_project(reference_data):
    """Insert a Proposal-stage project row directly, bypassing the coordinator."""
    counter = itertools.count(1)

    def _make(creator, **overrides):
        n = next(counter)
        values = {
            "project_code": f"TST-{n:03d}",
            "title": f"Project {n}",
            "description": "Solar farm",
            "project_type_id": reference_data["project_type"].id,
            "industry_id": reference_data["industry"].id,
            "sector_id": reference_data["sector"].id,
            "proposal_date": date(2025, 1, 15),
            "current_stage_id": reference_data["stages"]["Proposal"].id,
            "status_id": reference_data["statuses"]["Draft"].id,
            "created_by": creator.id,
        }
        values.update(overrides)
        project = Project(**values)
        _db.session.add(project)
        _db.session.commit()
        return project

    return _make


@pytest.fixture()
def proposal_payload(reference_data):
    """A create-project body that satisfies every Proposal requirement."""
    return {
        "title": "Batangas Solar Farm",
        "description": "50MW solar installation",
        "project_type_id": reference_data["project_type"].id,
        "industry_id": reference_data["industry"].id,
        "sector_id": reference_data["sector"].id,
        "proposal_date": "2025-01-15",
        "current_stage_id": reference_data["stages"]["Proposal"].id,
    }


@pytest.fixture()
def auth_headers():
    def _headers(user):
        token = issue_token(user)
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ── Named actors on the default workflow ─────────────────────────────────


@pytest.fixture()
def proponent(seeded, make_user):
    return make_user(role="Proponent", permissions=["projects.create"])


@pytest.fixture()
def officer(seeded, make_user):
    return make_user(role="Project Officer")


@pytest.fixture()
def head(seeded, make_user):
    return make_user(role="Workgroup Head")


@pytest.fixture()
def mancom(seeded, make_user):
    return make_user(role="ManCom")


@pytest.fixture()
def board(seeded, make_user):
    return make_user(role="Board")
