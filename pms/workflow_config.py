"""
Project Management System
Default project workflow configuration.

These values seed the Flask config keys of the same name. Deployments
redefine the stage flow, required fields or labels by overriding the
keys (config class or app.config) without touching the schema.

Stage identity is the stage *name*; the order of PROJECT_STAGE_FLOW is the
canonical order. project_stages.sequence_order is never consulted.
"""

PROJECT_STAGE_FLOW = [
    "Proposal",
    "Evaluation",
    "Approval",
    "Implementation",
    "Construction",
    "Operation",
    "Completion",
    "Divestment",
]

_PROPOSAL_FIELDS = ["title", "project_type_id", "industry_id", "sector_id", "proposal_date"]

PROJECT_STAGE_REQUIRED_FIELDS = {
    "Proposal": ["title", "description", "project_type_id", "industry_id", "sector_id", "proposal_date"],
    "Evaluation": list(_PROPOSAL_FIELDS),
    "Approval": list(_PROPOSAL_FIELDS),
    "Implementation": ["start_date", "target_completion_date", "estimated_cost", "currency"],
    "Construction": ["start_date", "target_completion_date", "location_address"],
    "Operation": ["start_date"],
    "Completion": ["actual_completion_date"],
    "Divestment": ["actual_completion_date"],
}

PROJECT_FIELD_LABELS = {
    "title": "project title",
    "description": "project description",
    "project_type_id": "project type",
    "industry_id": "industry",
    "sector_id": "sector",
    "proposal_date": "proposal date",
    "start_date": "start date",
    "target_completion_date": "target completion date",
    "actual_completion_date": "actual completion date",
    "estimated_cost": "estimated cost",
    "currency": "currency",
    "location_address": "location address",
}

# Reaching one of these stages closes the project's approved run.
PROJECT_TERMINAL_STAGES = ["Completion", "Divestment"]

# Stages kept in storage for old rows but outside the canonical flow.
LEGACY_STAGES = {
    "Construction Operation": "Legacy combined stage. Use Construction and Operation.",
}

DEFAULT_APPROVAL_WORKFLOW_NAME = "SOI Sequential Approval"

# (step_order, role name, step name)
DEFAULT_APPROVAL_STEPS = [
    (1, "Proponent", "Proponent Submission"),
    (2, "Project Officer", "Project Officer Evaluation"),
    (3, "Workgroup Head", "Workgroup Head Approval"),
    (4, "ManCom", "ManCom Approval"),
    (5, "Board", "Board Approval"),
]

PROJECT_CREATE_PERMISSIONS = ["projects.create", "project.create", "create_project"]
PROJECT_EDIT_PERMISSIONS = [
    "projects.update", "projects.edit", "project.update", "project.edit", "edit_project",
]
PROJECT_VIEW_PERMISSIONS = ["projects.view", "project.view", "view_project"]
PROJECT_MEMBER_MANAGE_PERMISSIONS = [
    "projects.members.manage", "project_members.manage", "project_member.manage", "manage_members",
]

DEFAULT_PROJECT_STATUSES = [
    ("Draft", "#6c757d"),
    ("Active", "#0d6efd"),
    ("On Hold", "#ffc107"),
    ("Completed", "#198754"),
    ("Cancelled", "#dc3545"),
]
DEFAULT_PROJECT_STATUS = "Draft"
