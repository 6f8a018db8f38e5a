"""
Project / stage / health API tests.

Tests cover:
  - auth required (401), permission checks (403)
  - create → 201 with the started approval run
  - stage move validation errors → 422 with every violation
  - timeline, archive toggle, listing, member grants
  - stage catalogue and dry-run validation
"""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from pms.services.stage_policy import REASON_FIELD, STAGE_FIELD

pytestmark = pytest.mark.integration


@pytest.fixture()
def created(client, proponent, proposal_payload, auth_headers):
    res = client.post("/api/v1/projects", json=proposal_payload, headers=auth_headers(proponent))
    assert res.status_code == 201
    return res.get_json()


class TestProjectCreateAPI:
    def test_foreign_issuer_rejected(self, client, app, proponent, proposal_payload):
        token = jwt.encode(
            {"sub": str(proponent.id), "iss": "elsewhere", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            app.config["JWT_SECRET_KEY"],
            algorithm="HS256",
        )
        res = client.post(
            "/api/v1/projects", json=proposal_payload, headers={"Authorization": f"Bearer {token}"},
        )
        assert res.status_code == 401

    def test_requires_token(self, client, proposal_payload):
        res = client.post("/api/v1/projects", json=proposal_payload)
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_invalid_token(self, client, proposal_payload):
        res = client.post(
            "/api/v1/projects", json=proposal_payload,
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert res.status_code == 401

    def test_create(self, created):
        assert created["project_code"].startswith("BDG-")
        assert created["current_stage"] == "Proposal"
        assert created["status"] == "Draft"
        assert created["approval"]["overall_status"] == "for_evaluation"
        assert created["approval"]["current_step"]["step_order"] == 2

    def test_forbidden_without_create_permission(self, client, officer, proposal_payload, auth_headers):
        res = client.post("/api/v1/projects", json=proposal_payload, headers=auth_headers(officer))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_wrong_start_stage(self, client, proponent, proposal_payload, seeded, auth_headers):
        payload = dict(proposal_payload, current_stage_id=seeded["stages"]["Evaluation"].id)
        res = client.post("/api/v1/projects", json=payload, headers=auth_headers(proponent))
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"]["errors"][STAGE_FIELD] == ["New projects must start at Proposal stage."]

    def test_all_violations_returned(self, client, proponent, seeded, auth_headers):
        res = client.post("/api/v1/projects", json={}, headers=auth_headers(proponent))
        assert res.status_code == 422
        fields = {v["field"] for v in res.get_json()["details"]["violations"]}
        assert {"title", STAGE_FIELD} <= fields

    def test_non_object_body_rejected(self, client, proponent, auth_headers):
        res = client.post("/api/v1/projects", json=["title"], headers=auth_headers(proponent))
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"]["errors"]["body"] == ["The request body must be a JSON object."]


class TestProjectUpdateAPI:
    def test_advance_stage(self, client, created, proponent, seeded, auth_headers):
        res = client.put(
            f"/api/v1/projects/{created['id']}",
            json={STAGE_FIELD: seeded["stages"]["Evaluation"].id, REASON_FIELD: "Submitted"},
            headers=auth_headers(proponent),
        )
        assert res.status_code == 200
        assert res.get_json()["current_stage"] == "Evaluation"

    def test_skip_stage_rejected(self, client, created, proponent, seeded, auth_headers):
        res = client.patch(
            f"/api/v1/projects/{created['id']}",
            json={STAGE_FIELD: seeded["stages"]["Implementation"].id},
            headers=auth_headers(proponent),
        )
        assert res.status_code == 422
        body = res.get_json()
        assert body["error"] == "Invalid stage transition. Allowed next stage after Proposal is Evaluation."
        fields = [v["field"] for v in body["details"]["violations"]]
        assert fields[:2] == [STAGE_FIELD, REASON_FIELD]

    def test_not_found(self, client, proponent, auth_headers):
        res = client.put("/api/v1/projects/9999", json={"title": "x"}, headers=auth_headers(proponent))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_other_user_cannot_edit(self, client, created, officer, auth_headers):
        res = client.put(
            f"/api/v1/projects/{created['id']}", json={"title": "x"}, headers=auth_headers(officer),
        )
        assert res.status_code == 403


class TestProjectReadAPI:
    def test_get_project(self, client, created, proponent, auth_headers):
        res = client.get(f"/api/v1/projects/{created['id']}", headers=auth_headers(proponent))
        assert res.status_code == 200
        assert res.get_json()["project_code"] == created["project_code"]

    def test_get_forbidden_for_unrelated_user(self, client, created, officer, auth_headers):
        res = client.get(f"/api/v1/projects/{created['id']}", headers=auth_headers(officer))
        assert res.status_code == 403

    def test_timeline(self, client, created, proponent, seeded, auth_headers):
        client.put(
            f"/api/v1/projects/{created['id']}",
            json={STAGE_FIELD: seeded["stages"]["Evaluation"].id, REASON_FIELD: "Submitted"},
            headers=auth_headers(proponent),
        )
        res = client.get(f"/api/v1/projects/{created['id']}/timeline", headers=auth_headers(proponent))
        assert res.status_code == 200
        stages = [h["to_stage"] for h in res.get_json()["stage_history"]]
        assert set(stages) == {"Proposal", "Evaluation"}

    def test_archive_toggle_and_listing(self, client, created, proponent, auth_headers):
        headers = auth_headers(proponent)
        res = client.get("/api/v1/projects", headers=headers)
        assert res.get_json()["total"] == 1

        res = client.post(f"/api/v1/projects/{created['id']}/archive", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["is_archived"] is True

        assert client.get("/api/v1/projects", headers=headers).get_json()["total"] == 0
        res = client.get("/api/v1/projects?include_archived=true", headers=headers)
        assert res.get_json()["total"] == 1


class TestProjectMembersAPI:
    def test_add_list_remove(self, client, created, proponent, officer, seeded, auth_headers):
        url = f"/api/v1/projects/{created['id']}/members"
        res = client.post(url, json={
            "user_id": officer.id, "role_id": seeded["roles"]["Project Officer"].id,
        }, headers=auth_headers(proponent))
        assert res.status_code == 201
        member = res.get_json()
        assert member["can_view"] is True and member["can_edit"] is False

        assert client.get(f"/api/v1/projects/{created['id']}", headers=auth_headers(officer)).status_code == 200
        members = client.get(url, headers=auth_headers(proponent)).get_json()
        assert [m["assignment_type"] for m in members] == ["owner", "member"]

        res = client.delete(f"{url}/{member['id']}", headers=auth_headers(proponent))
        assert res.status_code == 200
        assert res.get_json()["removed_at"] is not None
        assert client.get(f"/api/v1/projects/{created['id']}", headers=auth_headers(officer)).status_code == 403

    def test_non_manager_forbidden(self, client, created, officer, head, seeded, auth_headers):
        res = client.post(f"/api/v1/projects/{created['id']}/members", json={
            "user_id": head.id, "role_id": seeded["roles"]["Workgroup Head"].id,
        }, headers=auth_headers(officer))
        assert res.status_code == 403

    def test_invalid_member_payload(self, client, created, proponent, auth_headers):
        res = client.post(
            f"/api/v1/projects/{created['id']}/members", json={"user_id": 9999}, headers=auth_headers(proponent),
        )
        assert res.status_code == 422
        assert set(res.get_json()["details"]["errors"]) == {"user_id", "role_id"}

    def test_unknown_member_not_found(self, client, created, proponent, auth_headers):
        res = client.delete(f"/api/v1/projects/{created['id']}/members/9999", headers=auth_headers(proponent))
        assert res.status_code == 404


class TestStageAPI:
    def test_stage_catalogue(self, client, seeded):
        res = client.get("/api/v1/stages")
        assert res.status_code == 200
        stages = res.get_json()
        assert [s["name"] for s in stages][:3] == ["Proposal", "Evaluation", "Approval"]
        assert stages[0]["id"] == seeded["stages"]["Proposal"].id
        assert stages[0]["is_active"] is True

    def test_validate_move(self, client, seeded):
        res = client.post("/api/v1/stages/validate", json={
            "from_stage": "Proposal",
            "to_stage": "Approval",
            "values": {},
        })
        assert res.status_code == 200
        body = res.get_json()
        assert body["valid"] is False
        assert body["violations"][0]["message"] == (
            "Invalid stage transition. Allowed next stage after Proposal is Evaluation."
        )

    def test_validate_clean_move(self, client, seeded):
        res = client.post("/api/v1/stages/validate", json={
            "from_stage": "Operation",
            "to_stage": "Completion",
            "values": {"actual_completion_date": "2025-12-31"},
            "stage_change_reason": "Handover",
        })
        assert res.get_json() == {"valid": True, "violations": []}

    def test_validate_unknown_stage(self, client, seeded):
        res = client.post("/api/v1/stages/validate", json={"from_stage": "Construction Operation"})
        assert res.status_code == 422

    def test_validate_non_object_values(self, client, seeded):
        res = client.post("/api/v1/stages/validate", json={"from_stage": "Proposal", "values": ["x"]})
        assert res.status_code == 422
        assert res.get_json()["details"]["errors"]["values"] == ["The values field must be an object."]

    def test_validate_non_string_stage(self, client, seeded):
        res = client.post("/api/v1/stages/validate", json={"from_stage": ["Proposal"]})
        assert res.status_code == 422

    def test_validate_non_object_body(self, client, seeded):
        res = client.post("/api/v1/stages/validate", json="Proposal")
        assert res.status_code == 422


class TestHealthAPI:
    def test_health(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"

    def test_live_reports_reference_data(self, client, seeded):
        body = client.get("/api/v1/health/live").get_json()
        assert body["checks"]["reference_data"]["status"] == "ok"
        assert body["checks"]["reference_data"]["active_workflows"] == 1

    def test_request_id_echoed(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers
