"""
Approval API tests.

Tests cover:
  - approve through every step of the default workflow
  - wrong role → 403 naming the required role
  - validation (conditions / comments) → 422
  - state conflicts → 409
  - return / reject / complete / bootstrap endpoints
  - pending / approved / history listings
"""
import pytest

pytestmark = pytest.mark.integration


@pytest.fixture()
def approval(client, proponent, proposal_payload, auth_headers):
    res = client.post("/api/v1/projects", json=proposal_payload, headers=auth_headers(proponent))
    assert res.status_code == 201
    return res.get_json()["approval"]


def _approve(client, approval_id, user, auth_headers, **body):
    body.setdefault("status", "approved")
    return client.post(
        f"/api/v1/approvals/{approval_id}/approve", json=body, headers=auth_headers(user),
    )


class TestApproveAPI:
    def test_full_chain(self, client, approval, officer, head, mancom, board, auth_headers):
        for actor, expected in (
            (officer, "for_approval"),
            (head, "for_approval"),
            (mancom, "for_approval"),
        ):
            res = _approve(client, approval["id"], actor, auth_headers, comments="ok")
            assert res.status_code == 200
            assert res.get_json()["overall_status"] == expected

        res = _approve(client, approval["id"], board, auth_headers)
        body = res.get_json()
        assert body["overall_status"] == "approved"
        assert body["current_step_id"] is None
        assert body["completed_at"] is not None
        assert len(body["step_records"]) == 5

    def test_wrong_role(self, client, approval, board, auth_headers, seeded):
        res = _approve(client, approval["id"], board, auth_headers)
        assert res.status_code == 403
        body = res.get_json()
        assert body["error"] == "Current approval step is assigned to another role."
        assert body["details"]["required_role"] == "Project Officer"
        assert body["details"]["required_role_id"] == seeded["roles"]["Project Officer"].id

    def test_conditions_required(self, client, approval, officer, auth_headers):
        res = _approve(client, approval["id"], officer, auth_headers, status="approved_with_conditions")
        assert res.status_code == 422
        body = res.get_json()
        assert body["error"] == "Please specify the conditions for approval."
        assert body["details"]["errors"] == {"conditions": ["Please specify the conditions for approval."]}

    def test_requires_token(self, client, approval):
        res = client.post(f"/api/v1/approvals/{approval['id']}/approve", json={"status": "approved"})
        assert res.status_code == 401

    def test_unknown_approval(self, client, officer, auth_headers):
        res = _approve(client, 9999, officer, auth_headers)
        assert res.status_code == 404

    def test_finished_run_conflict(self, client, approval, officer, head, mancom, board, auth_headers):
        for actor in (officer, head, mancom, board):
            _approve(client, approval["id"], actor, auth_headers)
        res = _approve(client, approval["id"], board, auth_headers)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"


class TestReturnAPI:
    def test_return_resets_to_proponent(self, client, approval, officer, auth_headers):
        res = client.post(
            f"/api/v1/approvals/{approval['id']}/return",
            json={"comments": "incomplete docs"},
            headers=auth_headers(officer),
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["overall_status"] == "pending"
        assert body["current_step"]["step_order"] == 1
        returned = [r for r in body["step_records"] if r["status"] == "returned"]
        assert len(returned) == 1
        assert returned[0]["comments"] == "incomplete docs"

    def test_comments_required(self, client, approval, officer, auth_headers):
        res = client.post(
            f"/api/v1/approvals/{approval['id']}/return", json={}, headers=auth_headers(officer),
        )
        assert res.status_code == 422
        assert res.get_json()["error"] == "The comments field is required."

    def test_reject_alias(self, client, approval, officer, auth_headers):
        res = client.post(
            f"/api/v1/approvals/{approval['id']}/reject",
            json={"comments": "not now"},
            headers=auth_headers(officer),
        )
        assert res.status_code == 200
        assert res.get_json()["overall_status"] == "pending"


class TestCompleteAndBootstrapAPI:
    def test_complete_requires_approved(self, client, approval, officer, auth_headers):
        res = client.post(f"/api/v1/approvals/{approval['id']}/complete", headers=auth_headers(officer))
        assert res.status_code == 409
        assert res.get_json()["error"] == "Only approved workflows can be marked completed."

    def test_complete(self, client, approval, officer, head, mancom, board, auth_headers):
        for actor in (officer, head, mancom, board):
            _approve(client, approval["id"], actor, auth_headers)
        res = client.post(f"/api/v1/approvals/{approval['id']}/complete", headers=auth_headers(board))
        assert res.status_code == 200
        assert res.get_json()["overall_status"] == "completed"

    def test_bootstrap(self, client, approval, officer, auth_headers):
        res = client.post(f"/api/v1/approvals/{approval['id']}/bootstrap", headers=auth_headers(officer))
        assert res.status_code == 200
        assert res.get_json()["overall_status"] == "for_evaluation"


class TestApprovalListingsAPI:
    def test_pending_for_officer(self, client, approval, officer, head, auth_headers):
        res = client.get("/api/v1/approvals/pending", headers=auth_headers(officer))
        assert res.status_code == 200
        assert [a["id"] for a in res.get_json()["items"]] == [approval["id"]]
        res = client.get("/api/v1/approvals/pending", headers=auth_headers(head))
        assert res.get_json()["total"] == 0

    def test_list_by_status(self, client, approval, officer, auth_headers):
        res = client.get("/api/v1/approvals?status=for_evaluation", headers=auth_headers(officer))
        assert res.get_json()["total"] == 1
        res = client.get("/api/v1/approvals?status=approved", headers=auth_headers(officer))
        assert res.get_json()["total"] == 0

    def test_approved_and_rejected(self, client, approval, officer, head, mancom, board, auth_headers):
        for actor in (officer, head, mancom, board):
            _approve(client, approval["id"], actor, auth_headers)
        res = client.get("/api/v1/approvals/approved", headers=auth_headers(officer))
        assert [a["id"] for a in res.get_json()["items"]] == [approval["id"]]
        res = client.get("/api/v1/approvals/rejected", headers=auth_headers(officer))
        assert res.get_json()["total"] == 0

    def test_get_and_history(self, client, approval, officer, auth_headers):
        _approve(client, approval["id"], officer, auth_headers, comments="fine")
        res = client.get(f"/api/v1/approvals/{approval['id']}", headers=auth_headers(officer))
        assert res.status_code == 200
        assert res.get_json()["current_step"]["step_order"] == 3

        res = client.get(f"/api/v1/approvals/{approval['id']}/history", headers=auth_headers(officer))
        history = res.get_json()
        assert len(history) == 2
        assert {h["step_order"] for h in history} == {1, 2}
