from delivery_workflow.core.security import AuthenticatedUser
from delivery_workflow.db_models.enums import Role

OWNER = AuthenticatedUser(user_id="pm-1", username="owner", role=Role.PM)
VENDOR_PJM = AuthenticatedUser(user_id="pjm-5", username="vendor", role=Role.PROJECT_MANAGER, company_id="vendor-a")
ENGINEER = AuthenticatedUser(user_id="eng-1", username="eng", role=Role.ENGINEER)
ADMIN = AuthenticatedUser(user_id="admin-1", username="admin", role=Role.SUPER_ADMIN)


def test_package_pipeline_over_http(client):
    client.user = OWNER
    project = client.post("/api/projects", json={"name": "Billing revamp", "delivery_manager_id": "pjm-1",
                                                 "vendor_company_ids": ["vendor-a"]})
    assert project.status_code == 201
    project_id = project.json()["id"]

    assert client.post(f"/api/projects/{project_id}/package/advance").json()["active_stage"] == "PJM_REVIEW"

    client.user = VENDOR_PJM
    assert client.post(f"/api/projects/{project_id}/package/advance").json()["active_stage"] == "ENG_REVIEW"

    client.user = ENGINEER
    sent_back = client.post(f"/api/projects/{project_id}/package/send-back",
                            json={"target_stage": "PM", "reason": "Scope unclear"})
    assert sent_back.status_code == 200
    assert sent_back.json()["project"]["package_status"] == "SENT_BACK"
    assert sent_back.json()["timeline"][0]["is_sent_back"] is True

    forbidden = client.post(f"/api/projects/{project_id}/package/advance")
    assert forbidden.status_code == 403

    events = client.get(f"/api/projects/{project_id}/package/events").json()
    assert [e["event"] for e in events] == ["ADVANCE", "ADVANCE", "SEND_BACK"]


def test_send_back_validation(client):
    client.user = OWNER
    project_id = client.post("/api/projects", json={"name": "Billing revamp"}).json()["id"]
    client.post(f"/api/projects/{project_id}/package/advance")
    client.user = ADMIN

    blank = client.post(f"/api/projects/{project_id}/package/send-back", json={"target_stage": "PM", "reason": " "})
    forward = client.post(f"/api/projects/{project_id}/package/send-back",
                          json={"target_stage": "ENG", "reason": "why"})

    assert (blank.status_code, blank.json()["code"]) == (400, "comment_required")
    assert (forward.status_code, forward.json()["code"]) == (400, "invalid_send_back_target")


def test_unknown_project_package(client):
    response = client.get("/api/projects/prj_missing/package")

    assert response.status_code == 404
    assert response.json()["code"] == "project_not_found"
