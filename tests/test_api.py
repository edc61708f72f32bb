import pytest

from smartlias.constants import PASSWORD_NOT_CHANGED
from smartlias.models import SmsLog

CONTENT = "Free vaccination at the barangay health center this Saturday morning."


@pytest.fixture
def admin_headers(make_admin, auth_headers):
    make_admin()
    return auth_headers("admin.staff", "010180")


@pytest.fixture
def resident_headers(make_user, make_resident, auth_headers):
    user = make_user("juan.delacruz", "246810")
    make_resident(user_id=user.id)
    return auth_headers("juan.delacruz", "246810")


def test_check_username(client, make_user):
    make_user("juan.delacruz")
    resp = client.post("/api/auth/check-username", json={"username": "Juan.DelaCruz"})
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True, "data": {"username": "juan.delacruz"}}

    resp = client.post("/api/auth/check-username", json={"username": "ghost.user"})
    assert resp.status_code == 404
    assert resp.get_json()["field"] == "username"

    resp = client.post("/api/auth/check-username", json={"username": "no spaces!"})
    assert resp.status_code == 422


def test_login_errors(client, make_user):
    make_user("juan.delacruz", "246810")
    assert client.post("/api/auth/login", json={"username": "juan.delacruz"}).status_code == 400
    assert client.post("/api/auth/login", data="not json").status_code == 422

    resp = client.post("/api/auth/login", json={"username": "juan.delacruz", "pin": "000000"})
    body = resp.get_json()
    assert resp.status_code == 401
    assert body["success"] is False
    assert body["remaining_attempts"] == 4

    for _ in range(4):
        resp = client.post("/api/auth/login", json={"username": "juan.delacruz", "mpin": "000000"})
    assert resp.status_code == 423
    assert resp.get_json()["locked_minutes"] == 15


def test_session_and_logout_revokes_token(client, make_user, auth_headers):
    make_user("juan.delacruz", "246810")
    headers = auth_headers("juan.delacruz", "246810")

    resp = client.get("/api/auth/session", headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["data"]["user"]["username"] == "juan.delacruz"

    assert client.post("/api/auth/logout", headers=headers).status_code == 200
    resp = client.get("/api/auth/session", headers=headers)
    assert resp.status_code == 401
    assert resp.get_json()["success"] is False


def test_missing_or_bad_token(client):
    assert client.get("/api/auth/session").status_code == 401
    resp = client.get("/api/auth/session", headers={"Authorization": "Bearer forged"})
    assert resp.status_code == 401


def test_default_mpin_must_be_changed(client, make_user):
    make_user("maria.santos", "120885", changed=PASSWORD_NOT_CHANGED)
    resp = client.post("/api/auth/login", json={"username": "maria.santos", "pin": "120885"})
    data = resp.get_json()["data"]
    assert data["must_change_mpin"] is True
    headers = {"Authorization": f"Bearer {data['token']}"}

    resp = client.get("/api/announcements", headers=headers)
    assert resp.status_code == 403
    assert resp.get_json()["must_change_mpin"] is True

    resp = client.post(
        "/api/auth/change-mpin",
        headers=headers,
        json={"current_pin": "999999", "new_pin": "482913", "confirm_pin": "482913"},
    )
    assert resp.status_code == 422

    resp = client.post(
        "/api/auth/change-mpin",
        headers=headers,
        json={"current_pin": "120885", "new_pin": "482913", "confirm_pin": "482913"},
    )
    assert resp.status_code == 200
    new_headers = {"Authorization": f"Bearer {resp.get_json()['data']['token']}"}

    # The token issued before the change is no longer valid
    assert client.get("/api/auth/session", headers=headers).status_code == 401
    assert client.get("/api/announcements", headers=new_headers).status_code == 200


def test_residents_crud(client, admin_headers):
    resp = client.post(
        "/api/residents",
        headers=admin_headers,
        json={
            "first_name": "Ana",
            "last_name": "Reyes",
            "birth_date": "1985-09-12",
            "gender": "female",
            "contact_number": "09201234567",
            "purok": 4,
            "create_account": True,
        },
    )
    assert resp.status_code == 201
    created = resp.get_json()["data"]
    assert created["age"] >= 40
    assert created["account"] == {"username": "ana.reyes", "must_change_mpin": True}
    assert created["username"] == "ana.reyes"

    resident_id = created["id"]
    resp = client.put(f"/api/residents/{resident_id}", headers=admin_headers, json={"purok": 5})
    assert resp.get_json()["data"]["purok"] == 5

    resp = client.get("/api/residents?search=reyes", headers=admin_headers)
    body = resp.get_json()["data"]
    assert body["total"] == 1
    assert body["residents"][0]["birth_date"] == "1985-09-12"

    assert client.get("/api/residents/stats", headers=admin_headers).get_json()["data"]["total"] == 1
    assert client.delete(f"/api/residents/{resident_id}", headers=admin_headers).status_code == 200
    assert client.get("/api/residents/stats", headers=admin_headers).get_json()["data"]["total"] == 0
    assert client.delete("/api/residents/999", headers=admin_headers).status_code == 404


def test_resident_validation_errors(client, admin_headers):
    resp = client.post("/api/residents", headers=admin_headers, json={"first_name": "Ana"})
    body = resp.get_json()
    assert resp.status_code == 422
    assert "last_name" in body["fields"]


def test_residents_are_admin_only(client, resident_headers):
    resp = client.get("/api/residents", headers=resident_headers)
    assert resp.status_code == 403
    assert resp.get_json()["error"] == "You do not have permission to perform this action."


def test_announcement_publish_flow(client, admin_headers, resident_headers, make_resident):
    make_resident(first_name="Rosa", last_name="Lim", contact_number="09181234567", purok=2)
    resp = client.post(
        "/api/announcements",
        headers=admin_headers,
        json={
            "title": "Vaccination Drive",
            "content": CONTENT,
            "type": 2,
            "send_sms": True,
            "sms_target_groups": ["purok:1"],
        },
    )
    assert resp.status_code == 201
    announcement = resp.get_json()["data"]
    assert announcement["status"] == "draft"
    assert announcement["sms_target_summary"] == "Purok 1"

    # Drafts are hidden from residents
    url = f"/api/announcements/{announcement['id']}"
    assert client.get(url, headers=resident_headers).status_code == 404
    listing = client.get("/api/announcements", headers=resident_headers).get_json()["data"]
    assert listing["total"] == 0

    resp = client.put(url, headers=admin_headers, json={"status": "published"})
    body = resp.get_json()["data"]
    assert body["status"] == "published"
    assert body["sms_status"] == {"total_recipients": 1, "successful_sends": 1, "failed_sends": 0}
    assert SmsLog.query.one().phone_number == "+639171234567"

    assert client.get(url, headers=resident_headers).status_code == 200
    resp = client.get(f"{url}/sms-status", headers=admin_headers)
    assert resp.get_json()["data"]["successful_sends"] == 1

    resp = client.put(url, headers=admin_headers, json={"status": "published"})
    assert resp.status_code == 409
    resp = client.put(url, headers=admin_headers, json={"title": "Changed title here", "content": CONTENT})
    assert resp.status_code == 409

    assert client.delete(url, headers=admin_headers).status_code == 200
    assert client.get(url, headers=admin_headers).status_code == 404


def test_announcement_list_filters(client, admin_headers):
    for title in ("Clean-up Drive Sunday", "Water Interruption Notice"):
        client.post("/api/announcements", headers=admin_headers, json={"title": title, "content": CONTENT})
    resp = client.get("/api/announcements?status=draft&limit=1", headers=admin_headers)
    data = resp.get_json()["data"]
    assert data["total"] == 2
    assert len(data["announcements"]) == 1
    assert data["limit"] == 1

    resp = client.get("/api/announcements?status=published", headers=admin_headers)
    assert resp.get_json()["data"]["total"] == 0


def test_document_request_flow(client, admin_headers, resident_headers, document_types, make_resident):
    other = make_resident(first_name="Rosa", last_name="Lim")
    clearance = document_types["Barangay Clearance"]

    types = client.get("/api/document-types", headers=resident_headers).get_json()["data"]
    assert {"Barangay Clearance", "Certificate of Indigency"} <= {t["name"] for t in types}

    resp = client.post(
        "/api/document-requests",
        headers=resident_headers,
        json={"document_type_id": clearance.id, "purpose": "Employment requirement"},
    )
    assert resp.status_code == 201
    mine = resp.get_json()["data"]
    assert mine["status"] == "pending"

    resp = client.post(
        "/api/document-requests",
        headers=admin_headers,
        json={"resident_id": other.id, "document_type_id": clearance.id, "purpose": "Scholarship"},
    )
    assert resp.status_code == 201
    assert client.post(
        "/api/document-requests", headers=admin_headers, json={"document_type_id": clearance.id, "purpose": "x"}
    ).status_code == 422

    # Residents only see their own requests
    own = client.get("/api/document-requests", headers=resident_headers).get_json()["data"]
    assert [r["id"] for r in own["requests"]] == [mine["id"]]
    everyone = client.get("/api/document-requests", headers=admin_headers).get_json()["data"]
    assert everyone["total"] == 2

    url = f"/api/document-requests/{mine['id']}"
    assert client.put(url, headers=resident_headers, json={"status": "processing"}).status_code == 403
    assert client.put(url, headers=admin_headers, json={"status": "released"}).status_code == 409
    assert client.put(url, headers=admin_headers, json={"status": "processing"}).status_code == 200
    resp = client.put(url, headers=admin_headers, json={"status": "ready"})
    assert resp.get_json()["data"]["has_claim_stub"] is True

    filtered = client.get("/api/document-requests?status=ready", headers=admin_headers).get_json()["data"]
    assert filtered["total"] == 1

    resp = client.get(f"/requests/{mine['id']}/claim-stub")
    assert resp.status_code == 302


def test_unknown_api_route_returns_json(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.get_json()["success"] is False


def test_non_text_credentials_are_rejected(client, make_user, auth_headers):
    make_user("juan.delacruz", "246810")
    resp = client.post("/api/auth/login", json={"username": "juan.delacruz", "pin": 246810})
    assert resp.status_code == 422
    assert resp.get_json()["field"] == "pin"
    resp = client.post("/api/auth/login", json={"username": 123, "pin": "246810"})
    assert resp.status_code == 422
    resp = client.post("/api/auth/check-username", json={"username": ["juan.delacruz"]})
    assert resp.status_code == 422

    headers = auth_headers("juan.delacruz", "246810")
    resp = client.post(
        "/api/auth/change-mpin",
        headers=headers,
        json={"current_pin": 246810, "new_pin": "482913", "confirm_pin": "482913"},
    )
    assert resp.status_code == 422
    resp = client.post(
        "/api/auth/change-mpin",
        headers=headers,
        json={"current_pin": "246810", "new_pin": 482913, "confirm_pin": 482913},
    )
    assert resp.status_code == 422


def test_non_text_announcement_fields_are_rejected(client, admin_headers):
    resp = client.post(
        "/api/announcements", headers=admin_headers, json={"title": 12345678901, "content": CONTENT}
    )
    assert resp.status_code == 422
    assert "title" in resp.get_json()["fields"]

    resp = client.post(
        "/api/announcements",
        headers=admin_headers,
        json={"title": "Vaccination Drive", "content": CONTENT, "send_sms": True, "sms_target_groups": "all"},
    )
    assert resp.status_code == 422
    assert "sms_target_groups" in resp.get_json()["fields"]


def test_non_text_request_purpose_is_rejected(client, resident_headers, document_types):
    clearance = document_types["Barangay Clearance"]
    resp = client.post(
        "/api/document-requests",
        headers=resident_headers,
        json={"document_type_id": clearance.id, "purpose": 42},
    )
    assert resp.status_code == 422
    assert "purpose" in resp.get_json()["fields"]


def test_resident_is_not_saved_when_account_cannot_be_created(client, admin_headers):
    resp = client.post(
        "/api/residents",
        headers=admin_headers,
        json={"first_name": "Ana", "last_name": "Reyes", "create_account": True},
    )
    assert resp.status_code == 422
    assert "birth_date" in resp.get_json()["fields"]

    resp = client.post(
        "/api/residents",
        headers=admin_headers,
        json={"first_name": "李", "last_name": "王", "birth_date": "1990-01-02", "create_account": True},
    )
    assert resp.status_code == 422

    assert client.get("/api/residents/stats", headers=admin_headers).get_json()["data"]["total"] == 0
