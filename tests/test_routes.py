import csv
import io

from smartlias.models import Announcement, DocumentRequest, TransactionLog
from smartlias.time_utils import utcnow

CONTENT = "Free vaccination at the barangay health center this Saturday morning."


def _login_admin(make_admin, login):
    make_admin()
    login("admin.staff", "010180")


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "ok"
    assert data["db"] is True
    assert data["mock_data"] is False


def test_index_requires_login(client):
    resp = client.get("/", follow_redirects=False)
    assert resp.status_code == 302
    assert "/login" in resp.headers.get("Location", "")


def test_public_home_lists_published_only(client, document_types, db_session):
    db_session.add(Announcement(title="Barangay Assembly Day", content=CONTENT, published_at=utcnow()))
    db_session.add(Announcement(title="Draft Only Announcement", content=CONTENT))
    db_session.commit()

    resp = client.get("/home")
    assert resp.status_code == 200
    assert b"Barangay Assembly Day" in resp.data
    assert b"Draft Only Announcement" not in resp.data
    assert b"Barangay Clearance" in resp.data


def test_admin_dashboard(client, make_admin, login, make_resident):
    make_resident()
    _login_admin(make_admin, login)
    resp = client.get("/")
    assert resp.status_code == 200


def test_resident_crud_pages(client, make_admin, login):
    _login_admin(make_admin, login)

    resp = client.post(
        "/residents/add",
        data={
            "first_name": "Ana",
            "last_name": "Reyes",
            "suffix": "0",
            "birth_date": "1985-09-12",
            "gender": "2",
            "civil_status": "Married",
            "contact_number": "09201234567",
            "purok": "4",
        },
        follow_redirects=False,
    )
    assert resp.status_code == 302
    location = resp.headers["Location"]

    resp = client.get(location)
    assert resp.status_code == 200
    assert b"Ana" in resp.data

    resident_id = int(location.rstrip("/").rsplit("/", 1)[-1])
    resp = client.post(f"/residents/{resident_id}/account", follow_redirects=True)
    assert b"ana.reyes" in resp.data

    resp = client.get("/residents?q=reyes")
    assert b"Reyes" in resp.data

    resp = client.post(f"/residents/{resident_id}/delete", follow_redirects=False)
    assert resp.status_code == 302
    assert b"Reyes" not in client.get("/residents").data
    assert client.get("/residents/9999").status_code == 404


def test_export_residents_csv(client, make_admin, login, make_resident):
    make_resident(first_name="Jose", last_name="Garcia", is_pwd=True)
    make_resident(first_name="Ana", last_name="Aquino")
    _login_admin(make_admin, login)

    resp = client.get("/residents/export/csv")
    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"
    rows = list(csv.reader(io.StringIO(resp.data.decode("utf-8"))))
    assert rows[0][:3] == ["ID", "Last Name", "First Name"]
    assert [r[1] for r in rows[1:]] == ["Aquino", "Garcia"]
    assert rows[2][-1] == "PWD"

    assert TransactionLog.query.filter_by(action="Exported residents (CSV)").count() == 1
    assert client.get("/residents/export/pdf").status_code == 404


def test_export_residents_xlsx(client, make_admin, login, make_resident):
    from openpyxl import load_workbook

    make_resident()
    _login_admin(make_admin, login)
    resp = client.get("/residents/export/xlsx")
    assert resp.status_code == 200
    sheet = load_workbook(io.BytesIO(resp.data)).active
    assert sheet.title == "Residents"
    assert sheet.cell(row=2, column=2).value == "Dela Cruz"


def test_announcement_pages(client, make_admin, login):
    _login_admin(make_admin, login)
    resp = client.post(
        "/announcements/new",
        data={"title": "Vaccination Drive", "content": CONTENT, "type": "2"},
        follow_redirects=False,
    )
    assert resp.status_code == 302
    announcement = Announcement.query.one()
    assert announcement.published_at is None

    resp = client.post(f"/announcements/{announcement.id}/publish", follow_redirects=True)
    assert resp.status_code == 200
    assert b"Announcement published." in resp.data
    assert announcement.published_at is not None

    resp = client.post(f"/announcements/{announcement.id}/publish", follow_redirects=True)
    assert b"already published" in resp.data

    resp = client.post(f"/announcements/{announcement.id}/delete", follow_redirects=False)
    assert resp.status_code == 302
    assert Announcement.query.count() == 0


def test_announcement_form_rejects_short_content(client, make_admin, login):
    _login_admin(make_admin, login)
    resp = client.post("/announcements/new", data={"title": "Vaccination Drive", "content": "Too short.", "type": "1"})
    assert resp.status_code == 200
    assert Announcement.query.count() == 0


def test_resident_files_request_and_admin_processes_it(client, make_user, make_admin, make_resident, login, document_types):
    user = make_user("juan.delacruz", "246810")
    resident = make_resident(user_id=user.id)
    clearance = document_types["Barangay Clearance"]

    login("juan.delacruz", "246810")
    resp = client.post(
        "/requests/new",
        data={"document_type_id": str(clearance.id), "purpose": "Employment requirement"},
        follow_redirects=False,
    )
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/my-requests")
    doc_request = DocumentRequest.query.one()
    assert doc_request.resident_id == resident.id
    assert client.get(f"/requests/{doc_request.id}").status_code == 403
    client.get("/logout")

    _login_admin(make_admin, login)
    for status in ("processing", "ready"):
        resp = client.post(f"/requests/{doc_request.id}", data={"status": status}, follow_redirects=False)
        assert resp.status_code == 302
    assert doc_request.status == "ready"
    assert client.get("/requests?status=ready").status_code == 200
    assert client.get("/requests/9999").status_code == 404
    client.get("/logout")

    login("juan.delacruz", "246810")
    resp = client.get(f"/requests/{doc_request.id}/claim-stub")
    assert resp.status_code == 200
    assert resp.mimetype == "application/pdf"


def test_claim_stub_is_private(client, make_user, make_resident, login, document_types, db_session):
    owner = make_resident()
    clearance = document_types["Barangay Clearance"]
    doc_request = DocumentRequest(
        resident_id=owner.id, resident_name="Juan Dela Cruz", document_type=clearance, purpose="Loan"
    )
    db_session.add(doc_request)
    db_session.commit()

    user = make_user("rosa.lim", "246810")
    make_resident(first_name="Rosa", last_name="Lim", user_id=user.id)
    login("rosa.lim", "246810")
    assert client.get(f"/requests/{doc_request.id}/claim-stub").status_code == 403
