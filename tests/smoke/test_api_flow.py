from io import BytesIO

from portal.app import db
from portal.models import Event

from factories import make_event, make_student, make_template_pdf, make_user


def _login(client, email, password):
    client.post("/api/auth/logout")
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["user"]


def test_attendance_to_certificate_flow(app, client, outbox):
    make_user(email="coord@campus.example.edu", password="coord-pass")
    make_student(reg="21CS0001", name="Asha Rao", percentage=None, password="asha-pass")
    event = make_event(title="Tree Plantation", hours_awarded=4)

    # no attendance yet: registration refused
    _login(client, "21cs0001@campus.example.edu", "asha-pass")
    assert client.post(f"/api/events/{event.id}/register").status_code == 400

    _login(client, "coord@campus.example.edu", "coord-pass")
    imported = client.post(
        "/api/attendance/import",
        data={
            "file": (BytesIO(b"Reg No,Present,Total\n21CS0001,14,20\n"), "march.csv"),
            "month": "3",
            "year": "2025",
        },
        content_type="multipart/form-data",
    )
    assert imported.get_json()["results"]["summary"]["successful"] == 1

    # 70% is below the bar
    _login(client, "21cs0001@campus.example.edu", "asha-pass")
    denied = client.post(f"/api/events/{event.id}/register")
    assert denied.status_code == 403
    assert denied.get_json()["shortBy"] == 5

    _login(client, "coord@campus.example.edu", "coord-pass")
    client.post(
        "/api/attendance/import",
        json={"rows": [{"registrationNumber": "21CS0001", "classesAttended": 17, "totalClasses": 20}],
              "month": 3, "year": 2025},
    )

    _login(client, "21cs0001@campus.example.edu", "asha-pass")
    eligibility = client.get("/api/students/eligibility").get_json()
    assert eligibility["isEligible"] is True
    registered = client.post(f"/api/events/{event.id}/register")
    assert registered.status_code == 201
    participation_id = registered.get_json()["participation"]["id"]

    _login(client, "coord@campus.example.edu", "coord-pass")
    assert client.post(f"/api/participations/{participation_id}/approve").status_code == 200
    assert client.post(f"/api/participations/{participation_id}/attended").status_code == 200
    client.post(
        f"/api/certificates/events/{event.id}/template",
        data={"template": (BytesIO(make_template_pdf()), "template.pdf")},
        content_type="multipart/form-data",
    )
    client.post(
        f"/api/certificates/events/{event.id}/place",
        json={"field": "name", "clickX": 421, "clickY": 250},
    )
    preview = client.post(f"/api/certificates/events/{event.id}/preview", json={})
    assert preview.mimetype == "application/pdf"

    sent = client.post(f"/api/certificates/events/{event.id}/send").get_json()
    assert sent["success"] is True
    assert sent["results"]["successful"] == 1
    assert db.session.get(Event, event.id).certificates_sent is True

    _login(client, "21cs0001@campus.example.edu", "asha-pass")
    stats = client.get("/api/students/stats").get_json()["stats"]
    assert stats["totalVolunteerHours"] == 4
    notes = client.get("/api/students/notifications").get_json()["notifications"]
    assert {n["type"] for n in notes} >= {"approval", "certificate"}
    certificate_mail = [m for m in outbox if m["attachments"]]
    assert certificate_mail[0]["attachments"][0].filename == "Certificate_Asha_Rao_Tree_Plantation.pdf"


def test_anonymous_requests_are_rejected(app, client):
    assert client.get("/api/events").status_code == 401
    assert client.get("/api/students/profile").get_json() == {
        "ok": False,
        "error": "Authentication required.",
    }
