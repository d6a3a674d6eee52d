from portal.models import Settings

from factories import login_staff, make_event, make_participation, make_student, make_user


def test_dashboard_counts(app, client):
    login_staff(client, make_user().id)
    event = make_event()
    make_participation(make_student(reg="21CS0001", percentage=90), event, status="pending")
    make_participation(make_student(reg="21CS0002", percentage=30), event, status="attended")
    stats = client.get("/api/admin/dashboard").get_json()["stats"]
    assert stats["totalStudents"] == 2
    assert stats["eligibleStudents"] == 1
    assert stats["pendingApprovals"] == 1
    assert stats["eventsByStatus"] == {"published": 1}


def test_announcement_filters_by_department(app, client, outbox):
    login_staff(client, make_user().id)
    make_student(reg="21CS0001", department="CSE")
    make_student(reg="21EC0001", department="ECE")
    received = []
    app.extensions["realtime"].subscribe(lambda room, name, payload: received.append(name))

    resp = client.post(
        "/api/admin/announcements",
        json={"subject": "Blood drive", "message": "Sign up by Friday", "department": "ECE"},
    )

    assert resp.get_json() == {"ok": True, "total": 1, "sent": 1, "failed": 0}
    assert outbox[0]["to"] == "21ec0001@campus.example.edu"
    assert received == ["announcement"]


def test_mail_settings_hide_password(app, client):
    login_staff(client, make_user().id)
    resp = client.put(
        "/api/admin/mail-settings",
        json={"smtpHost": "smtp.campus.example.edu", "smtpPort": "587", "smtpPass": "s3cret"},
    )
    settings = resp.get_json()["settings"]
    assert settings["smtpPort"] == 587
    assert settings["smtpPassSet"] is True
    assert "s3cret" not in resp.get_data(as_text=True)
    assert Settings.get().get_smtp_pass() == "s3cret"


def test_faculty_cannot_manage_users(app, client):
    login_staff(client, make_user(role="faculty", email="f@campus.example.edu").id)
    resp = client.post("/api/admin/users", json={"email": "x@campus.example.edu"})
    assert resp.status_code == 403


def test_admin_creates_faculty(app, client):
    login_staff(client, make_user().id)
    resp = client.post(
        "/api/admin/users", json={"email": "New@campus.example.edu", "role": "faculty"}
    )
    assert resp.status_code == 201
    assert resp.get_json()["user"]["email"] == "new@campus.example.edu"
    again = client.post("/api/admin/users", json={"email": "new@campus.example.edu"})
    assert again.status_code == 409


def test_event_analytics_counts_per_event(app, client):
    from datetime import datetime

    from portal.app import db

    login_staff(client, make_user().id)
    camp = make_event(
        title="Blood Donation Camp",
        event_type="blood donation",
        start_date=datetime(2025, 3, 10, 9),
        status="completed",
    )
    make_event(title="Tree Drive", event_type="tree plantation", start_date=datetime(2025, 4, 2, 9))
    approved = make_participation(make_student(reg="21CS0001"), camp, status="approved")
    approved.volunteer_hours = 3
    make_participation(make_student(reg="21CS0002"), camp, status="pending")
    rejected = make_participation(make_student(reg="21CS0003"), camp, status="rejected")
    rejected.volunteer_hours = 5
    db.session.commit()

    body = client.get("/api/admin/event-analytics").get_json()

    assert body["summary"]["total"] == 2
    assert body["summary"]["completed"] == 1
    assert body["summary"]["published"] == 1
    assert body["typeDistribution"] == {"blood donation": 1, "tree plantation": 1}
    assert body["monthlyEvents"] == {"2025-03": 1, "2025-04": 1}
    by_title = {row["title"]: row["stats"] for row in body["events"]}
    assert by_title["Blood Donation Camp"]["registered"] == 3
    assert by_title["Blood Donation Camp"]["pending"] == 1
    assert by_title["Blood Donation Camp"]["totalHours"] == 3
    assert by_title["Tree Drive"]["registered"] == 0


def test_student_analytics_distributions(app, client):
    from portal.app import db

    login_staff(client, make_user().id)
    make_student(reg="21CS0001", name="Asha", percentage=90, department="CSE", year=3)
    busy = make_student(reg="21EC0001", name="Ravi", percentage=50, department="ECE", year=2)
    make_student(reg="21EC0002", name="Meera", percentage=None, department="ECE", year=2)
    busy.total_volunteer_hours = 12
    db.session.commit()

    body = client.get("/api/admin/student-analytics").get_json()

    assert body["totalStudents"] == 3
    assert body["eligibleStudents"] == 1
    assert body["averageAttendance"] == 70.0
    assert body["averageVolunteerHours"] == 4.0
    assert body["departmentDistribution"] == {"CSE": 1, "ECE": 2}
    assert body["yearDistribution"] == {"Year 3": 1, "Year 2": 2}
    assert body["attendanceRanges"] == {
        "0-25%": 0,
        "26-50%": 1,
        "51-75%": 0,
        "76-100%": 1,
        "noData": 1,
    }
    assert body["topVolunteers"][0]["name"] == "Ravi"


def test_analytics_are_admin_only(app, client):
    login_staff(client, make_user(role="faculty", email="f@campus.example.edu").id)
    assert client.get("/api/admin/event-analytics").status_code == 403
    assert client.get("/api/admin/student-analytics").status_code == 403
