from datetime import timedelta

import pytest

from portal.app import db
from portal.models import Notification, Participation, Student
from portal.services import participations
from portal.shared.errors import NotFoundError, StateError, ValidationError
from portal.shared.time import utcnow_naive

from factories import login_staff, login_student, make_event, make_participation, make_student, make_user


def test_register_denied_below_threshold(app, client, outbox):
    student = make_student(percentage=72.5)
    event = make_event()
    login_student(client, student.id)

    resp = client.post(f"/api/events/{event.id}/register")

    assert resp.status_code == 403
    body = resp.get_json()
    assert body["ok"] is False
    assert "75%" in body["error"]
    assert body["currentAttendance"] == 72.5
    assert body["shortBy"] == 2.5
    assert Participation.query.count() == 0
    assert outbox == []


def test_register_without_attendance_data(app, client):
    student = make_student(percentage=None)
    event = make_event()
    login_student(client, student.id)
    resp = client.post(f"/api/events/{event.id}/register")
    assert resp.status_code == 400
    assert "Attendance data not available" in resp.get_json()["error"]


def test_register_creates_pending_and_confirms(app, client, outbox):
    student = make_student(percentage=80)
    event = make_event(title="Health Camp")
    login_student(client, student.id)

    resp = client.post(f"/api/events/{event.id}/register")

    assert resp.status_code == 201
    assert resp.get_json()["participation"]["status"] == "pending"
    assert event.current_participants == 1
    assert outbox[0]["subject"] == "Registration Confirmed: Health Camp"

    again = client.post(f"/api/events/{event.id}/register")
    assert again.status_code == 409
    assert again.get_json()["error"] == "Already registered for this event"


def test_register_auto_approves_when_no_approval_needed(app, outbox):
    student = make_student()
    event = make_event(approval_required=False, hours_awarded=4)
    participation = participations.register(student, event.id)
    assert participation.status == "approved"
    assert participation.volunteer_hours == 4
    assert db.session.get(Student, student.id).total_volunteer_hours == 4


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"status": "draft"}, "not open"),
        ({"registration_deadline": utcnow_naive() - timedelta(days=1)}, "deadline"),
        ({"max_participants": 1, "current_participants": 1}, "full"),
    ],
)
def test_register_closed_events(app, overrides, message):
    student = make_student()
    event = make_event(**overrides)
    with pytest.raises(ValidationError) as excinfo:
        participations.register(student, event.id)
    assert message in str(excinfo.value)


def test_register_unknown_event(app):
    with pytest.raises(NotFoundError):
        participations.register(make_student(), 999)


def test_approval_awards_hours_and_notifies(app, outbox):
    student = make_student()
    event = make_event(hours_awarded=5)
    participation = make_participation(student, event, status="pending")
    staff = make_user(role="faculty", email="faculty@campus.example.edu")

    participations.approve(participation, staff)

    assert participation.status == "approved"
    assert participation.approved_by_id == staff.id
    assert student.total_volunteer_hours == 5
    assert outbox[0]["subject"] == f"Participation Approved: {event.title}"
    note = Notification.query.filter_by(student_id=student.id).one()
    assert note.notification_type == "approval"


def test_transitions_follow_lifecycle(app, outbox):
    participation = make_participation(make_student(), make_event(), status="pending")
    with pytest.raises(StateError):
        participations.mark_attended(participation)
    participations.approve(participation)
    participations.mark_attended(participation)
    assert participation.attendance_date is not None
    participations.complete(participation)
    assert participation.status == "completed"
    with pytest.raises(StateError):
        participations.approve(participation)


def test_reject_requires_reason_and_frees_seat(app, outbox):
    event = make_event(current_participants=1)
    participation = make_participation(make_student(), event, status="pending")
    with pytest.raises(ValidationError):
        participations.reject(participation, "  ")
    participations.reject(participation, "Event capacity reached")
    assert participation.status == "rejected"
    assert participation.rejection_reason == "Event capacity reached"
    assert event.current_participants == 0


def test_rejected_hours_not_counted(app, outbox):
    student = make_student()
    a = make_participation(student, make_event(hours_awarded=2), status="pending")
    b = make_participation(student, make_event(title="Other", hours_awarded=3), status="pending")
    participations.approve(a)
    participations.reject(b, "duplicate")
    assert participations.recompute_student_hours(student) == 2


def test_bulk_approve_reports_failures(app, outbox):
    event = make_event()
    first = make_participation(make_student(reg="21CS0001"), event, status="pending")
    second = make_participation(make_student(reg="21CS0002"), event, status="completed")
    result = participations.bulk_approve([first.id, second.id, 999])
    assert result["approved"] == [first.id]
    assert result["count"] == 1
    assert {f["participationId"] for f in result["failed"]} == {second.id, 999}


def test_evidence_upload_classifies_files(app):
    participation = make_participation(make_student(), make_event(), status="approved")
    created = participations.upload_evidence(
        participation,
        [("photo.JPG", b"\xff\xd8"), ("report.pdf", b"%PDF-1.4")],
        "Planted 20 saplings",
    )
    assert [e.evidence_type for e in created] == ["image", "pdf"]
    assert participation.submission_text == "Planted 20 saplings"
    with pytest.raises(ValidationError):
        participations.upload_evidence(participation, [("run.exe", b"MZ")])


def test_staff_approve_via_api(app, client, outbox):
    admin = make_user()
    participation = make_participation(make_student(), make_event(), status="pending")
    login_staff(client, admin.id)
    resp = client.post(f"/api/participations/{participation.id}/approve")
    assert resp.status_code == 200
    assert resp.get_json()["participation"]["status"] == "approved"


def test_student_cannot_approve(app, client):
    student = make_student()
    participation = make_participation(student, make_event(), status="pending")
    login_student(client, student.id)
    resp = client.post(f"/api/participations/{participation.id}/approve")
    assert resp.status_code == 401


def test_status_filter_must_be_known(app):
    student = make_student()
    make_participation(student, make_event(), status="pending")
    assert len(participations.list_for_student(student, "pending")) == 1
    with pytest.raises(ValidationError):
        participations.list_for_student(student, "lost")
