from io import BytesIO

import pytest
from openpyxl import Workbook

from portal.app import db
from portal.models import AttendanceRecord, Student
from portal.services import attendance
from portal.services.attendance import (
    compute_percentage,
    import_attendance,
    parse_attendance_file,
)
from portal.shared.errors import ValidationError

from factories import make_student


@pytest.mark.no_smoke
def test_percentage_zero_when_no_classes():
    assert compute_percentage(0, 0) == 0
    assert compute_percentage(5, 0) == 0


@pytest.mark.no_smoke
def test_percentage_rounds_to_two_decimals():
    assert compute_percentage(2, 3) == 66.67
    assert compute_percentage(18, 20) == 90.0


def test_import_updates_student_and_eligibility(app):
    student = make_student(reg="21CS0001", percentage=None)
    summary = import_attendance(
        [{"registrationNumber": "21cs0001", "classesAttended": 18, "totalClasses": 20}],
        month=3,
        year=2025,
    )
    assert len(summary.successful) == 1
    db.session.refresh(student)
    assert student.attendance_percentage == 90.0
    assert student.is_eligible is True
    record = AttendanceRecord.query.filter_by(registration_number="21CS0001").one()
    assert (record.month, record.year, record.percentage) == (3, 2025, 90.0)


def test_reimport_same_month_upserts(app):
    make_student(reg="21CS0001")
    rows = [{"registrationNumber": "21CS0001", "classesAttended": 10, "totalClasses": 20}]
    import_attendance(rows, month=1, year=2025)
    rows[0]["classesAttended"] = 16
    import_attendance(rows, month=1, year=2025)
    records = AttendanceRecord.query.filter_by(registration_number="21CS0001").all()
    assert len(records) == 1
    assert records[0].percentage == 80.0
    assert db.session.get(Student, 1).is_eligible is True


def test_unknown_students_reported_not_found(app):
    make_student(reg="21CS0001")
    rows = [
        {"registrationNumber": "21CS0001", "classesAttended": 15, "totalClasses": 20},
        {"registrationNumber": "21CS9998", "classesAttended": 15, "totalClasses": 20},
        {"registrationNumber": "21CS9999", "classesAttended": 15, "totalClasses": 20},
    ]
    result = import_attendance(rows, month=2, year=2025).as_dict()
    assert result["summary"] == {"total": 3, "successful": 1, "failed": 0, "notFound": 2}
    assert {item["registrationNumber"] for item in result["notFound"]} == {
        "21CS9998",
        "21CS9999",
    }


def test_missing_fields_fail_without_touching_others(app):
    student = make_student(reg="21CS0001", percentage=50)
    rows = [
        {"classesAttended": 10, "totalClasses": 20},
        {"registrationNumber": "21CS0001"},
        {"registrationNumber": "21CS0001", "classesAttended": "x", "totalClasses": 20},
        {"registrationNumber": "21CS0001", "percentage": "82.5"},
    ]
    summary = import_attendance(rows, month=4, year=2025)
    assert [f["error"] for f in summary.failed][:2] == [
        "Missing required fields",
        "Missing required fields",
    ]
    assert len(summary.failed) == 3
    assert len(summary.successful) == 1
    db.session.refresh(student)
    assert student.attendance_percentage == 82.5
    assert student.is_eligible is True


def test_attended_above_total_is_clamped(app):
    student = make_student(reg="21CS0001", percentage=40)
    summary = import_attendance(
        [{"registrationNumber": "21CS0001", "classesAttended": 22, "totalClasses": 20}],
        month=4,
        year=2025,
    )
    assert summary.failed == []
    assert summary.successful[0]["percentage"] == 100.0
    db.session.refresh(student)
    assert student.attendance_percentage == 100.0
    assert student.is_eligible is True


def test_manual_update_clamps_attended_above_total(app):
    student = make_student(reg="21CS0001", percentage=40)
    result = attendance.update_student_attendance(student, 25, 20)
    assert result["percentage"] == 100.0
    assert result["isEligible"] is True


@pytest.mark.parametrize(
    "row",
    [
        {"registrationNumber": "21CS0001", "percentage": "nan"},
        {"registrationNumber": "21CS0001", "percentage": "inf"},
        {"registrationNumber": "21CS0001", "classesAttended": "nan", "totalClasses": 20},
        {"registrationNumber": "21CS0001", "classesAttended": 10, "totalClasses": "inf"},
    ],
)
def test_non_finite_values_fail_the_row(app, row):
    student = make_student(reg="21CS0001", percentage=40)
    summary = import_attendance([row], month=4, year=2025)
    assert len(summary.failed) == 1
    assert summary.successful == []
    db.session.refresh(student)
    assert student.attendance_percentage == 40
    assert student.is_eligible is False


def test_non_object_rows_fail_and_later_rows_still_import(app):
    student = make_student(reg="21CS0001", percentage=40)
    rows = [
        "garbage",
        ["21CS0001", 18, 20],
        {"registrationNumber": "21CS0001", "classesAttended": 18, "totalClasses": 20},
    ]
    summary = import_attendance(rows, month=4, year=2025)
    assert [f["error"] for f in summary.failed] == ["Row must be an object"] * 2
    assert summary.failed[0]["row"] == "garbage"
    assert len(summary.successful) == 1
    db.session.refresh(student)
    assert student.attendance_percentage == 90.0


def test_student_percentage_rejects_nan(app):
    student = make_student(reg="21CS0001", percentage=40)
    with pytest.raises(ValidationError):
        student.attendance_percentage = float("nan")
    assert student.is_eligible is False


def test_zero_total_classes_gives_zero_percent(app):
    student = make_student(reg="21CS0001", percentage=90)
    import_attendance(
        [{"registrationNumber": "21CS0001", "classesAttended": 0, "totalClasses": 0}],
        month=5,
        year=2025,
    )
    db.session.refresh(student)
    assert student.attendance_percentage == 0
    assert student.is_eligible is False


def test_month_defaults_to_current(app):
    from portal.shared.time import now_utc

    make_student(reg="21CS0001")
    import_attendance([{"registrationNumber": "21CS0001", "classesAttended": 1, "totalClasses": 2}])
    record = AttendanceRecord.query.one()
    now = now_utc()
    assert (record.month, record.year) == (now.month, now.year)


@pytest.mark.no_smoke
def test_parse_csv_with_alias_headers(app):
    data = b"Reg No,Present Days,Total Days\n21cs0001,18,20\n,,\n21CS0002,5,10\n"
    rows = parse_attendance_file("march.csv", BytesIO(data))
    assert rows == [
        {"registrationNumber": "21cs0001", "classesAttended": "18", "totalClasses": "20"},
        {"registrationNumber": "21CS0002", "classesAttended": "5", "totalClasses": "10"},
    ]


@pytest.mark.no_smoke
def test_parse_xlsx(app):
    wb = Workbook()
    ws = wb.active
    ws.append(["Registration Number", "Classes Attended", "Total Classes", "Month", "Year"])
    ws.append(["21CS0001", 18, 20, 3, 2025])
    buffer = BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    rows = parse_attendance_file("march.xlsx", buffer)
    assert rows == [
        {
            "registrationNumber": "21CS0001",
            "classesAttended": 18,
            "totalClasses": 20,
            "month": 3,
            "year": 2025,
        }
    ]


@pytest.mark.no_smoke
def test_parse_rejects_unknown_format(app):
    with pytest.raises(ValidationError):
        parse_attendance_file("march.pdf", BytesIO(b"%PDF"))


def test_update_student_attendance_reports_change(app):
    student = make_student(reg="21CS0001", percentage=60)
    result = attendance.update_student_attendance(student, 16, 20)
    assert result["previousEligible"] is False
    assert result["isEligible"] is True
    assert result["eligibilityChanged"] is True


def test_report_stats_and_below_threshold(app):
    make_student(reg="21CS0001", percentage=90, department="CSE")
    make_student(reg="21EC0001", percentage=60, department="ECE")
    make_student(reg="21EC0002", percentage=None, department="ECE")
    report = attendance.attendance_report({})
    stats = report["stats"]
    assert stats["totalStudents"] == 3
    assert stats["eligible"] == 1
    assert stats["averageAttendance"] == 75.0
    assert stats["highestAttendance"] == 90
    assert stats["lowestAttendance"] == 60
    below = attendance.students_below_threshold()
    assert [s.registration_number for s in below] == ["21EC0001"]


def test_alerts_continue_after_failure(app, monkeypatch):
    make_student(reg="21CS0001", percentage=40)
    make_student(reg="21CS0002", percentage=50)
    calls = []

    def flaky_send(recipients, subject, body, html=None, attachments=None):
        calls.append(recipients)
        if len(calls) == 1:
            return {"ok": False, "detail": "smtp down"}
        return {"ok": True, "detail": "sent"}

    from portal import emailer

    monkeypatch.setattr(emailer, "send", flaky_send)
    result = attendance.send_attendance_alerts()
    assert result["total"] == 2
    assert result["sent"] == 1
    assert result["failed"] == 1
    assert len(calls) == 2


def test_import_endpoint_accepts_json_rows(app, client):
    from factories import login_staff, make_user

    admin = make_user()
    make_student(reg="21CS0001", percentage=None)
    login_staff(client, admin.id)
    resp = client.post(
        "/api/attendance/import",
        json={
            "attendanceData": [
                {"registrationNumber": "21CS0001", "classesAttended": 18, "totalClasses": 20},
                {"registrationNumber": "NOPE", "classesAttended": 1, "totalClasses": 2},
            ],
            "month": 3,
            "year": 2025,
        },
    )
    assert resp.status_code == 200
    summary = resp.get_json()["results"]["summary"]
    assert summary == {"total": 2, "successful": 1, "failed": 0, "notFound": 1}
