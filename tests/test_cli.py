import manage
from portal.app import db
from portal.models import AttendanceRecord, Student, User

from factories import attach_template, make_event, make_participation, make_student


def test_create_admin_then_reset(app):
    runner = app.test_cli_runner()
    result = runner.invoke(
        manage.create_admin,
        ["--email", "Coord@Campus.example.edu", "--password", "pw-1", "--name", "Coordinator"],
    )
    assert result.exit_code == 0, result.output
    assert "created coord@campus.example.edu role=admin" in result.output

    result = runner.invoke(
        manage.create_admin,
        ["--email", "coord@campus.example.edu", "--password", "pw-2", "--role", "faculty"],
    )
    assert "updated" in result.output
    user = User.query.one()
    assert user.role == "faculty"
    assert user.check_password("pw-2")


def test_import_attendance_command(app, tmp_path):
    make_student(reg="21CS0001", percentage=None)
    sheet = tmp_path / "march.csv"
    sheet.write_text(
        "Registration Number,Classes Attended,Total Classes\n21CS0001,15,20\n21CS0404,1,2\n"
    )
    result = app.test_cli_runner().invoke(
        manage.import_attendance, [str(sheet), "--month", "3", "--year", "2025"]
    )
    assert result.exit_code == 0, result.output
    assert "total=2 successful=1 failed=0 not_found=1" in result.output
    assert db.session.get(Student, 1).attendance_percentage == 75.0
    assert AttendanceRecord.query.count() == 1


def test_send_certificates_command(app, outbox):
    event = make_event()
    attach_template(app, event)
    from portal.shared.certificates_layout import CertificateLayout, place_field

    event.certificate_layout = place_field(CertificateLayout(), "name", 100, 100, 1)
    db.session.commit()
    make_participation(make_student(), event)
    runner = app.test_cli_runner()

    result = runner.invoke(manage.send_certificates, ["--event", str(event.id)])
    assert result.exit_code == 0, result.output
    assert "total=1 successful=1 failed=0" in result.output

    result = runner.invoke(manage.send_certificates, ["--event", str(event.id)])
    assert result.exit_code != 0
    assert "Certificates already sent" in result.output


def test_attendance_alerts_command(app, outbox):
    make_student(reg="21CS0001", percentage=50)
    make_student(reg="21CS0002", percentage=90)
    result = app.test_cli_runner().invoke(manage.attendance_alerts, [])
    assert result.exit_code == 0, result.output
    assert "candidates=1 sent=1 failed=0" in result.output
    assert outbox[0]["subject"] == "Attendance Alert - Action Required"


def test_app_fixture_uses_in_memory_database(app):
    assert app.config["SQLALCHEMY_DATABASE_URI"] == "sqlite:///:memory:"
