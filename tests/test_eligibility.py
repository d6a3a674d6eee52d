import pytest

from portal.services.eligibility import (
    bulk_check_eligibility,
    check_eligibility,
    eligibility_status,
    ensure_can_register,
)
from portal.shared.errors import AttendanceDataMissingError, IneligibleError, ValidationError

from factories import make_student


@pytest.mark.no_smoke
@pytest.mark.parametrize("pct", [0, 10, 50, 74.99, 75, 75.01, 90, 100])
def test_eligible_iff_at_least_threshold(pct):
    result = check_eligibility(pct)
    assert result.eligible == (pct >= 75)
    assert result.short_by == round(max(0, 75 - pct), 2)


def test_short_by_for_72_5():
    result = check_eligibility(72.5)
    assert result.eligible is False
    assert result.short_by == 2.5


def test_exact_threshold_is_eligible():
    result = check_eligibility(75)
    assert result.eligible is True
    assert result.short_by == 0


def test_missing_percentage_is_distinct_from_zero():
    with pytest.raises(AttendanceDataMissingError) as excinfo:
        check_eligibility(None)
    assert isinstance(excinfo.value, ValidationError)
    assert check_eligibility(0).eligible is False


def test_student_flag_follows_percentage(app):
    student = make_student(percentage=74.9)
    assert student.is_eligible is False
    student.attendance_percentage = 75
    assert student.is_eligible is True
    student.attendance_percentage = None
    assert student.is_eligible is False


def test_ensure_can_register_message_names_threshold(app):
    student = make_student(percentage=60)
    with pytest.raises(IneligibleError) as excinfo:
        ensure_can_register(student)
    assert "75%" in str(excinfo.value)
    assert "60%" in str(excinfo.value)
    assert excinfo.value.status_code == 403


def test_eligibility_status_without_data(app):
    student = make_student(percentage=None)
    status = eligibility_status(student)
    assert status["isEligible"] is False
    assert status["shortBy"] is None
    assert "not available" in status["message"]


def test_bulk_check_counts(app):
    a = make_student(reg="21CS0001", percentage=90)
    b = make_student(reg="21CS0002", percentage=50)
    result = bulk_check_eligibility([a.id, b.id, 999])
    assert result["summary"] == {"total": 3, "eligible": 1, "notEligible": 2}
    missing = [r for r in result["results"] if not r["found"]]
    assert missing[0]["studentId"] == 999
