"""Attendance-based eligibility for event registration.

A student may register for events only when their recorded attendance
percentage is at least :data:`ATTENDANCE_THRESHOLD`. A missing percentage
is "no data", which is reported separately from 0%.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..app import db
from ..models import ATTENDANCE_THRESHOLD, Student
from ..shared.errors import AttendanceDataMissingError, IneligibleError


@dataclass(frozen=True)
class EligibilityResult:
    eligible: bool
    short_by: float


def check_eligibility(percentage: float | None) -> EligibilityResult:
    if percentage is None:
        raise AttendanceDataMissingError(
            "Attendance data not available. Please contact administrator."
        )
    percentage = float(percentage)
    short_by = round(max(0.0, ATTENDANCE_THRESHOLD - percentage), 2)
    return EligibilityResult(eligible=percentage >= ATTENDANCE_THRESHOLD, short_by=short_by)


def ensure_can_register(student: Student) -> EligibilityResult:
    """Raise unless ``student`` clears the attendance threshold."""
    result = check_eligibility(student.attendance_percentage)
    if not result.eligible:
        raise IneligibleError(
            f"Registration denied: Your attendance is {student.attendance_percentage:g}%. "
            f"Minimum required attendance is {ATTENDANCE_THRESHOLD}%.",
            currentAttendance=student.attendance_percentage,
            requiredAttendance=ATTENDANCE_THRESHOLD,
            shortBy=result.short_by,
        )
    return result


def eligibility_status(student: Student) -> dict:
    payload = {
        "studentId": student.id,
        "registrationNumber": student.registration_number,
        "currentAttendance": student.attendance_percentage,
        "requiredAttendance": ATTENDANCE_THRESHOLD,
    }
    try:
        result = check_eligibility(student.attendance_percentage)
    except AttendanceDataMissingError as exc:
        payload.update(isEligible=False, shortBy=None, message=str(exc))
        return payload
    if result.eligible:
        message = "You are eligible to register for events."
    else:
        message = (
            f"You need {result.short_by:g}% more attendance to become eligible."
        )
    payload.update(isEligible=result.eligible, shortBy=result.short_by, message=message)
    return payload


def bulk_check_eligibility(student_ids: Iterable[int]) -> dict:
    ids = [int(sid) for sid in student_ids]
    students = {
        s.id: s for s in db.session.query(Student).filter(Student.id.in_(ids)).all()
    } if ids else {}
    results = []
    eligible = 0
    for sid in ids:
        student = students.get(sid)
        if student is None:
            results.append({"studentId": sid, "found": False, "isEligible": False})
            continue
        entry = eligibility_status(student)
        entry["found"] = True
        entry["name"] = student.name
        if entry["isEligible"]:
            eligible += 1
        results.append(entry)
    return {
        "results": results,
        "summary": {
            "total": len(ids),
            "eligible": eligible,
            "notEligible": len(ids) - eligible,
        },
    }
