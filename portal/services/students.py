from __future__ import annotations

from typing import Mapping

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..app import db
from ..models import DEPARTMENTS, AttendanceRecord, Notification, Participation, Student
from ..shared.errors import NotFoundError, StateError, ValidationError

REQUIRED_FIELDS = ("registrationNumber", "name", "email", "department", "year")


def get_student(student_id: int) -> Student:
    student = db.session.get(Student, student_id)
    if not student:
        raise NotFoundError("Student not found")
    return student


def _apply_fields(student: Student, data: Mapping) -> None:
    if "name" in data:
        student.name = (data.get("name") or "").strip()
        if not student.name:
            raise ValidationError("name cannot be empty")
    if "email" in data:
        email = (data.get("email") or "").strip()
        if "@" not in email:
            raise ValidationError("A valid email is required")
        student.email = email
    if "department" in data:
        department = (data.get("department") or "").strip().upper()
        if department not in DEPARTMENTS:
            raise ValidationError(f"Invalid department: {data.get('department')}")
        student.department = department
    if "year" in data:
        try:
            year = int(data.get("year"))
        except (TypeError, ValueError):
            raise ValidationError("year must be a number") from None
        if not 1 <= year <= 4:
            raise ValidationError("year must be between 1 and 4")
        student.year = year
    if "phoneNumber" in data:
        student.phone_number = (data.get("phoneNumber") or "").strip() or None


def enroll_student(data: Mapping) -> Student:
    missing = [key for key in REQUIRED_FIELDS if not data.get(key)]
    if missing:
        raise ValidationError("Missing required fields: " + ", ".join(missing))
    student = Student(registration_number=data["registrationNumber"], total_volunteer_hours=0)
    _apply_fields(student, data)
    if data.get("password"):
        student.set_password(data["password"])
    if data.get("attendancePercentage") not in (None, ""):
        student.attendance_percentage = float(data["attendancePercentage"])
    else:
        student.attendance_percentage = None
    db.session.add(student)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise StateError("A student with this registration number or email already exists") from None
    current_app.logger.info("[STUDENT] enrolled reg=%s", student.registration_number)
    return student


def update_student(student: Student, data: Mapping) -> Student:
    _apply_fields(student, data)
    if data.get("password"):
        student.set_password(data["password"])
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise StateError("Email already in use") from None
    return student


def list_students(filters: Mapping | None = None) -> list[Student]:
    filters = filters or {}
    query = db.session.query(Student)
    if filters.get("department"):
        query = query.filter(Student.department == str(filters["department"]).upper())
    if filters.get("year"):
        query = query.filter(Student.year == int(filters["year"]))
    eligible = filters.get("eligible")
    if eligible not in (None, ""):
        flag = str(eligible).lower() in {"1", "true", "yes"}
        query = query.filter(Student.is_eligible.is_(flag))
    if filters.get("search"):
        term = f"%{str(filters['search']).strip().lower()}%"
        query = query.filter(
            func.lower(Student.name).like(term)
            | func.lower(Student.registration_number).like(term)
        )
    return query.order_by(Student.registration_number).all()


def delete_student(student: Student) -> dict:
    """Remove the student with their participations and attendance records."""
    reg_no = student.registration_number
    participations = (
        db.session.query(Participation).filter(Participation.student_id == student.id).count()
    )
    records = (
        db.session.query(AttendanceRecord)
        .filter(AttendanceRecord.registration_number == reg_no)
        .delete(synchronize_session=False)
    )
    db.session.query(Notification).filter(Notification.student_id == student.id).delete(
        synchronize_session=False
    )
    db.session.delete(student)
    db.session.commit()
    current_app.logger.info(
        "[STUDENT] deleted reg=%s participations=%s attendance_records=%s",
        reg_no,
        participations,
        records,
    )
    return {"participations": participations, "attendanceRecords": records}


def student_history(student: Student) -> list[dict]:
    rows = (
        db.session.query(Participation)
        .filter(Participation.student_id == student.id)
        .order_by(Participation.registered_at.desc(), Participation.id.desc())
        .all()
    )
    return [p.to_dict(include_event=True) for p in rows]


def student_stats(student: Student) -> dict:
    counts = dict(
        db.session.query(Participation.status, func.count(Participation.id))
        .filter(Participation.student_id == student.id)
        .group_by(Participation.status)
        .all()
    )
    certificates = (
        db.session.query(func.count(Participation.id))
        .filter(
            Participation.student_id == student.id,
            (Participation.certificate_url.isnot(None))
            | (Participation.certificate_delivery == "sent"),
        )
        .scalar()
    )
    return {
        "totalVolunteerHours": student.total_volunteer_hours or 0,
        "totalEvents": sum(counts.values()),
        "byStatus": counts,
        "completedEvents": counts.get("completed", 0),
        "certificates": certificates or 0,
        "attendancePercentage": student.attendance_percentage,
        "isEligible": bool(student.is_eligible),
    }
