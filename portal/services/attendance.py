from __future__ import annotations

import csv
import io
import math
import re
from dataclasses import dataclass, field
from typing import IO, Iterable, Mapping

from flask import current_app
from openpyxl import load_workbook
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..app import db
from ..models import ATTENDANCE_THRESHOLD, AttendanceRecord, Student, User
from ..shared.errors import NotFoundError, ValidationError
from ..shared.time import now_utc
from .notifications import send_templated_email

MISSING_FIELDS = "Missing required fields"

# normalized header -> canonical row key
HEADER_ALIASES: dict[str, str] = {
    "registrationnumber": "registrationNumber",
    "regno": "registrationNumber",
    "regnumber": "registrationNumber",
    "registrationno": "registrationNumber",
    "rollno": "registrationNumber",
    "classesattended": "classesAttended",
    "attended": "classesAttended",
    "presentdays": "classesAttended",
    "present": "classesAttended",
    "totalclasses": "totalClasses",
    "totaldays": "totalClasses",
    "total": "totalClasses",
    "percentage": "percentage",
    "attendance": "percentage",
    "attendancepercentage": "percentage",
    "month": "month",
    "year": "year",
    "remarks": "remarks",
}


def clamp_percentage(value) -> float:
    number = float(value or 0)
    if not math.isfinite(number):
        raise ValidationError("percentage must be a finite number")
    return round(max(0.0, min(100.0, number)), 2)


def compute_percentage(attended: int, total: int) -> float:
    if not total:
        return 0.0
    return clamp_percentage(attended / total * 100)


@dataclass
class ImportSummary:
    successful: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    not_found: list[dict] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed) + len(self.not_found)

    def as_dict(self) -> dict:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "notFound": self.not_found,
            "summary": {
                "total": self.total,
                "successful": len(self.successful),
                "failed": len(self.failed),
                "notFound": len(self.not_found),
            },
        }


def _normalize_header(value) -> str | None:
    if value is None:
        return None
    key = re.sub(r"[^a-z]", "", str(value).lower())
    return HEADER_ALIASES.get(key)


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_int(value, label: str) -> int:
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number") from None
    if not math.isfinite(number) or number < 0 or number != int(number):
        raise ValidationError(f"{label} must be a whole number >= 0")
    return int(number)


def _as_percentage(value) -> float:
    raw = str(value).strip().rstrip("%")
    try:
        number = float(raw)
    except ValueError:
        raise ValidationError("percentage must be a number") from None
    if not math.isfinite(number):
        raise ValidationError("percentage must be a finite number")
    if number < 0 or number > 100:
        raise ValidationError("percentage must be between 0 and 100")
    return number


def _period(row: Mapping, month, year) -> tuple[int, int]:
    now = now_utc()
    month_value = row.get("month") if not _blank(row.get("month")) else month
    year_value = row.get("year") if not _blank(row.get("year")) else year
    month_int = _as_int(month_value, "month") if month_value is not None else now.month
    year_int = _as_int(year_value, "year") if year_value is not None else now.year
    if not 1 <= month_int <= 12:
        raise ValidationError("month must be between 1 and 12")
    if not 2000 <= year_int <= 2100:
        raise ValidationError("year must be between 2000 and 2100")
    return month_int, year_int


def _upsert_record(
    reg_no: str,
    month: int,
    year: int,
    attended: int | None,
    total: int | None,
    percentage: float | None,
    imported_by_id: int | None,
    remarks: str | None = None,
) -> AttendanceRecord:
    record = (
        db.session.query(AttendanceRecord)
        .filter_by(registration_number=reg_no, month=month, year=year)
        .one_or_none()
    )
    if record is None:
        record = AttendanceRecord(registration_number=reg_no, month=month, year=year)
        db.session.add(record)
    record.classes_attended = attended
    record.total_classes = total
    if total is None:
        record.percentage = percentage
    record.imported_at = now_utc()
    record.imported_by_id = imported_by_id
    if remarks:
        record.remarks = remarks
    record.recompute_percentage()
    return record


def _import_row(row: Mapping, month, year, imported_by_id) -> tuple[str, dict]:
    if not isinstance(row, Mapping):
        return "failed", {"row": row, "error": "Row must be an object"}
    reg_raw = row.get("registrationNumber")
    has_counts = not _blank(row.get("classesAttended")) and not _blank(row.get("totalClasses"))
    has_percentage = not _blank(row.get("percentage"))
    if _blank(reg_raw) or not (has_counts or has_percentage):
        return "failed", {"row": dict(row), "error": MISSING_FIELDS}
    reg_no = str(reg_raw).strip().upper()

    student = (
        db.session.query(Student).filter(Student.registration_number == reg_no).one_or_none()
    )
    if student is None:
        return "not_found", {"registrationNumber": reg_no, "error": "Student not found"}

    row_month, row_year = _period(row, month, year)
    attended = total = percentage = None
    if has_counts:
        attended = _as_int(row["classesAttended"], "classesAttended")
        total = _as_int(row["totalClasses"], "totalClasses")
    else:
        percentage = _as_percentage(row["percentage"])

    record = _upsert_record(
        reg_no, row_month, row_year, attended, total, percentage, imported_by_id,
        remarks=row.get("remarks") or None,
    )
    student.attendance_percentage = record.percentage
    return "successful", {
        "registrationNumber": reg_no,
        "name": student.name,
        "percentage": record.percentage,
        "isEligible": student.is_eligible,
    }


def import_attendance(
    rows: Iterable[Mapping],
    month: int | None = None,
    year: int | None = None,
    imported_by: User | int | None = None,
) -> ImportSummary:
    """Upsert monthly attendance rows and refresh each student's eligibility.

    Each row is its own unit of work: committed on success, rolled back on
    failure, so one bad row never affects the others.
    """
    imported_by_id = imported_by.id if isinstance(imported_by, User) else imported_by
    summary = ImportSummary()
    for index, row in enumerate(rows, start=1):
        try:
            outcome, entry = _import_row(row, month, year, imported_by_id)
            if outcome == "successful":
                db.session.commit()
            else:
                db.session.rollback()
        except (ValidationError, SQLAlchemyError) as exc:
            db.session.rollback()
            outcome = "failed"
            entry = {"row": dict(row), "error": str(exc)}
            current_app.logger.warning(
                "[ATTENDANCE-IMPORT] row=%s reg=%s error=%s",
                index,
                row.get("registrationNumber"),
                exc,
            )
        getattr(summary, outcome).append(entry)
    current_app.logger.info(
        "[ATTENDANCE-IMPORT] total=%s successful=%s failed=%s not_found=%s by=%s",
        summary.total,
        len(summary.successful),
        len(summary.failed),
        len(summary.not_found),
        imported_by_id,
    )
    return summary


def _rows_from_table(header: list, data_rows: Iterable[Iterable]) -> list[dict]:
    keys = [_normalize_header(h) for h in header]
    if "registrationNumber" not in keys:
        raise ValidationError("Attendance file needs a Registration Number column")
    rows: list[dict] = []
    for values in data_rows:
        values = list(values)
        if all(_blank(v) for v in values):
            continue
        row = {}
        for key, value in zip(keys, values):
            if key and not _blank(value):
                row[key] = value.strip() if isinstance(value, str) else value
        rows.append(row)
    return rows


def parse_attendance_file(filename: str, stream: IO[bytes]) -> list[dict]:
    """Read CSV or XLSX attendance sheets into row mappings."""
    name = (filename or "").lower()
    data = stream.read()
    if name.endswith(".csv"):
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ValidationError("CSV file must be UTF-8 encoded") from None
        reader = csv.reader(io.StringIO(text))
        table = list(reader)
        if not table:
            return []
        return _rows_from_table(table[0], table[1:])
    if name.endswith((".xlsx", ".xlsm")):
        try:
            workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except Exception as exc:  # openpyxl raises a variety of zip/xml errors
            raise ValidationError(f"Could not read spreadsheet: {exc}") from exc
        try:
            sheet = workbook.active
            table = list(sheet.iter_rows(values_only=True))
        finally:
            workbook.close()
        if not table:
            return []
        return _rows_from_table(list(table[0]), table[1:])
    raise ValidationError("Upload a .csv or .xlsx attendance file")


def update_student_attendance(student: Student, present: int, total: int) -> dict:
    """Manual admin correction for the current month; returns before/after."""
    present = _as_int(present, "classesAttended")
    total = _as_int(total, "totalClasses")
    was_eligible = bool(student.is_eligible)
    previous = student.attendance_percentage
    now = now_utc()
    record = _upsert_record(
        student.registration_number, now.month, now.year, present, total, None, None,
        remarks="manual update",
    )
    student.attendance_percentage = record.percentage
    db.session.commit()
    return {
        "previousPercentage": previous,
        "previousEligible": was_eligible,
        "percentage": student.attendance_percentage,
        "isEligible": student.is_eligible,
        "eligibilityChanged": was_eligible != student.is_eligible,
    }


def _find_student(identifier) -> Student:
    student = None
    if isinstance(identifier, int) or str(identifier).isdigit():
        student = db.session.get(Student, int(identifier))
    if student is None:
        student = (
            db.session.query(Student)
            .filter(Student.registration_number == str(identifier).strip().upper())
            .one_or_none()
        )
    if student is None:
        raise NotFoundError("Student not found")
    return student


def attendance_status(identifier) -> dict:
    student = _find_student(identifier)
    records = (
        db.session.query(AttendanceRecord)
        .filter(AttendanceRecord.registration_number == student.registration_number)
        .order_by(AttendanceRecord.year.desc(), AttendanceRecord.month.desc())
        .limit(6)
        .all()
    )
    return {
        "student": student.to_dict(),
        "records": [r.to_dict() for r in records],
        "threshold": ATTENDANCE_THRESHOLD,
    }


def students_below_threshold(threshold: float = ATTENDANCE_THRESHOLD) -> list[Student]:
    return (
        db.session.query(Student)
        .filter(Student.attendance_percentage.isnot(None))
        .filter(Student.attendance_percentage < float(threshold))
        .order_by(Student.attendance_percentage.asc(), Student.id.asc())
        .all()
    )


def attendance_report(filters: Mapping | None = None) -> dict:
    filters = filters or {}
    query = db.session.query(Student)
    if filters.get("department"):
        query = query.filter(Student.department == filters["department"])
    if filters.get("year"):
        query = query.filter(Student.year == int(filters["year"]))
    if filters.get("minPercentage") not in (None, ""):
        query = query.filter(Student.attendance_percentage >= float(filters["minPercentage"]))
    if filters.get("maxPercentage") not in (None, ""):
        query = query.filter(Student.attendance_percentage <= float(filters["maxPercentage"]))
    students = query.order_by(Student.registration_number).all()

    with_data = [s.attendance_percentage for s in students if s.attendance_percentage is not None]
    eligible = sum(1 for s in students if s.is_eligible)
    stats = {
        "totalStudents": len(students),
        "eligible": eligible,
        "notEligible": len(students) - eligible,
        "averageAttendance": round(sum(with_data) / len(with_data), 2) if with_data else 0,
        "highestAttendance": max(with_data) if with_data else 0,
        "lowestAttendance": min(with_data) if with_data else 0,
    }
    by_department = dict(
        db.session.query(Student.department, func.count(Student.id))
        .group_by(Student.department)
        .all()
    )
    return {
        "students": [s.to_dict() for s in students],
        "stats": stats,
        "byDepartment": by_department,
    }


def send_attendance_alerts(
    threshold: float = ATTENDANCE_THRESHOLD,
    department: str | None = None,
    year: int | None = None,
) -> dict:
    students = students_below_threshold(threshold)
    if department:
        students = [s for s in students if s.department == department]
    if year:
        students = [s for s in students if s.year == int(year)]
    sent = 0
    failed: list[dict] = []
    for student in students:
        shortfall = round(ATTENDANCE_THRESHOLD - (student.attendance_percentage or 0), 2)
        res = send_templated_email(
            student.email,
            "Attendance Alert - Action Required",
            "attendance_alert",
            student=student,
            threshold=ATTENDANCE_THRESHOLD,
            shortfall=shortfall,
        )
        if res.get("ok"):
            sent += 1
        else:
            failed.append({"student": student.name, "email": student.email, "error": res.get("detail")})
    current_app.logger.info(
        "[ATTENDANCE-ALERT] threshold=%s candidates=%s sent=%s failed=%s",
        threshold,
        len(students),
        sent,
        len(failed),
    )
    return {"total": len(students), "sent": sent, "failed": len(failed), "errors": failed}
