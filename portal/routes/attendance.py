from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..models import ATTENDANCE_THRESHOLD
from ..services import attendance, eligibility, students
from ..shared.errors import ValidationError
from ..shared.rbac import admin_required, staff_required

bp = Blueprint("attendance", __name__, url_prefix="/api/attendance")


def _optional_int(value, label: str):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number") from None


@bp.post("/import")
@admin_required
def import_rows(current_user):
    upload = request.files.get("file")
    if upload and upload.filename:
        rows = attendance.parse_attendance_file(upload.filename, upload.stream)
        month = _optional_int(request.form.get("month"), "month")
        year = _optional_int(request.form.get("year"), "year")
    else:
        payload = request.get_json(silent=True) or {}
        rows = payload.get("attendanceData") or payload.get("rows")
        if not isinstance(rows, list):
            raise ValidationError("Attendance data must be a list of rows or an uploaded file")
        month = _optional_int(payload.get("month"), "month")
        year = _optional_int(payload.get("year"), "year")
    summary = attendance.import_attendance(rows, month=month, year=year, imported_by=current_user)
    return jsonify({"ok": True, "results": summary.as_dict()})


@bp.put("/students/<int:student_id>")
@admin_required
def manual_update(student_id: int, current_user):
    payload = request.get_json(silent=True) or {}
    if payload.get("classesAttended") is None or payload.get("totalClasses") is None:
        raise ValidationError("classesAttended and totalClasses are required")
    result = attendance.update_student_attendance(
        students.get_student(student_id), payload["classesAttended"], payload["totalClasses"]
    )
    return jsonify({"ok": True, **result})


@bp.get("/status/<identifier>")
@staff_required
def status(identifier: str, current_user):
    return jsonify({"ok": True, **attendance.attendance_status(identifier)})


@bp.get("/below-threshold")
@staff_required
def below_threshold(current_user):
    threshold = float(request.args.get("threshold") or ATTENDANCE_THRESHOLD)
    rows = attendance.students_below_threshold(threshold)
    return jsonify(
        {
            "ok": True,
            "threshold": threshold,
            "count": len(rows),
            "students": [s.to_dict() for s in rows],
        }
    )


@bp.get("/report")
@staff_required
def report(current_user):
    return jsonify({"ok": True, **attendance.attendance_report(request.args)})


@bp.post("/alerts")
@admin_required
def alerts(current_user):
    payload = request.get_json(silent=True) or {}
    result = attendance.send_attendance_alerts(
        threshold=float(payload.get("threshold") or ATTENDANCE_THRESHOLD),
        department=payload.get("department"),
        year=_optional_int(payload.get("year"), "year"),
    )
    return jsonify({"ok": True, **result})


@bp.post("/bulk-check")
@staff_required
def bulk_check(current_user):
    payload = request.get_json(silent=True) or {}
    ids = payload.get("studentIds")
    if not isinstance(ids, list):
        raise ValidationError("studentIds must be a list")
    try:
        result = eligibility.bulk_check_eligibility(ids)
    except (TypeError, ValueError):
        raise ValidationError("studentIds must contain numbers") from None
    return jsonify({"ok": True, **result})
