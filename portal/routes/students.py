from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..app import db
from ..models import Notification, Participation
from ..services import certificate_dispatch, eligibility, notifications, students
from ..shared.errors import NotFoundError
from ..shared.rbac import admin_required, staff_required, student_required

bp = Blueprint("students", __name__, url_prefix="/api/students")


@bp.get("/profile")
@student_required
def profile(current_student):
    return jsonify({"ok": True, "student": current_student.to_dict()})


@bp.put("/profile")
@student_required
def update_profile(current_student):
    payload = request.get_json(silent=True) or {}
    # students may only change contact details
    allowed = {k: v for k, v in payload.items() if k in ("name", "phoneNumber", "password")}
    student = students.update_student(current_student, allowed)
    return jsonify({"ok": True, "student": student.to_dict()})


@bp.get("/eligibility")
@student_required
def my_eligibility(current_student):
    return jsonify({"ok": True, **eligibility.eligibility_status(current_student)})


@bp.get("/history")
@student_required
def history(current_student):
    return jsonify({"ok": True, "participations": students.student_history(current_student)})


@bp.get("/stats")
@student_required
def stats(current_student):
    return jsonify({"ok": True, "stats": students.student_stats(current_student)})


@bp.get("/notifications")
@student_required
def list_notifications(current_student):
    rows = (
        db.session.query(Notification)
        .filter(Notification.student_id == current_student.id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(50)
        .all()
    )
    return jsonify({"ok": True, "notifications": [n.to_dict() for n in rows]})


@bp.post("/notifications/<int:notification_id>/read")
@student_required
def read_notification(notification_id: int, current_student):
    if not notifications.mark_read(current_student, notification_id):
        raise NotFoundError("Notification not found")
    return jsonify({"ok": True})


@bp.post("/participations/<int:participation_id>/certificate")
@student_required
def request_certificate(participation_id: int, current_student):
    participation = db.session.get(Participation, participation_id)
    if not participation or participation.student_id != current_student.id:
        raise NotFoundError("Participation not found")
    certificate_dispatch.issue_participation_certificate(participation)
    return jsonify(
        {
            "ok": True,
            "certificateUrl": participation.certificate_url,
            "certificateId": participation.certificate_id,
        }
    )


@bp.get("")
@staff_required
def list_students(current_user):
    rows = students.list_students(request.args)
    return jsonify({"ok": True, "students": [s.to_dict() for s in rows], "count": len(rows)})


@bp.post("")
@admin_required
def enroll(current_user):
    student = students.enroll_student(request.get_json(silent=True) or {})
    return jsonify({"ok": True, "student": student.to_dict()}), 201


@bp.get("/<int:student_id>")
@staff_required
def detail(student_id: int, current_user):
    student = students.get_student(student_id)
    return jsonify(
        {
            "ok": True,
            "student": student.to_dict(),
            "stats": students.student_stats(student),
            "eligibility": eligibility.eligibility_status(student),
        }
    )


@bp.put("/<int:student_id>")
@admin_required
def update(student_id: int, current_user):
    student = students.update_student(
        students.get_student(student_id), request.get_json(silent=True) or {}
    )
    return jsonify({"ok": True, "student": student.to_dict()})


@bp.delete("/<int:student_id>")
@admin_required
def delete(student_id: int, current_user):
    removed = students.delete_student(students.get_student(student_id))
    return jsonify({"ok": True, "removed": removed})
