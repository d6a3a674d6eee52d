from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from .. import emailer
from ..app import db
from ..models import USER_ROLES, Event, Participation, Settings, Student, User
from ..services import analytics, notifications, participations
from ..shared.errors import StateError, ValidationError
from ..shared.rbac import admin_required, staff_required

bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@bp.get("/dashboard")
@staff_required
def dashboard(current_user):
    events_by_status = dict(
        db.session.query(Event.status, func.count(Event.id)).group_by(Event.status).all()
    )
    participations_by_status = dict(
        db.session.query(Participation.status, func.count(Participation.id))
        .group_by(Participation.status)
        .all()
    )
    total_hours = db.session.query(
        func.coalesce(func.sum(Student.total_volunteer_hours), 0)
    ).scalar()
    return jsonify(
        {
            "ok": True,
            "stats": {
                "totalStudents": db.session.query(func.count(Student.id)).scalar(),
                "eligibleStudents": db.session.query(func.count(Student.id))
                .filter(Student.is_eligible.is_(True))
                .scalar(),
                "eventsByStatus": events_by_status,
                "participationsByStatus": participations_by_status,
                "pendingApprovals": participations_by_status.get("pending", 0),
                "totalVolunteerHours": float(total_hours or 0),
            },
        }
    )


@bp.get("/event-analytics")
@admin_required
def event_analytics(current_user):
    return jsonify({"ok": True, **analytics.event_analytics()})


@bp.get("/student-analytics")
@admin_required
def student_analytics(current_user):
    return jsonify({"ok": True, **analytics.student_analytics()})


@bp.post("/participations/bulk-approve")
@staff_required
def bulk_approve(current_user):
    payload = request.get_json(silent=True) or {}
    ids = payload.get("participationIds")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("participationIds must be a non-empty list")
    return jsonify({"ok": True, **participations.bulk_approve(ids, current_user)})


@bp.post("/announcements")
@admin_required
def announce(current_user):
    payload = request.get_json(silent=True) or {}
    subject = (payload.get("subject") or "").strip()
    message = (payload.get("message") or "").strip()
    if not subject or not message:
        raise ValidationError("subject and message are required")
    result = notifications.send_announcement(
        subject, message, payload.get("department"), payload.get("year")
    )
    return jsonify({"ok": True, **result})


@bp.post("/users")
@admin_required
def create_user(current_user):
    payload = request.get_json(silent=True) or {}
    email = (payload.get("email") or "").strip().lower()
    role = (payload.get("role") or "faculty").strip().lower()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if role not in USER_ROLES:
        raise ValidationError(f"Invalid role: {role}")
    user = User(email=email, full_name=payload.get("fullName"), role=role)
    if payload.get("password"):
        user.set_password(payload["password"])
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise StateError("A user with this email already exists") from None
    return jsonify({"ok": True, "user": {"id": user.id, "email": user.email, "role": user.role}}), 201


def _settings_dict(settings: Settings | None) -> dict:
    if not settings:
        return {}
    return {
        "smtpHost": settings.smtp_host,
        "smtpPort": settings.smtp_port,
        "smtpUser": settings.smtp_user,
        "smtpFromDefault": settings.smtp_from_default,
        "smtpFromName": settings.smtp_from_name,
        "smtpPassSet": bool(settings.smtp_pass_enc),
    }


@bp.get("/mail-settings")
@admin_required
def mail_settings(current_user):
    return jsonify({"ok": True, "settings": _settings_dict(Settings.get())})


@bp.put("/mail-settings")
@admin_required
def update_mail_settings(current_user):
    payload = request.get_json(silent=True) or {}
    settings = Settings.get() or Settings(id=1)
    settings.smtp_host = payload.get("smtpHost") or None
    try:
        settings.smtp_port = int(payload.get("smtpPort") or 0) or None
    except (TypeError, ValueError):
        raise ValidationError("smtpPort must be a number") from None
    settings.smtp_user = payload.get("smtpUser") or None
    settings.smtp_from_default = payload.get("smtpFromDefault") or None
    settings.smtp_from_name = payload.get("smtpFromName") or None
    if payload.get("smtpPass"):
        settings.set_smtp_pass(payload["smtpPass"])
    db.session.merge(settings)
    db.session.commit()
    return jsonify({"ok": True, "settings": _settings_dict(Settings.get())})


@bp.post("/mail-settings/test")
@admin_required
def test_mail(current_user):
    payload = request.get_json(silent=True) or {}
    to = payload.get("to") or current_user.email
    res = emailer.send(to, "Volunteer portal test email", "SMTP settings are working.")
    return jsonify({"ok": bool(res.get("ok")), "detail": res.get("detail")})
