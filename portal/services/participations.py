from __future__ import annotations

import os
from typing import Iterable

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..app import db
from ..models import (
    PARTICIPATION_STATUSES,
    Event,
    Participation,
    ParticipationEvidence,
    Student,
    User,
)
from ..shared.errors import NotFoundError, PortalError, StateError, ValidationError
from ..shared.storage import get_storage
from ..shared.time import now_utc, utcnow_naive
from .eligibility import ensure_can_register
from .notifications import notify_student, send_templated_email

# status -> statuses it may move to
TRANSITIONS: dict[str, set[str]] = {
    "pending": {"approved", "rejected"},
    "approved": {"attended"},
    "attended": {"completed"},
}

HOUR_STATUSES = ("approved", "attended", "completed")

EVIDENCE_EXTENSIONS: dict[str, str] = {
    ".jpg": "image",
    ".jpeg": "image",
    ".png": "image",
    ".gif": "image",
    ".webp": "image",
    ".pdf": "pdf",
    ".doc": "document",
    ".docx": "document",
    ".txt": "document",
}


def get_participation(participation_id: int) -> Participation:
    participation = db.session.get(Participation, participation_id)
    if not participation:
        raise NotFoundError("Participation not found")
    return participation


def transition(participation: Participation, new_status: str) -> None:
    allowed = TRANSITIONS.get(participation.status, set())
    if new_status not in allowed:
        raise StateError(
            f"Cannot change participation from {participation.status} to {new_status}"
        )
    participation.status = new_status


def recompute_student_hours(student: Student) -> float:
    total = (
        db.session.query(func.coalesce(func.sum(Participation.volunteer_hours), 0))
        .filter(
            Participation.student_id == student.id,
            Participation.status.in_(HOUR_STATUSES),
        )
        .scalar()
    )
    student.total_volunteer_hours = float(total or 0)
    return student.total_volunteer_hours


def _mail(student: Student, subject: str, template: str, **context) -> None:
    res = send_templated_email(student.email, subject, template, student=student, **context)
    if not res.get("ok"):
        current_app.logger.info(
            "[MAIL-FAIL] %s student=%s error=\"%s\"", template, student.id, res.get("detail")
        )


def register(student: Student, event_id: int) -> Participation:
    ensure_can_register(student)
    event = db.session.get(Event, event_id)
    if not event:
        raise NotFoundError("Event not found")
    if event.status != "published":
        raise ValidationError("Event is not open for registration")
    if event.registration_deadline and utcnow_naive() > event.registration_deadline:
        raise ValidationError("Registration deadline has passed")
    if event.max_participants and (event.current_participants or 0) >= event.max_participants:
        raise ValidationError("Event is full")
    existing = (
        db.session.query(Participation.id)
        .filter_by(student_id=student.id, event_id=event.id)
        .first()
    )
    if existing:
        raise StateError("Already registered for this event")

    participation = Participation(student_id=student.id, event_id=event.id)
    if event.approval_required:
        participation.status = "pending"
    else:
        participation.status = "approved"
        participation.approved_at = now_utc()
        participation.volunteer_hours = event.hours_awarded
    db.session.add(participation)
    event.current_participants = (event.current_participants or 0) + 1
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise StateError("Already registered for this event") from None
    if participation.status == "approved":
        recompute_student_hours(student)
    db.session.commit()
    current_app.logger.info(
        "[REGISTER] student=%s event=%s status=%s", student.id, event.id, participation.status
    )
    _mail(
        student,
        f"Registration Confirmed: {event.title}",
        "registration_confirmation",
        event=event,
        participation=participation,
    )
    return participation


def approve(participation: Participation, approver: User | None = None) -> Participation:
    transition(participation, "approved")
    event = participation.event
    participation.approved_at = now_utc()
    participation.approved_by_id = approver.id if approver else None
    participation.volunteer_hours = event.hours_awarded
    recompute_student_hours(participation.student)
    db.session.commit()
    student = participation.student
    _mail(student, f"Participation Approved: {event.title}", "participation_approved", event=event,
          participation=participation)
    notify_student(
        student,
        "approval",
        f"Your participation in {event.title} has been approved",
        data={"eventId": event.id, "participationId": participation.id},
    )
    return participation


def reject(participation: Participation, reason: str | None, approver: User | None = None) -> Participation:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Rejection reason is required")
    transition(participation, "rejected")
    participation.rejection_reason = reason
    participation.approved_by_id = approver.id if approver else None
    event = participation.event
    event.current_participants = max(0, (event.current_participants or 0) - 1)
    db.session.commit()
    student = participation.student
    _mail(student, f"Participation Update: {event.title}", "participation_rejected", event=event,
          reason=reason)
    notify_student(
        student,
        "rejection",
        f"Your participation in {event.title} was not approved",
        data={"eventId": event.id, "participationId": participation.id, "reason": reason},
    )
    return participation


def bulk_approve(participation_ids: Iterable[int], approver: User | None = None) -> dict:
    approved: list[int] = []
    failed: list[dict] = []
    for pid in participation_ids:
        try:
            approve(get_participation(int(pid)), approver)
            approved.append(int(pid))
        except PortalError as exc:
            db.session.rollback()
            failed.append({"participationId": pid, "error": str(exc)})
    current_app.logger.info("[BULK-APPROVE] approved=%s failed=%s", len(approved), len(failed))
    return {"approved": approved, "failed": failed, "count": len(approved)}


def mark_attended(participation: Participation) -> Participation:
    transition(participation, "attended")
    participation.attendance_date = now_utc()
    db.session.commit()
    return participation


def complete(participation: Participation) -> Participation:
    transition(participation, "completed")
    recompute_student_hours(participation.student)
    db.session.commit()
    return participation


def evidence_type_for(filename: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    kind = EVIDENCE_EXTENSIONS.get(ext)
    if not kind:
        raise ValidationError(f"Unsupported evidence file type: {ext or filename}")
    return kind


def upload_evidence(
    participation: Participation,
    files: Iterable[tuple[str, bytes]],
    submission_text: str | None = None,
) -> list[ParticipationEvidence]:
    if participation.status == "rejected":
        raise StateError("Cannot add evidence to a rejected participation")
    files = list(files)
    kinds = [evidence_type_for(name) for name, _ in files]
    storage = get_storage()
    created: list[ParticipationEvidence] = []
    for (name, data), kind in zip(files, kinds):
        stored = storage.save(data, f"evidence/{participation.id}", name)
        item = ParticipationEvidence(
            participation_id=participation.id,
            evidence_type=kind,
            url=stored.url,
            public_id=stored.public_id,
            filename=name,
        )
        db.session.add(item)
        created.append(item)
    if submission_text:
        participation.submission_text = submission_text
    db.session.commit()
    current_app.logger.info(
        "[EVIDENCE] participation=%s files=%s", participation.id, len(created)
    )
    return created


def _check_status_filter(status: str | None) -> None:
    if status and status not in PARTICIPATION_STATUSES:
        raise ValidationError(f"Invalid participation status: {status}")


def list_for_student(student: Student, status: str | None = None) -> list[Participation]:
    _check_status_filter(status)
    query = db.session.query(Participation).filter(Participation.student_id == student.id)
    if status:
        query = query.filter(Participation.status == status)
    return query.order_by(Participation.registered_at.desc(), Participation.id.desc()).all()


def list_for_event(event_id: int, status: str | None = None) -> list[Participation]:
    _check_status_filter(status)
    query = db.session.query(Participation).filter(Participation.event_id == event_id)
    if status:
        query = query.filter(Participation.status == status)
    return query.order_by(Participation.id).all()


def pending_approvals() -> list[Participation]:
    return (
        db.session.query(Participation)
        .filter(Participation.status == "pending")
        .order_by(Participation.registered_at.asc(), Participation.id.asc())
        .all()
    )
