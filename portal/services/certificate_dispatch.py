"""Batch and single-participation certificate delivery.

A batch dispatch renders a certificate for every attended/completed
participant of an event, emails it, and notifies the student. The event's
``certificates_sent`` latch makes the batch a one-shot operation; per-row
delivery status lets failed rows be retried afterwards.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Iterable

import httpx
from flask import current_app
from itsdangerous import BadData, URLSafeSerializer
from sqlalchemy import update

from .. import emailer
from ..app import db
from ..models import CERTIFICATE_STATUSES, Event, Participation, Student
from ..shared.certificates import (
    certificate_filename,
    load_template,
    render_certificate,
)
from ..shared.errors import (
    CertificatesAlreadySentError,
    CertificateTemplateMissingError,
    ExternalServiceError,
    NotFoundError,
    PortalError,
    StateError,
    ValidationError,
)
from ..shared.storage import get_storage
from ..shared.time import now_utc
from .notifications import notify_student, send_templated_email

ISSUABLE_STATUSES = ("approved", "attended", "completed")

VERIFY_SALT = "certificate-verify"
INVALID_VERIFICATION = "Certificate not found or invalid verification code"


@dataclass
class DispatchSummary:
    success: bool
    message: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "results": {
                "total": self.total,
                "successful": self.successful,
                "failed": self.failed,
                "errors": self.errors,
            },
        }


def _get_event(event_id: int) -> Event:
    event = db.session.get(Event, event_id)
    if not event:
        raise NotFoundError("Event not found")
    return event


def _require_template(event: Event) -> None:
    if not event.has_certificate_template:
        raise CertificateTemplateMissingError("Certificate template not uploaded")


def load_template_bytes(event: Event) -> bytes:
    """Fetch the event's template from object storage, or its URL."""
    if event.certificate_template_id:
        return get_storage().read(event.certificate_template_id)
    url = event.certificate_template_url
    try:
        resp = httpx.get(
            url,
            timeout=current_app.config.get("AI_TIMEOUT_SECONDS", 30.0),
            follow_redirects=True,
        )
        resp.raise_for_status()
    except httpx.HTTPError as exc:
        raise ExternalServiceError(f"Could not download certificate template: {exc}") from exc
    return resp.content


def _claim_latch(event: Event) -> None:
    result = db.session.execute(
        update(Event)
        .where(Event.id == event.id, Event.certificates_sent.is_(False))
        .values(certificates_sent=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise CertificatesAlreadySentError("Certificates already sent")
    db.session.commit()


def _deliver_one(
    event: Event,
    participation: Participation,
    template_bytes: bytes,
    channel=None,
) -> None:
    student = participation.student
    pdf = render_certificate(
        template_bytes,
        event.certificate_layout,
        student.name,
        event.title,
        event.end_date,
    )
    res = send_templated_email(
        student.email,
        f"Certificate for {event.title}",
        "certificate",
        attachments=[
            emailer.Attachment(certificate_filename(student.name, event.title), pdf)
        ],
        student=student,
        event=event,
    )
    if not res.get("ok"):
        raise ExternalServiceError(f"Email delivery failed: {res.get('detail')}")
    participation.certificate_delivery = "sent"
    participation.certificate_delivery_error = None
    participation.certificate_delivered_at = now_utc()
    db.session.commit()
    notify_student(
        student,
        "certificate",
        f"Your certificate for {event.title} has been sent to your email",
        data={"eventId": event.id, "eventTitle": event.title},
        event_name="certificate-ready",
        channel=channel,
    )


def _deliver_all(
    event: Event,
    participations: list[Participation],
    template_bytes: bytes,
    channel=None,
) -> tuple[int, list[dict]]:
    delay = float(current_app.config.get("CERTIFICATE_SEND_DELAY", 0) or 0)
    successful = 0
    errors: list[dict] = []
    # ids survive the rollbacks below; ORM instances would be expired
    targets = [(p.id, p.student.name, p.student.email) for p in participations]
    for index, (participation_id, name, email) in enumerate(targets):
        if index and delay > 0:
            time.sleep(delay)
        participation = db.session.get(Participation, participation_id)
        try:
            _deliver_one(event, participation, template_bytes, channel=channel)
            successful += 1
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception(
                "[CERT-FAIL] email=%s event=%s participation=%s",
                email,
                event.id,
                participation_id,
            )
            participation = db.session.get(Participation, participation_id)
            participation.certificate_delivery = "failed"
            participation.certificate_delivery_error = str(exc)
            db.session.commit()
            errors.append({"student": name, "email": email, "error": str(exc)})
    return successful, errors


def dispatch_event_certificates(event_id: int, channel=None) -> DispatchSummary:
    event = _get_event(event_id)
    _require_template(event)
    if event.certificates_sent:
        raise CertificatesAlreadySentError("Certificates already sent")

    participations = (
        db.session.query(Participation)
        .filter(
            Participation.event_id == event.id,
            Participation.status.in_(CERTIFICATE_STATUSES),
        )
        .order_by(Participation.id)
        .all()
    )
    if not participations:
        return DispatchSummary(success=False, message="No students to send certificates to")

    template_bytes = load_template_bytes(event)
    load_template(template_bytes)
    _claim_latch(event)

    for participation in participations:
        participation.certificate_delivery = "pending"
    db.session.commit()

    current_app.logger.info(
        "[CERT-DISPATCH] event=%s participants=%s start", event.id, len(participations)
    )
    successful, errors = _deliver_all(event, participations, template_bytes, channel)

    event = db.session.get(Event, event_id)
    event.certificates_sent_at = now_utc()
    db.session.commit()
    current_app.logger.info(
        "[CERT-DISPATCH] event=%s total=%s successful=%s failed=%s",
        event.id,
        len(participations),
        successful,
        len(errors),
    )
    return DispatchSummary(
        success=True,
        message="Certificate sending completed",
        total=len(participations),
        successful=successful,
        failed=len(errors),
        errors=errors,
    )


def retry_failed_certificates(event_id: int, channel=None) -> DispatchSummary:
    """Resend only deliveries marked ``failed``; allowed after the latch."""
    event = _get_event(event_id)
    _require_template(event)
    participations = (
        db.session.query(Participation)
        .filter(
            Participation.event_id == event.id,
            Participation.certificate_delivery == "failed",
        )
        .order_by(Participation.id)
        .all()
    )
    if not participations:
        return DispatchSummary(success=False, message="No failed certificate deliveries to retry")

    template_bytes = load_template_bytes(event)
    load_template(template_bytes)
    current_app.logger.info(
        "[CERT-DISPATCH] event=%s retry=%s", event.id, len(participations)
    )
    successful, errors = _deliver_all(event, participations, template_bytes, channel)
    return DispatchSummary(
        success=True,
        message="Certificate retry completed",
        total=len(participations),
        successful=successful,
        failed=len(errors),
        errors=errors,
    )


def issue_participation_certificate(participation: Participation) -> Participation:
    """Render and store one participant's certificate; no-op if already issued."""
    if participation.status not in ISSUABLE_STATUSES:
        raise StateError(
            "Certificate can only be issued for approved or completed participations"
        )
    if participation.certificate_url:
        return participation
    event = participation.event
    _require_template(event)
    student = participation.student
    pdf = render_certificate(
        load_template_bytes(event),
        event.certificate_layout,
        student.name,
        event.title,
        event.end_date,
    )
    stored = get_storage().save(
        pdf,
        f"certificates/{event.id}",
        certificate_filename(student.name, event.title),
    )
    participation.certificate_url = stored.url
    participation.certificate_id = stored.public_id
    db.session.commit()
    current_app.logger.info(
        "[CERT] email=%s event=%s path=%s", student.email, event.id, stored.public_id
    )
    return participation


def preview_certificate(event: Event, sample_name: str = "Sample Student") -> bytes:
    _require_template(event)
    layout = event.certificate_layout
    if not layout.has_placed_field:
        raise ValidationError("Please configure at least one field position")
    return render_certificate(
        load_template_bytes(event),
        layout,
        sample_name or "Sample Student",
        event.title,
        event.end_date,
    )


def revoke_certificate(participation: Participation) -> bool:
    if not participation.certificate_url and not participation.certificate_id:
        return False
    get_storage().delete(participation.certificate_id)
    participation.certificate_url = None
    participation.certificate_id = None
    db.session.commit()
    current_app.logger.info(
        "[CERT] revoked participation=%s event=%s", participation.id, participation.event_id
    )
    return True


def bulk_issue_certificates(participation_ids: Iterable) -> dict:
    """Issue stored certificates for hand-picked participations, one at a time."""
    participation_ids = list(participation_ids)
    issued: list[dict] = []
    failed: list[dict] = []
    for pid in participation_ids:
        try:
            participation = db.session.get(Participation, int(pid))
        except (TypeError, ValueError):
            failed.append({"participationId": pid, "error": "Invalid participation id"})
            continue
        try:
            if participation is None:
                raise NotFoundError("Participation not found")
            issue_participation_certificate(participation)
        except PortalError as exc:
            db.session.rollback()
            failed.append({"participationId": pid, "error": str(exc)})
            continue
        issued.append(
            {
                "participationId": participation.id,
                "certificateUrl": participation.certificate_url,
                "certificateId": participation.certificate_id,
            }
        )
    current_app.logger.info(
        "[CERT] bulk issue total=%s issued=%s failed=%s",
        len(participation_ids),
        len(issued),
        len(failed),
    )
    return {"total": len(participation_ids), "issued": issued, "failed": failed}


def _verify_serializer() -> URLSafeSerializer:
    return URLSafeSerializer(current_app.secret_key, salt=VERIFY_SALT)


def verification_id(participation: Participation) -> str:
    """Signed code naming the participation and the certificate it was issued."""
    return _verify_serializer().dumps([participation.id, participation.certificate_id])


def certificate_summary(participation: Participation) -> dict:
    event = participation.event
    issued = participation.certificate_delivered_at or participation.approved_at
    return {
        "participationId": participation.id,
        "eventTitle": event.title,
        "eventType": event.event_type,
        "eventDate": event.start_date.isoformat() if event.start_date else None,
        "location": event.location,
        "hoursAwarded": participation.volunteer_hours or event.hours_awarded,
        "certificateUrl": participation.certificate_url,
        "certificateId": participation.certificate_id,
        "issuedDate": issued.isoformat() if issued else None,
        "verificationId": verification_id(participation),
    }


def student_certificates(student: Student) -> list[dict]:
    rows = (
        db.session.query(Participation)
        .filter(
            Participation.student_id == student.id,
            Participation.status.in_(ISSUABLE_STATUSES),
            Participation.certificate_url.isnot(None),
        )
        .order_by(Participation.registered_at.desc(), Participation.id.desc())
        .all()
    )
    return [certificate_summary(p) for p in rows]


def certificate_pdf(participation: Participation) -> bytes:
    """Stored certificate bytes; issues the certificate first when missing."""
    issue_participation_certificate(participation)
    return get_storage().read(participation.certificate_id)


def verify_certificate(code: str) -> dict:
    try:
        participation_id, certificate_id = _verify_serializer().loads(code)
    except (BadData, TypeError, ValueError):
        raise NotFoundError(INVALID_VERIFICATION, valid=False) from None
    participation = db.session.get(Participation, participation_id)
    # a revoked or reissued certificate no longer matches the signed id
    if (
        participation is None
        or not participation.certificate_url
        or participation.certificate_id != certificate_id
    ):
        raise NotFoundError(INVALID_VERIFICATION, valid=False)
    student = participation.student
    event = participation.event
    issued = participation.certificate_delivered_at or participation.approved_at
    return {
        "studentName": student.name,
        "registrationNumber": student.registration_number,
        "department": student.department,
        "eventTitle": event.title,
        "eventType": event.event_type,
        "eventDate": event.start_date.isoformat() if event.start_date else None,
        "hoursAwarded": participation.volunteer_hours,
        "issuedDate": issued.isoformat() if issued else None,
        "certificateId": participation.certificate_id,
    }


def maybe_auto_send(event: Event, channel=None) -> DispatchSummary | None:
    """Run the batch dispatch for a just-completed event when configured to."""
    if event.status != "completed":
        return None
    if not (event.certificate_auto_send and event.has_certificate_template):
        return None
    if event.certificates_sent:
        return None
    try:
        return dispatch_event_certificates(event.id, channel=channel)
    except PortalError as exc:
        db.session.rollback()
        current_app.logger.warning("[CERT-DISPATCH] auto-send event=%s skipped: %s", event.id, exc)
        return None
