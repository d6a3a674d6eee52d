from __future__ import annotations

import os
from typing import Mapping

from flask import current_app

from ..app import db
from ..models import EVENT_STATUSES, EVENT_TYPES, Event, Student, User
from ..shared.certificates import load_template
from ..shared.certificates_layout import (
    CertificateLayout,
    place_field,
    save_certificate_config,
)
from ..shared.errors import NotFoundError, StateError, ValidationError
from ..shared.realtime import get_channel, user_room
from ..shared.storage import get_storage
from ..shared.time import parse_iso_datetime, utcnow_naive
from .certificate_dispatch import DispatchSummary, maybe_auto_send
from .notifications import send_templated_email

REQUIRED_FIELDS = (
    "title",
    "description",
    "eventType",
    "location",
    "startDate",
    "endDate",
    "registrationDeadline",
)

STATUS_TRANSITIONS: dict[str, set[str]] = {
    "draft": {"published", "cancelled"},
    "published": {"ongoing", "completed", "cancelled"},
    "ongoing": {"completed", "cancelled"},
}


def get_event(event_id: int) -> Event:
    event = db.session.get(Event, event_id)
    if not event:
        raise NotFoundError("Event not found")
    return event


def _parse_date(data: Mapping, key: str):
    try:
        return parse_iso_datetime(data.get(key))
    except ValueError:
        raise ValidationError(f"{key} must be an ISO date") from None


def _apply_fields(event: Event, data: Mapping) -> None:
    if "title" in data:
        event.title = (data.get("title") or "").strip()
    if "description" in data:
        event.description = (data.get("description") or "").strip()
    if "eventType" in data:
        event_type = (data.get("eventType") or "").strip().lower()
        if event_type not in EVENT_TYPES:
            raise ValidationError(f"Invalid event type: {data.get('eventType')}")
        event.event_type = event_type
    if "location" in data:
        event.location = (data.get("location") or "").strip()
    for key, attr in (
        ("startDate", "start_date"),
        ("endDate", "end_date"),
        ("registrationDeadline", "registration_deadline"),
    ):
        if key in data:
            setattr(event, attr, _parse_date(data, key))
    if "maxParticipants" in data:
        raw = data.get("maxParticipants")
        if raw in (None, ""):
            event.max_participants = None
        else:
            try:
                event.max_participants = int(raw)
            except (TypeError, ValueError):
                raise ValidationError("maxParticipants must be a number") from None
            if event.max_participants < 1:
                raise ValidationError("maxParticipants must be at least 1")
    if "hoursAwarded" in data:
        try:
            event.hours_awarded = float(data.get("hoursAwarded"))
        except (TypeError, ValueError):
            raise ValidationError("hoursAwarded must be a number") from None
        if event.hours_awarded < 0:
            raise ValidationError("hoursAwarded cannot be negative")
    if "requirements" in data:
        reqs = data.get("requirements") or []
        if isinstance(reqs, str):
            reqs = [line.strip() for line in reqs.splitlines()]
        event.requirements = [str(r).strip() for r in reqs if str(r).strip()]
    if "approvalRequired" in data:
        event.approval_required = bool(data.get("approvalRequired"))

    if event.start_date and event.end_date and event.end_date < event.start_date:
        raise ValidationError("endDate must not be before startDate")
    if (
        event.registration_deadline
        and event.end_date
        and event.registration_deadline > event.end_date
    ):
        raise ValidationError("registrationDeadline must not be after endDate")


def create_event(data: Mapping, organizer: User | None = None) -> Event:
    missing = [key for key in REQUIRED_FIELDS if not data.get(key)]
    if missing:
        raise ValidationError("Missing required fields: " + ", ".join(missing))
    event = Event(organizer_id=organizer.id if organizer else None, status="draft")
    _apply_fields(event, data)
    db.session.add(event)
    db.session.commit()
    current_app.logger.info(
        "[EVENT] created event=%s type=%s by=%s", event.id, event.event_type, event.organizer_id
    )
    return event


def update_event(event: Event, data: Mapping) -> Event:
    _apply_fields(event, data)
    db.session.commit()
    if "status" in data and data.get("status") != event.status:
        set_status(event, data.get("status"))
    return event


def delete_event(event: Event) -> None:
    template_id = event.certificate_template_id
    event_id = event.id
    db.session.delete(event)
    db.session.commit()
    if template_id:
        get_storage().delete(template_id)
    current_app.logger.info("[EVENT] deleted event=%s", event_id)


def list_events(
    status: str | None = None,
    event_type: str | None = None,
    upcoming: bool = False,
) -> list[Event]:
    query = db.session.query(Event)
    if status:
        query = query.filter(Event.status == status)
    if event_type:
        query = query.filter(Event.event_type == event_type.lower())
    if upcoming:
        query = query.filter(Event.start_date >= utcnow_naive())
    return query.order_by(Event.start_date.asc(), Event.id.asc()).all()


def publish_event(event: Event, channel=None) -> dict:
    """Publish and announce the event; announcement failures are only logged."""
    if event.status != "draft":
        raise StateError(f"Only draft events can be published (status={event.status})")
    event.status = "published"
    db.session.commit()

    channel = channel or get_channel()
    payload = {
        "eventId": event.id,
        "title": event.title,
        "eventType": event.event_type,
        "startDate": event.start_date.isoformat() if event.start_date else None,
        "location": event.location,
    }
    emailed = 0
    failed = 0
    for student in db.session.query(Student).order_by(Student.id).all():
        try:
            res = send_templated_email(
                student.email,
                f"New Event: {event.title}",
                "new_event",
                student=student,
                event=event,
            )
            if res.get("ok"):
                emailed += 1
            else:
                failed += 1
            channel.emit(user_room(student.id), "new-event", payload)
        except Exception:
            failed += 1
            current_app.logger.exception(
                "[EVENT-FANOUT] event=%s student=%s", event.id, student.id
            )
    try:
        channel.broadcast("new-event-broadcast", payload)
    except Exception:
        current_app.logger.exception("[EVENT-FANOUT] broadcast event=%s", event.id)
    current_app.logger.info(
        "[EVENT-FANOUT] event=%s emailed=%s failed=%s", event.id, emailed, failed
    )
    return {"event": event.to_dict(), "notified": emailed, "failed": failed}


def set_status(event: Event, status: str, channel=None) -> DispatchSummary | None:
    """Move the event through its lifecycle; completion may auto-send certificates."""
    if status not in EVENT_STATUSES:
        raise ValidationError(f"Invalid event status: {status}")
    if status == "published":
        publish_event(event, channel=channel)
        return None
    if status not in STATUS_TRANSITIONS.get(event.status, set()):
        raise StateError(f"Cannot change event from {event.status} to {status}")
    event.status = status
    db.session.commit()
    current_app.logger.info("[EVENT] event=%s status=%s", event.id, status)
    if status == "completed":
        return maybe_auto_send(event, channel=channel)
    return None


def upload_certificate_template(event: Event, filename: str, data: bytes) -> Event:
    if os.path.splitext(filename or "")[1].lower() != ".pdf":
        raise ValidationError("Certificate template must be a PDF file")
    load_template(data)
    storage = get_storage()
    stored = storage.save(data, f"templates/{event.id}", filename)
    previous = event.certificate_template_id
    event.certificate_template_url = stored.url
    event.certificate_template_id = stored.public_id
    db.session.commit()
    if previous and previous != stored.public_id:
        storage.delete(previous)
    current_app.logger.info(
        "[CERT] template event=%s path=%s replaced=%s", event.id, stored.public_id, previous
    )
    return event


def configure_certificate(
    event: Event, fields: Mapping | None, auto_send: bool | None = None
) -> CertificateLayout:
    layout = save_certificate_config(event, dict(fields or {}), auto_send)
    db.session.commit()
    return layout


def place_certificate_field(
    event: Event, field_name: str, click_x: float, click_y: float, scale: float
) -> CertificateLayout:
    layout = place_field(event.certificate_layout, field_name, click_x, click_y, scale)
    event.certificate_layout = layout
    db.session.commit()
    return layout
