from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..services import events, participations
from ..shared.errors import ValidationError
from ..shared.rbac import login_required, staff_required, student_required

bp = Blueprint("events", __name__, url_prefix="/api/events")


@bp.get("")
@login_required
def list_events(current_user=None, current_student=None):
    status = request.args.get("status")
    if current_student and not status:
        # students only see events open to them or already running
        rows = [
            e
            for e in events.list_events(
                event_type=request.args.get("eventType"),
                upcoming=request.args.get("upcoming") in ("1", "true"),
            )
            if e.status in ("published", "ongoing", "completed")
        ]
    else:
        rows = events.list_events(
            status=status,
            event_type=request.args.get("eventType"),
            upcoming=request.args.get("upcoming") in ("1", "true"),
        )
    return jsonify({"ok": True, "events": [e.to_dict() for e in rows], "count": len(rows)})


@bp.get("/<int:event_id>")
@login_required
def detail(event_id: int, current_user=None, current_student=None):
    return jsonify({"ok": True, "event": events.get_event(event_id).to_dict()})


@bp.post("")
@staff_required
def create(current_user):
    event = events.create_event(request.get_json(silent=True) or {}, organizer=current_user)
    return jsonify({"ok": True, "event": event.to_dict()}), 201


@bp.put("/<int:event_id>")
@staff_required
def update(event_id: int, current_user):
    event = events.update_event(events.get_event(event_id), request.get_json(silent=True) or {})
    return jsonify({"ok": True, "event": event.to_dict()})


@bp.delete("/<int:event_id>")
@staff_required
def delete(event_id: int, current_user):
    events.delete_event(events.get_event(event_id))
    return jsonify({"ok": True})


@bp.post("/<int:event_id>/publish")
@staff_required
def publish(event_id: int, current_user):
    result = events.publish_event(events.get_event(event_id))
    return jsonify({"ok": True, **result})


@bp.post("/<int:event_id>/status")
@staff_required
def change_status(event_id: int, current_user):
    payload = request.get_json(silent=True) or {}
    status = (payload.get("status") or "").strip().lower()
    if not status:
        raise ValidationError("status is required")
    event = events.get_event(event_id)
    summary = events.set_status(event, status)
    body = {"ok": True, "event": event.to_dict()}
    if summary is not None:
        body["certificates"] = summary.as_dict()
    return jsonify(body)


@bp.post("/<int:event_id>/register")
@student_required
def register(event_id: int, current_student):
    participation = participations.register(current_student, event_id)
    return jsonify({"ok": True, "participation": participation.to_dict()}), 201


@bp.get("/<int:event_id>/participants")
@staff_required
def participants(event_id: int, current_user):
    events.get_event(event_id)
    rows = participations.list_for_event(event_id, request.args.get("status"))
    return jsonify(
        {"ok": True, "participations": [p.to_dict(include_student=True) for p in rows]}
    )
