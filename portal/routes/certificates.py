from __future__ import annotations

from flask import Blueprint, Response, jsonify, request

from ..services import certificate_dispatch, events, participations
from ..shared.certificates import certificate_filename
from ..shared.errors import NotFoundError, ValidationError
from ..shared.rbac import login_required, staff_required, student_required

bp = Blueprint("certificates", __name__, url_prefix="/api/certificates")


@bp.post("/events/<int:event_id>/template")
@staff_required
def upload_template(event_id: int, current_user):
    upload = request.files.get("template")
    if not upload or not upload.filename:
        raise ValidationError("No template file uploaded")
    event = events.upload_certificate_template(
        events.get_event(event_id), upload.filename, upload.read()
    )
    return jsonify({"ok": True, "certificate": event.certificate_dict()})


@bp.get("/events/<int:event_id>/config")
@staff_required
def get_config(event_id: int, current_user):
    event = events.get_event(event_id)
    return jsonify(
        {
            "ok": True,
            "certificate": event.certificate_layout.to_dict(),
            "templateUrl": event.certificate_template_url,
            "certificatesSent": bool(event.certificates_sent),
        }
    )


@bp.put("/events/<int:event_id>/config")
@staff_required
def configure(event_id: int, current_user):
    payload = request.get_json(silent=True) or {}
    fields = payload.get("fields") or {}
    if not isinstance(fields, dict):
        raise ValidationError("fields must be an object")
    auto_send = payload.get("autoSend")
    layout = events.configure_certificate(
        events.get_event(event_id), fields, None if auto_send is None else bool(auto_send)
    )
    return jsonify({"ok": True, "certificate": layout.to_dict()})


@bp.post("/events/<int:event_id>/place")
@staff_required
def place(event_id: int, current_user):
    payload = request.get_json(silent=True) or {}
    try:
        click_x = float(payload["clickX"])
        click_y = float(payload["clickY"])
    except (KeyError, TypeError, ValueError):
        raise ValidationError("clickX and clickY are required numbers") from None
    layout = events.place_certificate_field(
        events.get_event(event_id),
        payload.get("field") or "",
        click_x,
        click_y,
        payload.get("scale", 1),
    )
    return jsonify({"ok": True, "certificate": layout.to_dict()})


@bp.post("/events/<int:event_id>/preview")
@staff_required
def preview(event_id: int, current_user):
    payload = request.get_json(silent=True) or {}
    pdf = certificate_dispatch.preview_certificate(
        events.get_event(event_id), payload.get("sampleName") or "Sample Student"
    )
    return Response(
        pdf,
        mimetype="application/pdf",
        headers={"Content-Disposition": "inline; filename=certificate_preview.pdf"},
    )


@bp.post("/events/<int:event_id>/send")
@staff_required
def send(event_id: int, current_user):
    summary = certificate_dispatch.dispatch_event_certificates(event_id)
    return jsonify({"ok": True, **summary.as_dict()})


@bp.post("/events/<int:event_id>/retry")
@staff_required
def retry(event_id: int, current_user):
    summary = certificate_dispatch.retry_failed_certificates(event_id)
    return jsonify({"ok": True, **summary.as_dict()})


@bp.post("/participations/<int:participation_id>/issue")
@staff_required
def issue(participation_id: int, current_user):
    participation = certificate_dispatch.issue_participation_certificate(
        participations.get_participation(participation_id)
    )
    return jsonify(
        {
            "ok": True,
            "certificateUrl": participation.certificate_url,
            "certificateId": participation.certificate_id,
        }
    )


@bp.delete("/participations/<int:participation_id>")
@staff_required
def revoke(participation_id: int, current_user):
    revoked = certificate_dispatch.revoke_certificate(
        participations.get_participation(participation_id)
    )
    return jsonify({"ok": True, "revoked": revoked})


@bp.post("/generate-bulk")
@staff_required
def generate_bulk(current_user):
    payload = request.get_json(silent=True) or {}
    ids = payload.get("participationIds")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("participationIds must be a non-empty list")
    return jsonify({"ok": True, **certificate_dispatch.bulk_issue_certificates(ids)})


@bp.get("/my")
@student_required
def my_certificates(current_student):
    return jsonify(
        {"ok": True, "certificates": certificate_dispatch.student_certificates(current_student)}
    )


@bp.get("/participations/<int:participation_id>/download")
@login_required
def download(participation_id: int, current_user, current_student):
    participation = participations.get_participation(participation_id)
    if current_student and participation.student_id != current_student.id:
        raise NotFoundError("Participation not found")
    pdf = certificate_dispatch.certificate_pdf(participation)
    filename = certificate_filename(participation.student.name, participation.event.title)
    return Response(
        pdf,
        mimetype="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@bp.get("/verify/<code>")
def verify(code: str):
    certificate = certificate_dispatch.verify_certificate(code)
    return jsonify({"ok": True, "valid": True, "certificate": certificate})
