from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..services import ai_reports, participations
from ..shared.errors import NotFoundError, ValidationError
from ..shared.rbac import staff_required, student_required

bp = Blueprint("participations", __name__, url_prefix="/api/participations")


def _own(participation_id: int, student):
    participation = participations.get_participation(participation_id)
    if participation.student_id != student.id:
        raise NotFoundError("Participation not found")
    return participation


def _uploaded_files() -> list[tuple[str, bytes]]:
    files = []
    for storage in request.files.getlist("files"):
        if storage and storage.filename:
            files.append((storage.filename, storage.read()))
    return files


@bp.get("/mine")
@student_required
def mine(current_student):
    rows = participations.list_for_student(current_student, request.args.get("status"))
    return jsonify({"ok": True, "participations": [p.to_dict(include_event=True) for p in rows]})


@bp.post("/<int:participation_id>/evidence")
@student_required
def upload_evidence(participation_id: int, current_student):
    participation = _own(participation_id, current_student)
    files = _uploaded_files()
    if not files:
        raise ValidationError("No files uploaded")
    created = participations.upload_evidence(
        participation, files, request.form.get("submissionText")
    )
    return jsonify({"ok": True, "evidence": [e.to_dict() for e in created]}), 201


@bp.post("/<int:participation_id>/report")
@student_required
def generate_report(participation_id: int, current_student):
    participation = _own(participation_id, current_student)
    text = request.form.get("submissionText")
    if text is None:
        text = (request.get_json(silent=True) or {}).get("submissionText")
    result = ai_reports.generate_participation_report(participation, text, _uploaded_files())
    return jsonify(
        {"ok": True, "report": result.report, "aiGenerated": result.success, "error": result.error}
    )


@bp.get("/pending")
@staff_required
def pending(current_user):
    rows = participations.pending_approvals()
    return jsonify(
        {
            "ok": True,
            "participations": [
                p.to_dict(include_event=True, include_student=True) for p in rows
            ],
        }
    )


@bp.post("/<int:participation_id>/approve")
@staff_required
def approve(participation_id: int, current_user):
    participation = participations.approve(
        participations.get_participation(participation_id), current_user
    )
    return jsonify({"ok": True, "participation": participation.to_dict()})


@bp.post("/<int:participation_id>/reject")
@staff_required
def reject(participation_id: int, current_user):
    payload = request.get_json(silent=True) or {}
    participation = participations.reject(
        participations.get_participation(participation_id), payload.get("reason"), current_user
    )
    return jsonify({"ok": True, "participation": participation.to_dict()})


@bp.post("/<int:participation_id>/attended")
@staff_required
def attended(participation_id: int, current_user):
    participation = participations.mark_attended(
        participations.get_participation(participation_id)
    )
    return jsonify({"ok": True, "participation": participation.to_dict()})


@bp.post("/<int:participation_id>/complete")
@staff_required
def complete(participation_id: int, current_user):
    participation = participations.complete(participations.get_participation(participation_id))
    return jsonify({"ok": True, "participation": participation.to_dict()})
