from __future__ import annotations

from typing import Sequence

from flask import current_app, render_template
from sqlalchemy.exc import SQLAlchemyError

from .. import emailer
from ..app import db
from ..models import Notification, Student
from ..shared.realtime import get_channel, user_room

__all__ = [
    "send_templated_email",
    "notify_student",
    "send_announcement",
    "mark_read",
]


def send_templated_email(
    recipient: str,
    subject: str,
    template: str,
    attachments: Sequence[emailer.Attachment] | None = None,
    with_html: bool = True,
    **context,
) -> dict:
    """Render ``email/<template>.txt`` (and ``.html``) and send it."""
    body = render_template(f"email/{template}.txt", **context)
    html_body = render_template(f"email/{template}.html", **context) if with_html else None
    return emailer.send(recipient, subject, body, html=html_body, attachments=attachments)


def notify_student(
    student: Student,
    notification_type: str,
    message: str,
    data: dict | None = None,
    event_name: str = "notification",
    commit: bool = True,
    channel=None,
) -> Notification | None:
    """Persist an in-app notification and push it to the student's room.

    Failures are logged and swallowed: a notification never fails the caller.
    """
    data = data or {}
    notification = None
    try:
        notification = Notification(
            student_id=student.id,
            notification_type=notification_type,
            message=message,
            data=data,
        )
        db.session.add(notification)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "[NOTIFY-FAIL] student=%s type=%s stage=persist", student.id, notification_type
        )
        notification = None
    try:
        (channel or get_channel()).emit(
            user_room(student.id),
            event_name,
            {"type": notification_type, "message": message, **data},
        )
    except Exception:
        current_app.logger.exception(
            "[NOTIFY-FAIL] student=%s type=%s stage=emit", student.id, notification_type
        )
    return notification


def mark_read(student: Student, notification_id: int) -> bool:
    notification = db.session.get(Notification, notification_id)
    if not notification or notification.student_id != student.id:
        return False
    notification.read = True
    db.session.commit()
    return True


def send_announcement(
    subject: str,
    message: str,
    department: str | None = None,
    year: int | None = None,
) -> dict:
    query = db.session.query(Student)
    if department:
        query = query.filter(Student.department == department)
    if year:
        query = query.filter(Student.year == int(year))
    students = query.order_by(Student.id).all()
    sent = 0
    failed = 0
    for student in students:
        res = send_templated_email(
            student.email,
            subject,
            "announcement",
            student=student,
            subject=subject,
            message=message,
        )
        if res.get("ok"):
            sent += 1
        else:
            failed += 1
            current_app.logger.warning(
                "[MAIL-FAIL] announcement student=%s error=%s", student.id, res.get("detail")
            )
    get_channel().broadcast(
        "announcement",
        {"subject": subject, "message": message, "department": department, "year": year},
    )
    current_app.logger.info(
        "[ANNOUNCE] subject=\"%s\" recipients=%s sent=%s failed=%s",
        subject,
        len(students),
        sent,
        failed,
    )
    return {"total": len(students), "sent": sent, "failed": failed}
