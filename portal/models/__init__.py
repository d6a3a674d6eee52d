from __future__ import annotations

import base64
import math

from flask import current_app
from sqlalchemy import event as sa_event
from sqlalchemy.orm import validates

from ..app import db
from ..shared.certificates_layout import CertificateLayout
from ..shared.errors import ValidationError
from ..shared.passwords import hash_password, check_password

ATTENDANCE_THRESHOLD = 75

DEPARTMENTS = ("CSE", "ECE", "MECH", "CIVIL", "EEE", "IT")

EVENT_TYPES = (
    "tree plantation",
    "blood donation",
    "cleanliness drive",
    "awareness campaign",
    "health camp",
    "other",
)

EVENT_STATUSES = ("draft", "published", "ongoing", "completed", "cancelled")

PARTICIPATION_STATUSES = ("pending", "approved", "rejected", "attended", "completed")

# statuses whose participants receive certificates in a batch dispatch
CERTIFICATE_STATUSES = ("attended", "completed")

USER_ROLES = ("admin", "faculty")


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    password_hash = db.Column(db.String(255))
    full_name = db.Column(db.String(255))
    role = db.Column(db.String(16), nullable=False, default="faculty")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    __table_args__ = (
        db.Index("ix_users_email_lower", db.func.lower(email), unique=True),
    )

    @validates("email")
    def lower_email(self, key, value):  # pragma: no cover - simple normalizer
        return (value or "").strip().lower()

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def set_password(self, plain: str) -> None:
        self.password_hash = hash_password(plain)

    def check_password(self, plain: str) -> bool:
        if not self.password_hash:
            return False
        return check_password(plain, self.password_hash)


class Student(db.Model):
    __tablename__ = "students"

    id = db.Column(db.Integer, primary_key=True)
    registration_number = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    password_hash = db.Column(db.String(255))
    department = db.Column(db.String(8), nullable=False)
    year = db.Column(db.SmallInteger, nullable=False)
    # NULL means no attendance data has been recorded yet
    attendance_percentage = db.Column(db.Float)
    total_volunteer_hours = db.Column(db.Float, nullable=False, default=0)
    is_eligible = db.Column(db.Boolean, nullable=False, default=False)
    phone_number = db.Column(db.String(20))
    last_active = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    participations = db.relationship(
        "Participation",
        back_populates="student",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    __table_args__ = (
        db.Index("ix_students_department_year", "department", "year"),
    )

    @validates("registration_number")
    def upper_registration_number(self, key, value):  # pragma: no cover - simple normalizer
        return (value or "").strip().upper()

    @validates("email")
    def lower_email(self, key, value):  # pragma: no cover - simple normalizer
        return (value or "").strip().lower()

    @validates("attendance_percentage")
    def sync_eligibility(self, key, value):
        if value is not None:
            value = float(value)
            if not math.isfinite(value):
                raise ValidationError("attendance percentage must be a finite number")
            value = max(0.0, min(100.0, value))
        self.is_eligible = value is not None and value >= ATTENDANCE_THRESHOLD
        return value

    def set_password(self, plain: str) -> None:
        self.password_hash = hash_password(plain)

    def check_password(self, plain: str) -> bool:
        if not self.password_hash:
            return False
        return check_password(plain, self.password_hash)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "registrationNumber": self.registration_number,
            "name": self.name,
            "email": self.email,
            "department": self.department,
            "year": self.year,
            "attendancePercentage": self.attendance_percentage,
            "totalVolunteerHours": self.total_volunteer_hours or 0,
            "isEligible": bool(self.is_eligible),
            "phoneNumber": self.phone_number,
        }


class AttendanceRecord(db.Model):
    __tablename__ = "attendance_records"

    id = db.Column(db.Integer, primary_key=True)
    registration_number = db.Column(db.String(32), nullable=False, index=True)
    month = db.Column(db.SmallInteger, nullable=False)
    year = db.Column(db.SmallInteger, nullable=False)
    # counts are NULL when the import carried only a percentage
    classes_attended = db.Column(db.Integer)
    total_classes = db.Column(db.Integer)
    percentage = db.Column(db.Float, nullable=False, default=0)
    imported_at = db.Column(db.DateTime, server_default=db.func.now())
    imported_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL")
    )
    remarks = db.Column(db.Text)
    __table_args__ = (
        db.UniqueConstraint(
            "registration_number",
            "month",
            "year",
            name="uq_attendance_records_student_month",
        ),
        db.CheckConstraint("month BETWEEN 1 AND 12", name="ck_attendance_month"),
        db.CheckConstraint("year BETWEEN 2000 AND 2100", name="ck_attendance_year"),
    )

    @validates("registration_number")
    def upper_registration_number(self, key, value):  # pragma: no cover - simple normalizer
        return (value or "").strip().upper()

    def recompute_percentage(self) -> None:
        from ..services.attendance import clamp_percentage, compute_percentage

        if self.total_classes is None:
            self.percentage = clamp_percentage(self.percentage)
        else:
            self.percentage = compute_percentage(
                self.classes_attended or 0, self.total_classes
            )

    def to_dict(self) -> dict:
        return {
            "month": self.month,
            "year": self.year,
            "classesAttended": self.classes_attended,
            "totalClasses": self.total_classes,
            "percentage": self.percentage,
        }


@sa_event.listens_for(AttendanceRecord, "before_insert")
@sa_event.listens_for(AttendanceRecord, "before_update")
def _attendance_record_percentage(mapper, connection, target: AttendanceRecord) -> None:
    target.recompute_percentage()


class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False)
    event_type = db.Column(db.String(32), nullable=False)
    location = db.Column(db.String(255), nullable=False)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    registration_deadline = db.Column(db.DateTime, nullable=False)
    max_participants = db.Column(db.Integer)
    current_participants = db.Column(db.Integer, nullable=False, default=0)
    organizer_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL")
    )
    status = db.Column(
        db.String(16), nullable=False, default="draft", server_default="draft"
    )
    requirements = db.Column(db.JSON, nullable=False, default=list)
    hours_awarded = db.Column(db.Float, nullable=False, default=2)
    approval_required = db.Column(
        db.Boolean, nullable=False, default=True, server_default=db.text("true")
    )
    certificate_template_url = db.Column(db.String(512))
    certificate_template_id = db.Column(db.String(255))
    certificate_fields = db.Column(db.JSON)
    certificate_auto_send = db.Column(
        db.Boolean, nullable=False, default=True, server_default=db.text("true")
    )
    certificates_sent = db.Column(
        db.Boolean, nullable=False, default=False, server_default=db.text("false")
    )
    certificates_sent_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    organizer = db.relationship("User")
    participations = db.relationship(
        "Participation",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    __table_args__ = (db.Index("ix_events_status_start", "status", "start_date"),)

    @property
    def certificate_layout(self) -> CertificateLayout:
        return CertificateLayout.from_dict(
            self.certificate_fields or {}, auto_send=self.certificate_auto_send
        )

    @certificate_layout.setter
    def certificate_layout(self, layout: CertificateLayout) -> None:
        self.certificate_fields = layout.fields_dict()
        self.certificate_auto_send = layout.auto_send

    @property
    def has_certificate_template(self) -> bool:
        return bool((self.certificate_template_url or "").strip())

    def certificate_dict(self) -> dict | None:
        if not self.has_certificate_template and not self.certificate_fields:
            return None
        payload = self.certificate_layout.to_dict()
        payload["templateUrl"] = self.certificate_template_url
        return payload

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "eventType": self.event_type,
            "location": self.location,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "registrationDeadline": (
                self.registration_deadline.isoformat()
                if self.registration_deadline
                else None
            ),
            "maxParticipants": self.max_participants,
            "currentParticipants": self.current_participants or 0,
            "organizerId": self.organizer_id,
            "status": self.status,
            "requirements": list(self.requirements or []),
            "hoursAwarded": self.hours_awarded,
            "approvalRequired": bool(self.approval_required),
            "certificate": self.certificate_dict(),
            "certificatesSent": bool(self.certificates_sent),
        }


class Participation(db.Model):
    __tablename__ = "participations"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(
        db.Integer, db.ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    event_id = db.Column(
        db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    status = db.Column(
        db.String(16), nullable=False, default="pending", server_default="pending"
    )
    registered_at = db.Column(db.DateTime(timezone=True), server_default=db.func.now())
    approved_at = db.Column(db.DateTime(timezone=True))
    approved_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL")
    )
    attendance_date = db.Column(db.DateTime(timezone=True))
    volunteer_hours = db.Column(db.Float, nullable=False, default=0)
    submission_text = db.Column(db.Text)
    ai_generated_report = db.Column(db.Text)
    rejection_reason = db.Column(db.Text)
    certificate_url = db.Column(db.String(512))
    certificate_id = db.Column(db.String(255))
    # pending / sent / failed; NULL until a dispatch touches the row
    certificate_delivery = db.Column(db.String(16))
    certificate_delivery_error = db.Column(db.Text)
    certificate_delivered_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    student = db.relationship("Student", back_populates="participations")
    event = db.relationship("Event", back_populates="participations")
    approved_by = db.relationship("User")
    evidence = db.relationship(
        "ParticipationEvidence",
        back_populates="participation",
        cascade="all, delete-orphan",
        order_by="ParticipationEvidence.id",
    )
    __table_args__ = (
        db.UniqueConstraint(
            "student_id", "event_id", name="uq_participations_student_event"
        ),
        db.Index("ix_participations_event_status", "event_id", "status"),
    )

    def to_dict(self, include_event: bool = False, include_student: bool = False) -> dict:
        payload = {
            "id": self.id,
            "studentId": self.student_id,
            "eventId": self.event_id,
            "status": self.status,
            "registeredAt": self.registered_at.isoformat() if self.registered_at else None,
            "approvedAt": self.approved_at.isoformat() if self.approved_at else None,
            "volunteerHours": self.volunteer_hours or 0,
            "evidence": [item.to_dict() for item in self.evidence],
            "aiGeneratedReport": self.ai_generated_report,
            "rejectionReason": self.rejection_reason,
            "certificateUrl": self.certificate_url,
            "certificateId": self.certificate_id,
            "certificateDelivery": self.certificate_delivery,
        }
        if include_event and self.event:
            payload["event"] = self.event.to_dict()
        if include_student and self.student:
            payload["student"] = self.student.to_dict()
        return payload


class ParticipationEvidence(db.Model):
    __tablename__ = "participation_evidence"

    id = db.Column(db.Integer, primary_key=True)
    participation_id = db.Column(
        db.Integer,
        db.ForeignKey("participations.id", ondelete="CASCADE"),
        nullable=False,
    )
    evidence_type = db.Column(db.String(16), nullable=False)
    url = db.Column(db.String(512), nullable=False)
    public_id = db.Column(db.String(255))
    filename = db.Column(db.String(255))
    uploaded_at = db.Column(db.DateTime(timezone=True), server_default=db.func.now())

    participation = db.relationship("Participation", back_populates="evidence")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.evidence_type,
            "url": self.url,
            "filename": self.filename,
        }


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(
        db.Integer, db.ForeignKey("students.id", ondelete="CASCADE"), nullable=False
    )
    notification_type = db.Column(db.String(32), nullable=False)
    message = db.Column(db.Text, nullable=False)
    data = db.Column(db.JSON)
    read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), server_default=db.func.now())
    __table_args__ = (
        db.Index("ix_notifications_student_created", "student_id", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.notification_type,
            "message": self.message,
            "data": self.data or {},
            "read": bool(self.read),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class Settings(db.Model):
    __tablename__ = "settings"
    id = db.Column(db.Integer, primary_key=True, default=1)
    smtp_host = db.Column(db.String(255))
    smtp_port = db.Column(db.Integer)
    smtp_user = db.Column(db.String(255))
    smtp_from_default = db.Column(db.String(255))
    smtp_from_name = db.Column(db.String(255))
    smtp_pass_enc = db.Column(db.Text)
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    # always enforce singleton row id=1
    @staticmethod
    def get() -> "Settings | None":
        return db.session.get(Settings, 1)

    def _key(self) -> bytes:
        return (current_app.config.get("SECRET_KEY") or "portal").encode()

    def set_smtp_pass(self, plain: str) -> None:
        if not plain:
            self.smtp_pass_enc = None
            return
        key = self._key()
        xored = bytes(b ^ key[i % len(key)] for i, b in enumerate(plain.encode()))
        self.smtp_pass_enc = base64.b64encode(xored).decode()

    def get_smtp_pass(self) -> str | None:
        if not self.smtp_pass_enc:
            return None
        key = self._key()
        try:
            raw = base64.b64decode(self.smtp_pass_enc.encode())
            return bytes(b ^ key[i % len(key)] for i, b in enumerate(raw)).decode()
        except (ValueError, UnicodeDecodeError):
            current_app.logger.warning("[SETTINGS] smtp password could not be decoded")
            return None
