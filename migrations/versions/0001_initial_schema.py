"""initial volunteer portal schema"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255)),
        sa.Column("full_name", sa.String(255)),
        sa.Column("role", sa.String(16), nullable=False, server_default="faculty"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index(
        "ix_users_email_lower", "users", [sa.text("lower(email)")], unique=True
    )

    op.create_table(
        "students",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("registration_number", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255)),
        sa.Column("department", sa.String(8), nullable=False),
        sa.Column("year", sa.SmallInteger, nullable=False),
        sa.Column("attendance_percentage", sa.Float),
        sa.Column("total_volunteer_hours", sa.Float, nullable=False, server_default="0"),
        sa.Column("is_eligible", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("phone_number", sa.String(20)),
        sa.Column("last_active", sa.DateTime),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_students_department_year", "students", ["department", "year"])

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("registration_number", sa.String(32), nullable=False),
        sa.Column("month", sa.SmallInteger, nullable=False),
        sa.Column("year", sa.SmallInteger, nullable=False),
        sa.Column("classes_attended", sa.Integer),
        sa.Column("total_classes", sa.Integer),
        sa.Column("percentage", sa.Float, nullable=False, server_default="0"),
        sa.Column("imported_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column(
            "imported_by_id",
            sa.Integer,
            sa.ForeignKey("users.id", ondelete="SET NULL"),
        ),
        sa.Column("remarks", sa.Text),
        sa.UniqueConstraint(
            "registration_number",
            "month",
            "year",
            name="uq_attendance_records_student_month",
        ),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_attendance_month"),
        sa.CheckConstraint("year BETWEEN 2000 AND 2100", name="ck_attendance_year"),
    )
    op.create_index(
        "ix_attendance_records_registration_number",
        "attendance_records",
        ["registration_number"],
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("event_type", sa.String(32), nullable=False),
        sa.Column("location", sa.String(255), nullable=False),
        sa.Column("start_date", sa.DateTime, nullable=False),
        sa.Column("end_date", sa.DateTime, nullable=False),
        sa.Column("registration_deadline", sa.DateTime, nullable=False),
        sa.Column("max_participants", sa.Integer),
        sa.Column("current_participants", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "organizer_id", sa.Integer, sa.ForeignKey("users.id", ondelete="SET NULL")
        ),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("requirements", sa.JSON, nullable=False, server_default="[]"),
        sa.Column("hours_awarded", sa.Float, nullable=False, server_default="2"),
        sa.Column("approval_required", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("certificate_template_url", sa.String(512)),
        sa.Column("certificate_template_id", sa.String(255)),
        sa.Column("certificate_fields", sa.JSON),
        sa.Column(
            "certificate_auto_send", sa.Boolean, nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "certificates_sent", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column("certificates_sent_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_events_status_start", "events", ["status", "start_date"])

    op.create_table(
        "participations",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "student_id",
            sa.Integer,
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "event_id",
            sa.Integer,
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("registered_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column(
            "approved_by_id", sa.Integer, sa.ForeignKey("users.id", ondelete="SET NULL")
        ),
        sa.Column("attendance_date", sa.DateTime(timezone=True)),
        sa.Column("volunteer_hours", sa.Float, nullable=False, server_default="0"),
        sa.Column("submission_text", sa.Text),
        sa.Column("ai_generated_report", sa.Text),
        sa.Column("rejection_reason", sa.Text),
        sa.Column("certificate_url", sa.String(512)),
        sa.Column("certificate_id", sa.String(255)),
        sa.Column("certificate_delivery", sa.String(16)),
        sa.Column("certificate_delivery_error", sa.Text),
        sa.Column("certificate_delivered_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint(
            "student_id", "event_id", name="uq_participations_student_event"
        ),
    )
    op.create_index(
        "ix_participations_event_status", "participations", ["event_id", "status"]
    )

    op.create_table(
        "participation_evidence",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "participation_id",
            sa.Integer,
            sa.ForeignKey("participations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("evidence_type", sa.String(16), nullable=False),
        sa.Column("url", sa.String(512), nullable=False),
        sa.Column("public_id", sa.String(255)),
        sa.Column("filename", sa.String(255)),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "student_id",
            sa.Integer,
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("notification_type", sa.String(32), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("data", sa.JSON),
        sa.Column("read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_notifications_student_created", "notifications", ["student_id", "created_at"]
    )

    op.create_table(
        "settings",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("smtp_host", sa.String(255)),
        sa.Column("smtp_port", sa.Integer),
        sa.Column("smtp_user", sa.String(255)),
        sa.Column("smtp_from_default", sa.String(255)),
        sa.Column("smtp_from_name", sa.String(255)),
        sa.Column("smtp_pass_enc", sa.Text),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("settings")
    op.drop_index("ix_notifications_student_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("participation_evidence")
    op.drop_index("ix_participations_event_status", table_name="participations")
    op.drop_table("participations")
    op.drop_index("ix_events_status_start", table_name="events")
    op.drop_table("events")
    op.drop_index(
        "ix_attendance_records_registration_number", table_name="attendance_records"
    )
    op.drop_table("attendance_records")
    op.drop_index("ix_students_department_year", table_name="students")
    op.drop_table("students")
    op.drop_index("ix_users_email_lower", table_name="users")
    op.drop_table("users")
