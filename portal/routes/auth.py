from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, session as flask_session, url_for
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import func

from ..app import db
from ..models import Student, User
from ..services.notifications import send_templated_email
from ..shared.errors import ValidationError
from ..shared.rbac import login_required
from ..shared.time import utcnow_naive

bp = Blueprint("auth", __name__, url_prefix="/api/auth")

RESET_SALT = "pwd-reset"
RESET_MAX_AGE = 3600


def _lookup(email: str):
    user = db.session.query(User).filter(func.lower(User.email) == email).one_or_none()
    if user:
        return "user", user
    student = db.session.query(Student).filter(func.lower(Student.email) == email).one_or_none()
    if student:
        return "student", student
    return None, None


@bp.post("/login")
def login():
    payload = request.get_json(silent=True) or request.form
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    if not email or not password:
        raise ValidationError("Email and password are required")
    kind, obj = _lookup(email)
    if obj is None or not obj.check_password(password):
        current_app.logger.info("[AUTH-FAIL] email=%s", email)
        return jsonify({"ok": False, "error": "Invalid email or password"}), 401
    if kind == "user" and not obj.is_active:
        return jsonify({"ok": False, "error": "Invalid email or password"}), 401
    flask_session.clear()
    if kind == "user":
        flask_session["user_id"] = obj.id
        body = {"id": obj.id, "email": obj.email, "role": obj.role, "name": obj.full_name}
    else:
        flask_session["student_id"] = obj.id
        obj.last_active = utcnow_naive()
        db.session.commit()
        body = obj.to_dict()
        body["role"] = "student"
    current_app.logger.info("[AUTH] login kind=%s id=%s", kind, obj.id)
    return jsonify({"ok": True, "user": body})


@bp.post("/logout")
def logout():
    flask_session.clear()
    return jsonify({"ok": True})


@bp.get("/me")
@login_required
def me(current_user=None, current_student=None):
    if current_user:
        return jsonify(
            {
                "ok": True,
                "user": {
                    "id": current_user.id,
                    "email": current_user.email,
                    "role": current_user.role,
                    "name": current_user.full_name,
                },
            }
        )
    body = current_student.to_dict()
    body["role"] = "student"
    return jsonify({"ok": True, "user": body})


@bp.post("/forgot-password")
def forgot_password():
    payload = request.get_json(silent=True) or request.form
    email = (payload.get("email") or "").strip().lower()
    kind, obj = _lookup(email) if email else (None, None)
    if obj is not None:
        serializer = URLSafeTimedSerializer(current_app.secret_key)
        token = serializer.dumps({"kind": kind, "email": email}, salt=RESET_SALT)
        link = url_for("auth.reset_password", token=token, _external=True)
        res = send_templated_email(
            email,
            "Reset your volunteer portal password",
            "password_reset",
            with_html=False,
            link=link,
        )
        if not res.get("ok"):
            current_app.logger.info("[MAIL-FAIL] password reset email=%s", email)
    # same answer whether or not the account exists
    return jsonify({"ok": True, "message": "If we find an account, we'll email a link."})


@bp.post("/reset-password")
def reset_password():
    payload = request.get_json(silent=True) or request.form
    token = request.args.get("token") or payload.get("token") or ""
    serializer = URLSafeTimedSerializer(current_app.secret_key)
    try:
        data = serializer.loads(token, salt=RESET_SALT, max_age=RESET_MAX_AGE)
    except (BadSignature, SignatureExpired):
        raise ValidationError("Invalid or expired token") from None
    password = payload.get("password") or ""
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters")
    if password != (payload.get("passwordConfirm") or password):
        raise ValidationError("Passwords do not match")
    _, obj = _lookup(data.get("email", ""))
    if obj is None:
        raise ValidationError("Account not found")
    obj.set_password(password)
    db.session.commit()
    return jsonify({"ok": True})
