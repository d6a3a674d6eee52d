from functools import wraps

from flask import abort, session

from ..app import db
from ..models import Student, User


def _current_staff():
    user_id = session.get("user_id")
    if not user_id:
        return None
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        return None
    return user


def _current_student():
    student_id = session.get("student_id")
    if not student_id:
        return None
    return db.session.get(Student, student_id)


def staff_required(fn):
    """Allow admin or faculty accounts."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not session.get("user_id"):
            abort(401)
        user = _current_staff()
        if not user:
            abort(403)
        return fn(*args, **kwargs, current_user=user)

    return wrapper


def admin_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not session.get("user_id"):
            abort(401)
        user = _current_staff()
        if not user or not user.is_admin:
            abort(403)
        return fn(*args, **kwargs, current_user=user)

    return wrapper


def student_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        student = _current_student()
        if not student:
            abort(401)
        return fn(*args, **kwargs, current_student=student)

    return wrapper


def login_required(fn):
    """Allow any signed-in identity; passes whichever is present."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = _current_staff()
        student = None if user else _current_student()
        if not user and not student:
            abort(401)
        return fn(*args, **kwargs, current_user=user, current_student=student)

    return wrapper
