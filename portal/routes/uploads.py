from flask import Blueprint, abort, send_file

from ..shared.errors import ValidationError
from ..shared.storage import get_storage

bp = Blueprint("uploads", __name__)


@bp.get("/uploads/<path:public_id>")
def serve(public_id: str):
    try:
        path = get_storage().path_for(public_id)
    except ValidationError:
        abort(404)
    try:
        return send_file(path)
    except FileNotFoundError:
        abort(404)
