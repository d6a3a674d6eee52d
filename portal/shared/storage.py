import os
import tempfile
import uuid
from typing import NamedTuple

from werkzeug.utils import secure_filename

from .errors import ExternalServiceError, NotFoundError, ValidationError


def ensure_dir(path: str) -> None:
    """Create directory if missing (mkdir -p equivalent)."""
    os.makedirs(path, exist_ok=True)


def write_atomic(path: str, data, mode: str = "wb") -> None:
    """Write data to a temporary file then atomically rename to target path."""
    dir_path = os.path.dirname(path)
    ensure_dir(dir_path)
    fd, tmp_path = tempfile.mkstemp(dir=dir_path)
    try:
        with os.fdopen(fd, mode) as f:
            f.write(data)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


class StoredObject(NamedTuple):
    url: str
    public_id: str


class LocalObjectStorage:
    """Object store on local disk, served under ``base_url``.

    ``public_id`` is the path relative to ``root``; it is what gets persisted
    and later passed to :meth:`read` and :meth:`delete`.
    """

    def __init__(self, root: str, base_url: str = "/uploads"):
        self.root = root
        self.base_url = base_url.rstrip("/") or ""

    def _resolve(self, public_id: str) -> str:
        if not public_id:
            raise ValidationError("Missing storage id")
        root = os.path.realpath(self.root)
        path = os.path.realpath(os.path.join(root, public_id))
        if path != root and not path.startswith(root + os.sep):
            raise ValidationError("Invalid storage id")
        return path

    def url_for(self, public_id: str) -> str:
        return f"{self.base_url}/{public_id}"

    def save(self, data: bytes, folder: str, filename: str) -> StoredObject:
        safe_folder = "/".join(
            part for part in (secure_filename(p) for p in folder.split("/")) if part
        )
        safe_name = secure_filename(filename) or "file"
        public_id = f"{safe_folder}/{uuid.uuid4().hex[:12]}_{safe_name}".lstrip("/")
        path = self._resolve(public_id)
        try:
            write_atomic(path, data)
            os.chmod(path, 0o644)
        except OSError as exc:
            raise ExternalServiceError(f"Could not store {safe_name}: {exc}") from exc
        return StoredObject(url=self.url_for(public_id), public_id=public_id)

    def read(self, public_id: str) -> bytes:
        path = self._resolve(public_id)
        try:
            with open(path, "rb") as fh:
                return fh.read()
        except FileNotFoundError:
            raise NotFoundError(f"Stored object {public_id} not found") from None
        except OSError as exc:
            raise ExternalServiceError(f"Could not read {public_id}: {exc}") from exc

    def delete(self, public_id: str | None) -> bool:
        if not public_id:
            return False
        path = self._resolve(public_id)
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        return True

    def path_for(self, public_id: str) -> str:
        return self._resolve(public_id)


def get_storage() -> LocalObjectStorage:
    from flask import current_app

    return current_app.extensions["object_storage"]
