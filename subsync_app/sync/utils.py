"""
Sync-specific utilities for handling uploaded CSV files and cleanup.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable
from uuid import uuid4

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

DEFAULT_UPLOAD_SUBDIR = "sync_uploads"
CSV_EXTENSIONS: tuple[str, ...] = ("csv",)


def _normalize_upload_dir(configured_path: str | None, instance_path: str) -> Path:
    if not configured_path:
        return Path(instance_path) / DEFAULT_UPLOAD_SUBDIR

    candidate = Path(configured_path)
    if candidate.is_absolute():
        return candidate
    return Path(instance_path) / candidate


def resolve_upload_directory(app) -> Path:
    """
    Determine and create (if necessary) the sync upload directory.
    """

    upload_dir = _normalize_upload_dir(app.config.get("SYNC_UPLOAD_DIR"), app.instance_path)
    upload_dir.mkdir(parents=True, exist_ok=True)
    return upload_dir


def allowed_file(filename: str, allowed_extensions: Iterable[str] = CSV_EXTENSIONS) -> bool:
    if not filename or "." not in filename:
        return False
    extension = filename.rsplit(".", 1)[1].lower()
    return extension in {ext.lower() for ext in allowed_extensions}


def persist_upload(file_storage: FileStorage, app) -> Path:
    """
    Persist the uploaded file under ``resolve_upload_directory(app)``.

    A UUID-based name avoids collisions; the original extension is kept.
    """

    upload_dir = resolve_upload_directory(app)
    original_name = secure_filename(file_storage.filename or "")
    extension = Path(original_name).suffix or ".csv"

    target_path = upload_dir / f"{uuid4().hex}{extension}"
    file_storage.save(target_path)
    current_app.logger.debug("Sync upload persisted to %s", target_path)
    return target_path


def cleanup_upload(path: Path) -> None:
    """
    Remove a stored upload, logging but ignoring filesystem errors.
    """

    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        current_app.logger.warning("Failed to remove sync upload %s: %s", path, exc)
