from __future__ import annotations

import logging
import os
import random
import time
from typing import Dict, List, Sequence, Tuple

from flask import current_app, request
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from .errors import ApiError

logger = logging.getLogger(__name__)

# Upload field -> sub-folder under UPLOAD_DIR.
FOLDERS = {"venue_image": "venues", "event_image": "events", "seat_map": "seatmaps"}

VENUE_FIELDS = (("images", 5), ("seat_map", 1))
EVENT_FIELDS = (("images", 10),)


def _folder_for(field: str, kind: str) -> str:
    if field in FOLDERS:
        return FOLDERS[field]
    return {"venue": "venues", "event": "events"}.get(kind, "general")


def _size(f: FileStorage) -> int:
    pos = f.stream.tell()
    f.stream.seek(0, os.SEEK_END)
    size = f.stream.tell()
    f.stream.seek(pos)
    return size


def collect_images(fields: Sequence[Tuple[str, int]]) -> Dict[str, List[FileStorage]]:
    """Pull the allowed multipart fields off the request and enforce the limits."""
    cfg = current_app.config
    allowed = dict(fields)
    unknown = [k for k in request.files if k not in allowed]
    if unknown:
        raise ApiError(f"Unexpected upload field: {unknown[0]}", 400, "validation_error", {"field": unknown[0]})

    picked: Dict[str, List[FileStorage]] = {}
    total = 0
    for name, max_count in fields:
        files = [f for f in request.files.getlist(name) if f and f.filename]
        if len(files) > max_count:
            raise ApiError(f"Too many files for {name} (max {max_count}).", 400, "validation_error", {"field": name})
        for f in files:
            if not (f.mimetype or "").startswith("image/"):
                raise ApiError("Only image files are allowed!", 400, "validation_error", {"field": name})
            if _size(f) > cfg["UPLOAD_MAX_FILE_BYTES"]:
                raise ApiError("File too large (max 5 MB).", 400, "validation_error", {"field": name})
        total += len(files)
        if files:
            picked[name] = files

    if total > cfg["UPLOAD_MAX_FILES"]:
        raise ApiError(f"Too many files (max {cfg['UPLOAD_MAX_FILES']}).", 400, "validation_error")
    if not total:
        raise ApiError("No image files uploaded.", 400, "validation_error")
    return picked


def save_image(f: FileStorage, field: str, kind: str) -> str:
    """Store one upload and return its public URL path."""
    folder = _folder_for(field, kind)
    target_dir = os.path.join(current_app.config["UPLOAD_DIR"], folder)
    os.makedirs(target_dir, exist_ok=True)

    ext = os.path.splitext(secure_filename(f.filename or ""))[1].lower()
    filename = f"{field}-{int(time.time() * 1000)}-{random.randint(0, 10**9)}{ext}"
    f.save(os.path.join(target_dir, filename))
    logger.info("Stored upload %s/%s", folder, filename)
    return f"/uploads/{folder}/{filename}"
