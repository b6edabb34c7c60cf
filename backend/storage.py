from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime
from pathlib import Path
from urllib.parse import urlencode

from fastapi import HTTPException, UploadFile

from .config import settings

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def resolve_storage_dir() -> Path:
    preferred = Path(settings.storage_dir)
    try:
        preferred.mkdir(parents=True, exist_ok=True)
        return preferred
    except OSError as exc:
        raise HTTPException(
            status_code=500,
            detail=f"Storage directory is not writable: {preferred}",
        ) from exc


def make_file_url(path: str) -> str:
    # clients fetch attachments from /api/files?path=...
    return f"/api/files?{urlencode({'path': path})}"


def safe_filename(name: str | None) -> str:
    cleaned = _UNSAFE.sub("_", (name or "upload").strip()).strip("._")
    return cleaned or "upload"


async def store_upload(upload: UploadFile, bucket: str, prefix: str) -> tuple[str, str]:
    """Save *upload* under <storage>/<bucket>/<prefix>/ and return (relative path, original name)."""
    content = await upload.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    original = upload.filename or "upload"
    folder = resolve_storage_dir() / bucket / safe_filename(prefix)
    folder.mkdir(parents=True, exist_ok=True)
    stamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")
    fname = f"{stamp}-{uuid.uuid4().hex[:8]}-{safe_filename(original)}"
    out_path = folder / fname
    out_path.write_bytes(content)
    logger.info("Stored %s (%d bytes)", out_path, len(content))
    return out_path.relative_to(resolve_storage_dir()).as_posix(), original


def open_stored(path: str) -> Path:
    """Resolve a stored relative path, refusing anything outside the storage root."""
    root = resolve_storage_dir().resolve()
    target = (root / path).resolve()
    if root not in target.parents or not target.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return target
