"""Upload API endpoint.

Stores media that templates then reference through /uploads paths.
"""

import re
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, File, HTTPException, UploadFile
from loguru import logger

from clipex.config import settings


router = APIRouter(tags=["upload"])

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")

# Module-level reference (set by main.py during startup)
_uploads_dir: Optional[Path] = None


def set_uploads_dir(path: Path):
    global _uploads_dir
    _uploads_dir = Path(path)


def sanitize_filename(filename: str) -> str:
    """Keep the base name with only [A-Za-z0-9._-] characters."""
    name = _UNSAFE_CHARS.sub("_", Path(filename).name).lstrip(".")
    return name or "file"


@router.post("/upload")
async def upload_file(file: Optional[UploadFile] = File(None)):
    """Store an uploaded file as <uuid>_<name> and return its served path."""
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    uploads_dir = _uploads_dir or settings.uploads_dir
    uploads_dir.mkdir(parents=True, exist_ok=True)

    stored_name = f"{uuid.uuid4()}_{sanitize_filename(file.filename)}"
    stored_path = uploads_dir / stored_name
    max_size = settings.max_upload_size_mb * 1024 * 1024

    total_size = 0
    with open(stored_path, "wb") as buffer:
        while chunk := await file.read(8 * 1024 * 1024):  # 8MB chunks
            total_size += len(chunk)
            if total_size > max_size:
                buffer.close()
                stored_path.unlink(missing_ok=True)
                raise HTTPException(
                    status_code=413,
                    detail=f"File too large. Maximum size: {settings.max_upload_size_mb}MB"
                )
            buffer.write(chunk)

    logger.info(f"Uploaded {file.filename} -> {stored_path} ({total_size / 1024 / 1024:.1f}MB)")
    return {"url": f"/uploads/{stored_name}", "filename": stored_name}
