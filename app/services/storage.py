"""
Local document storage.

Uploads are written under ``UPLOAD_DIR/<tenant_id>/<epoch ms>-<safe name>``
so that two tenants (or two uploads of the same file) never collide.
"""
from __future__ import annotations

import logging
import os
import re
import time
from typing import Optional, Tuple

import aiofiles
from fastapi import UploadFile

from app.config import settings

logger = logging.getLogger(__name__)

_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9.-]")


class FileTooLargeError(Exception):
    """Raised when an upload stream exceeds MAX_FILE_SIZE."""


def safe_filename(filename: str) -> str:
    return _UNSAFE_CHARS_RE.sub("_", filename)


def build_storage_path(tenant_id: int, filename: str, now_ms: Optional[int] = None) -> str:
    """Relative storage key for an upload."""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{tenant_id}/{stamp}-{safe_filename(filename)}"


def absolute_path(storage_path: str) -> str:
    return os.path.join(settings.UPLOAD_DIR, storage_path)


async def save_upload(upload: UploadFile, tenant_id: int) -> Tuple[str, int]:
    """
    Stream an upload to disk while enforcing the size limit.

    Returns:
        ``(storage_path, size_in_bytes)``

    Raises:
        FileTooLargeError: the partial file is removed before raising.
    """
    storage_path = build_storage_path(tenant_id, upload.filename or "upload")
    full_path = absolute_path(storage_path)
    os.makedirs(os.path.dirname(full_path), exist_ok=True)

    size = 0
    async with aiofiles.open(full_path, "wb") as out:
        while True:
            chunk = await upload.read(1024 * 1024)  # 1 MB slices
            if not chunk:
                break
            size += len(chunk)
            if size > settings.MAX_FILE_SIZE:
                break
            await out.write(chunk)

    if size > settings.MAX_FILE_SIZE:
        safe_remove(storage_path)
        raise FileTooLargeError(
            f"File exceeds the {settings.MAX_FILE_SIZE // (1024 * 1024)} MB size limit."
        )

    logger.info("Saved %r → %s (%s bytes)", upload.filename, full_path, f"{size:,}")
    return storage_path, size


async def read_file(storage_path: str) -> bytes:
    async with aiofiles.open(absolute_path(storage_path), "rb") as f:
        return await f.read()


def safe_remove(storage_path: Optional[str]) -> None:
    """Delete a stored file, logging warnings but never raising."""
    if not storage_path:
        return
    path = absolute_path(storage_path)
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as exc:
        logger.warning("Could not remove file %r: %s", path, exc)
