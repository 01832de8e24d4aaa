"""Multipart upload checks: presence, MIME allow-list, size limit."""

from __future__ import annotations

from typing import TYPE_CHECKING

from imageedit.errors import InvalidInput, PayloadTooLarge, UnsupportedMediaType

if TYPE_CHECKING:
    from fastapi import UploadFile

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp", "image/heic", "image/heif")

_CHUNK_SIZE = 1024 * 1024


def require_file(file: UploadFile | None) -> UploadFile:
    if file is None:
        raise InvalidInput("file", "Missing file in request")
    return file


def check_media_type(file: UploadFile, allowed: tuple[str, ...] | None = None) -> str:
    """Return the upload's MIME type if acceptable.

    ``allowed=None`` accepts any ``image/*`` type.
    """
    media_type = (file.content_type or "").lower()
    if allowed is None:
        if not media_type.startswith("image/"):
            raise UnsupportedMediaType("File must be an image")
    elif media_type not in allowed:
        raise UnsupportedMediaType("File must be an image (jpg, png, webp, heic)")
    return media_type


async def read_upload(file: UploadFile, max_size: int) -> bytes:
    """Read the whole upload, refusing anything above ``max_size`` bytes."""
    if file.size is not None and file.size > max_size:
        raise PayloadTooLarge(f"File exceeds the maximum size of {max_size} bytes")

    chunks: list[bytes] = []
    total = 0
    while chunk := await file.read(_CHUNK_SIZE):
        total += len(chunk)
        if total > max_size:
            raise PayloadTooLarge(f"File exceeds the maximum size of {max_size} bytes")
        chunks.append(chunk)

    if total == 0:
        raise InvalidInput("file", "Uploaded file is empty")
    return b"".join(chunks)
