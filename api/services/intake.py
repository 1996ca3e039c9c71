from __future__ import annotations

import hashlib
import os
import re
from dataclasses import dataclass
from typing import Optional

from .exceptions import EmptyUploadError, PayloadTooLargeError, UnsupportedMediaTypeError

MAX_UPLOAD_BYTES = 10 * 1024 * 1024

ALLOWED_CONTENT_TYPES = frozenset(
    {
        "application/pdf",
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
    }
)

_GENERIC_CONTENT_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"%PDF-", "application/pdf"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


@dataclass(frozen=True)
class ValidatedUpload:
    content: bytes
    filename: str
    content_type: str
    size_bytes: int
    file_hash: str


def sanitize_filename(filename: str | None) -> str:
    name = os.path.basename(filename or "contract.pdf")
    name = re.sub(r"[^A-Za-z0-9._-]", "_", name)
    return name[:100] or "contract.pdf"


def sniff_content_type(content: bytes) -> Optional[str]:
    for signature, content_type in _SIGNATURES:
        if content.startswith(signature):
            return content_type
    return None


def _normalize_content_type(value: str | None) -> str:
    # drop parameters such as "; charset=binary"
    return (value or "").split(";", 1)[0].strip().lower()


def validate_upload(content: bytes, filename: str | None, content_type: str | None) -> ValidatedUpload:
    """Structural checks on an upload: size ceiling and MIME allow-list.

    The declared content type wins; the sniffed one is only used when the
    client sent nothing useful. File contents are not inspected otherwise.
    """
    size = len(content)
    if size > MAX_UPLOAD_BYTES:
        raise PayloadTooLargeError(f"File exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)} MiB limit.")
    if size == 0:
        raise EmptyUploadError("Empty file.")

    resolved = _normalize_content_type(content_type)
    if resolved in _GENERIC_CONTENT_TYPES:
        resolved = sniff_content_type(content) or resolved

    if resolved not in ALLOWED_CONTENT_TYPES:
        raise UnsupportedMediaTypeError("Invalid file type. Only PDF and image files are allowed.")

    return ValidatedUpload(
        content=content,
        filename=sanitize_filename(filename),
        content_type=resolved,
        size_bytes=size,
        file_hash=hashlib.sha256(content).hexdigest(),
    )
