"""Upload constraints shared by the upload endpoint and the pipeline.

``validate_upload`` is a pure check over a file's declared size and MIME
type.  The upload route runs it before anything is written to storage and
the pipeline runs it again against the stored object's metadata, since a
client can always lie about what it sent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from receiptly.core.config import settings

SIZE_LIMIT_REASON = "File size exceeds 10MB limit"
EMPTY_FILE_REASON = "File is empty"
UPLOAD_TYPE_REASON = "Only JPG and PNG files are supported"
STORAGE_TYPE_REASON = "Only JPG, PNG, and WEBP files allowed"


@dataclass(frozen=True)
class FileValidation:
    valid: bool
    reason: Optional[str] = None


def validate_upload(
    size: int,
    content_type: Optional[str],
    allowed_types: Optional[Iterable[str]] = None,
    max_size: Optional[int] = None,
    type_reason: str = UPLOAD_TYPE_REASON,
) -> FileValidation:
    """Check ``size`` and ``content_type`` against the upload rules.

    ``allowed_types`` and ``max_size`` default to ``ALLOWED_MIME_TYPES`` and
    ``MAX_UPLOAD_SIZE``.  MIME parameters (``; charset=...``) and case are
    ignored.
    """
    limit = settings.MAX_UPLOAD_SIZE if max_size is None else max_size
    allowed = {t.lower() for t in (allowed_types if allowed_types is not None else settings.ALLOWED_MIME_TYPES)}

    if size is None or size <= 0:
        return FileValidation(False, EMPTY_FILE_REASON)
    if size > limit:
        return FileValidation(False, SIZE_LIMIT_REASON)
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime not in allowed:
        return FileValidation(False, type_reason)
    return FileValidation(True)


def validate_stored_object(size: int, content_type: Optional[str]) -> FileValidation:
    """Storage-side variant: also accepts WEBP."""
    return validate_upload(
        size,
        content_type,
        allowed_types=settings.STORAGE_ALLOWED_MIME_TYPES,
        type_reason=STORAGE_TYPE_REASON,
    )
