"""Domain exceptions for the receipt pipeline.

Every failure the pipeline can report derives from :class:`ReceiptError`
and carries the HTTP status it maps to.  Services raise these; the API
layer converts them into the result envelope (see
``receiptly.api.error_handlers``) so nothing escapes a component
boundary as an unhandled exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class FieldError:
    """A single violated field, e.g. ``FieldError("amount", "Amount must be positive")``."""

    field: str
    message: str


class ReceiptError(Exception):
    """Base class for reportable pipeline failures."""

    status_code: int = 500
    default_message: str = "Failed to process receipt"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InputError(ReceiptError):
    """Missing or malformed caller input (no retry)."""

    status_code = 400
    default_message = "Missing required parameters"


class ForbiddenError(ReceiptError):
    """Caller tried to act on behalf of another user."""

    status_code = 403
    default_message = "Not authorized"


class ReceiptNotFoundError(ReceiptError):
    """Record missing or owned by another user; both look identical."""

    status_code = 404
    default_message = "Receipt not found"


class ConcurrencyConflictError(ReceiptError):
    """The optimistic-lock token is stale.  Re-fetch and retry."""

    status_code = 409
    default_message = "Failed to update receipt. It may have been modified by another process."


class ReceiptValidationError(ReceiptError):
    """Payload violates the receipt schema.  ``errors`` lists every field."""

    status_code = 422
    default_message = "Receipt data failed validation"

    def __init__(self, errors: List[FieldError], message: Optional[str] = None) -> None:
        self.errors = list(errors)
        super().__init__(message)


class ExtractionProviderError(ReceiptError):
    """Vision API failed after the client's retry budget was spent."""

    status_code = 502
    default_message = "AI extraction failed"


class ExtractionFormatError(ReceiptError):
    """Model answered but no usable JSON object was found."""

    status_code = 502
    default_message = "AI returned invalid data format"


class StorageError(ReceiptError):
    """Object store operation failed."""

    status_code = 502
    default_message = "Storage operation failed"


__all__ = [
    "FieldError",
    "ReceiptError",
    "InputError",
    "ForbiddenError",
    "ReceiptNotFoundError",
    "ConcurrencyConflictError",
    "ReceiptValidationError",
    "ExtractionProviderError",
    "ExtractionFormatError",
    "StorageError",
]
