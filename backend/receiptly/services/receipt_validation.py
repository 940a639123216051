"""Gate between untrusted extraction output and persistence.

Nothing the model returns is stored until it passes
:func:`validate_receipt_payload`.  Unknown categories, missing dates and
bad line items are rejected instead of being coerced, and the failure
lists every violated field so the caller can report all of them at once.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping

from pydantic import ValidationError

from receiptly.core.errors import FieldError, ReceiptValidationError
from receiptly.models.schemas import ExtractedReceipt

logger = logging.getLogger(__name__)


def field_errors_from(exc: ValidationError) -> List[FieldError]:
    """Flatten a pydantic ``ValidationError`` into ``FieldError`` entries.

    Locations are dotted (``items.0.name``); model-level errors use
    ``__root__``.
    """
    errors: List[FieldError] = []
    for err in exc.errors(include_url=False):
        loc = ".".join(str(part) for part in err.get("loc", ())) or "__root__"
        errors.append(FieldError(loc, _message_for(err)))
    return errors


def _message_for(err: Mapping[str, Any]) -> str:
    if err.get("type") == "missing":
        field = str(err.get("loc", ("value",))[-1])
        return f"{field.replace('_', ' ').capitalize()} is required"
    return str(err.get("msg", "Invalid value"))


def validate_receipt_payload(raw: Any) -> ExtractedReceipt:
    """Validate a raw extraction and return the typed receipt.

    Raises ``ReceiptValidationError`` listing every violated field.
    """
    if not isinstance(raw, Mapping):
        raise ReceiptValidationError([FieldError("__root__", "Receipt data must be an object")])
    try:
        return ExtractedReceipt.model_validate(dict(raw))
    except ValidationError as exc:
        errors = field_errors_from(exc)
        logger.warning("[validation] rejected extraction fields=%s", [e.field for e in errors])
        raise ReceiptValidationError(errors) from exc


def describe_errors(errors: Iterable[FieldError]) -> str:
    """One-line summary, e.g. ``amount: Amount must be positive; date: Invalid date``."""
    return "; ".join(f"{e.field}: {e.message}" for e in errors)
