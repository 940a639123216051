"""Verify-and-save workflow for extracted receipts.

A :class:`VerificationDraft` holds the user's corrections to merchant,
amount, date and category on top of the server copy they were made
against.  Each value is checked as soon as it is staged; a bad value is
refused and its error kept, but the other fields stay editable.  When
the user confirms, every staged value goes out in one optimistic update
that also sets ``is_verified``.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Callable, Dict, Optional

from pydantic_core import PydanticCustomError
from sqlalchemy.ext.asyncio import AsyncSession

from receiptly.core.errors import FieldError, InputError, ReceiptValidationError
from receiptly.models.schemas import (
    ReceiptUpdate,
    check_amount,
    check_category,
    check_merchant,
    check_receipt_date,
)
from receiptly.models.tables import Receipt

EDITABLE_FIELDS: Dict[str, Callable[[Any], Any]] = {
    "merchant": check_merchant,
    "amount": check_amount,
    "date": check_receipt_date,
    "category": check_category,
}


class VerificationDraft:
    """Staged edits against one fetched receipt."""

    def __init__(self, receipt_id: str, current: Dict[str, Any], expected_updated_at: dt.datetime) -> None:
        self.receipt_id = receipt_id
        self.current = dict(current)
        self.expected_updated_at = expected_updated_at
        self._staged: Dict[str, Any] = {}
        self.errors: Dict[str, str] = {}

    @classmethod
    def from_receipt(cls, receipt: Receipt) -> "VerificationDraft":
        current = {name: getattr(receipt, name) for name in EDITABLE_FIELDS}
        return cls(receipt.id, current, receipt.updated_at)

    def stage(self, field: str, value: Any) -> Optional[str]:
        """Stage ``value`` for ``field``; return the error message or ``None``."""
        check = EDITABLE_FIELDS.get(field)
        if check is None:
            raise InputError(f"Field '{field}' cannot be edited")
        try:
            cleaned = check(value)
        except PydanticCustomError as exc:
            self.errors[field] = exc.message()
            return self.errors[field]
        self.errors.pop(field, None)
        if cleaned == self.current.get(field):
            self._staged.pop(field, None)
        else:
            self._staged[field] = cleaned
        return None

    def value(self, field: str) -> Any:
        """Value the user currently sees: staged if any, else the server copy."""
        return self._staged.get(field, self.current.get(field))

    @property
    def is_dirty(self) -> bool:
        return bool(self._staged)

    def changes(self) -> Dict[str, Any]:
        return dict(self._staged)

    def to_update(self) -> ReceiptUpdate:
        """Build the single update: staged values, ``is_verified`` and the lock token."""
        if self.errors:
            raise ReceiptValidationError(
                [FieldError(field, message) for field, message in sorted(self.errors.items())]
            )
        return ReceiptUpdate(
            **self._staged,
            is_verified=True,
            expected_updated_at=self.expected_updated_at,
        )

    async def submit(self, repository, db: AsyncSession, user_id: str) -> Receipt:
        return await repository.update(db, user_id, self.receipt_id, self.to_update())
