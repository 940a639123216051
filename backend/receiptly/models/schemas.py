"""Pydantic schemas for request and response models.

Pydantic models validate and serialise data that crosses the boundary
of the API.  This module defines both the domain schemas used to gate
untrusted AI output (``ExtractedReceipt``, ``LineItem``) and the API
facing schemas (``ReceiptRead``, ``ReceiptUpdate``, the ``ActionResult``
envelope).

Field rules live in small ``check_*`` helpers so that the extraction
gate, the optimistic update path and the verification workflow all
enforce exactly the same constraints.  Errors are raised as
``PydanticCustomError`` so the message reaching the client is the
plain rule text.

API schemas are exposed in camelCase (``isSuccess``, ``updatedAt``);
they also accept snake_case input.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

from receiptly.core.errors import ReceiptError, ReceiptValidationError
from receiptly.utils.helpers import parse_receipt_date, to_naive_utc, utcnow
from .enums import ReceiptCategory

MERCHANT_MIN_LENGTH = 2
MERCHANT_MAX_LENGTH = 100
ITEM_NAME_MIN_LENGTH = 2
MAX_AMOUNT = Decimal("100000")
MIN_RECEIPT_DATE = dt.date(2000, 1, 1)
# Dates are checked against the UTC day; one day of slack covers zones ahead of UTC
FUTURE_DATE_SLACK = dt.timedelta(days=1)
_CENTS = Decimal("0.01")


# ---------------------------------------------------------------------------
# Field rules


def _to_decimal(value: Any, label: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise PydanticCustomError("decimal_type", "{label} must be a number", {"label": label})
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise PydanticCustomError("decimal_parsing", "{label} must be a number", {"label": label})
    if not number.is_finite():
        raise PydanticCustomError("decimal_parsing", "{label} must be a number", {"label": label})
    return number


def check_merchant(value: Any) -> str:
    if not isinstance(value, str):
        raise PydanticCustomError("merchant_type", "Merchant name must be text")
    value = value.strip()
    if len(value) < MERCHANT_MIN_LENGTH:
        raise PydanticCustomError("merchant_too_short", "Merchant name must be at least 2 characters")
    if len(value) > MERCHANT_MAX_LENGTH:
        raise PydanticCustomError("merchant_too_long", "Merchant name cannot exceed 100 characters")
    return value


def check_amount(value: Any) -> Decimal:
    if value is None:
        raise PydanticCustomError("amount_missing", "Amount is required")
    number = _to_decimal(value, "Amount")
    # quantize raises InvalidOperation past the context precision
    if number > MAX_AMOUNT:
        raise PydanticCustomError("amount_too_large", "Amount cannot exceed 100,000")
    if number <= 0:
        raise PydanticCustomError("amount_not_positive", "Amount must be positive")
    amount = number.quantize(_CENTS, rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise PydanticCustomError("amount_not_positive", "Amount must be positive")
    return amount


def check_receipt_date(value: Any, today: Optional[dt.date] = None) -> dt.date:
    if value is None:
        raise PydanticCustomError("date_missing", "Date is required")
    parsed = parse_receipt_date(value)
    if parsed is None:
        raise PydanticCustomError("date_invalid", "Invalid date")
    if parsed < MIN_RECEIPT_DATE:
        raise PydanticCustomError("date_too_old", "Date cannot be before 2000")
    if parsed > (today or utcnow().date()) + FUTURE_DATE_SLACK:
        raise PydanticCustomError("date_in_future", "Date cannot be in the future")
    return parsed


def check_category(value: Any) -> ReceiptCategory:
    if isinstance(value, ReceiptCategory):
        return value
    if isinstance(value, str):
        try:
            return ReceiptCategory(value.strip().lower())
        except ValueError:
            pass
    raise PydanticCustomError("category_invalid", "Invalid category provided")


def _check_optional_decimal(value: Any, label: str, allow_zero: bool) -> Optional[Decimal]:
    if value is None:
        return None
    number = _to_decimal(value, label)
    if number < 0 or (number == 0 and not allow_zero):
        raise PydanticCustomError("decimal_not_positive", "{label} must be positive", {"label": label})
    return number


# ---------------------------------------------------------------------------
# Domain schemas (gate for AI output)


class LineItem(BaseModel):
    """Individual line item on a receipt."""

    model_config = ConfigDict(extra="ignore")

    name: str
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    total_price: Optional[Decimal] = None

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> str:
        if not isinstance(v, str) or len(v.strip()) < ITEM_NAME_MIN_LENGTH:
            raise PydanticCustomError("item_name_too_short", "Item name too short")
        return v.strip()

    @field_validator("quantity", mode="before")
    @classmethod
    def validate_quantity(cls, v: Any) -> Optional[Decimal]:
        return _check_optional_decimal(v, "Item quantity", allow_zero=False)

    @field_validator("unit_price", mode="before")
    @classmethod
    def validate_unit_price(cls, v: Any) -> Optional[Decimal]:
        return _check_optional_decimal(v, "Item price", allow_zero=False)

    @field_validator("total_price", mode="before")
    @classmethod
    def validate_total_price(cls, v: Any) -> Optional[Decimal]:
        return _check_optional_decimal(v, "Item total", allow_zero=True)

    def to_json(self) -> Dict[str, Any]:
        """JSON-column friendly representation (decimals as strings)."""
        return self.model_dump(mode="json")


class ExtractedReceipt(BaseModel):
    """A receipt extraction that passed every business rule."""

    model_config = ConfigDict(extra="ignore")

    merchant: str
    amount: Decimal
    date: dt.date
    category: ReceiptCategory
    items: Optional[List[LineItem]] = None

    @field_validator("merchant", mode="before")
    @classmethod
    def validate_merchant(cls, v: Any) -> str:
        return check_merchant(v)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Decimal:
        return check_amount(v)

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v: Any) -> dt.date:
        return check_receipt_date(v)

    @field_validator("category", mode="before")
    @classmethod
    def validate_category(cls, v: Any) -> ReceiptCategory:
        return check_category(v)


# ---------------------------------------------------------------------------
# API request/response schemas


class CamelModel(BaseModel):
    """Base for API models exposed with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FieldErrorRead(CamelModel):
    field: str
    message: str


T = TypeVar("T")


class ActionResult(CamelModel, Generic[T]):
    """Uniform result envelope: ``{isSuccess, message, data?, errors?}``."""

    is_success: bool
    message: str
    data: Optional[T] = None
    errors: Optional[List[FieldErrorRead]] = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> "ActionResult":
        return cls(is_success=True, message=message, data=data)

    @classmethod
    def failure(cls, exc: ReceiptError) -> "ActionResult":
        errors = None
        if isinstance(exc, ReceiptValidationError):
            errors = [FieldErrorRead(field=e.field, message=e.message) for e in exc.errors]
        return cls(is_success=False, message=exc.message, errors=errors)

    def to_response_content(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ReceiptRead(CamelModel):
    id: str
    user_id: str
    original_file: str
    merchant: str
    amount: Decimal
    date: dt.date
    category: ReceiptCategory
    items: Optional[List[Dict[str, Any]]] = None
    is_verified: bool
    created_at: dt.datetime
    updated_at: dt.datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ReceiptUpdate(CamelModel):
    """Partial update guarded by the optimistic-lock token.

    ``expected_updated_at`` must be the ``updatedAt`` value the caller last
    read.  Omitted (or null) fields are left untouched.
    """

    merchant: Optional[str] = None
    amount: Optional[Decimal] = None
    date: Optional[dt.date] = None
    category: Optional[ReceiptCategory] = None
    items: Optional[List[LineItem]] = None
    is_verified: Optional[bool] = None
    expected_updated_at: dt.datetime

    @field_validator("merchant", mode="before")
    @classmethod
    def validate_merchant(cls, v: Any) -> Optional[str]:
        return None if v is None else check_merchant(v)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Optional[Decimal]:
        return None if v is None else check_amount(v)

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v: Any) -> Optional[dt.date]:
        return None if v is None else check_receipt_date(v)

    @field_validator("category", mode="before")
    @classmethod
    def validate_category(cls, v: Any) -> Optional[ReceiptCategory]:
        return None if v is None else check_category(v)

    @field_validator("is_verified")
    @classmethod
    def reject_unverify(cls, v: Optional[bool]) -> Optional[bool]:
        if v is False:
            raise PydanticCustomError("unverify_not_supported", "Receipts cannot be marked unverified")
        return v

    @field_validator("expected_updated_at")
    @classmethod
    def normalise_token(cls, v: dt.datetime) -> dt.datetime:
        return to_naive_utc(v)

    def changed_values(self) -> Dict[str, Any]:
        """Column values to write, excluding the lock token and unset fields."""
        values: Dict[str, Any] = {}
        for name in ("merchant", "amount", "date", "category", "is_verified"):
            value = getattr(self, name)
            if value is not None:
                values[name] = value
        if self.items is not None:
            values["items"] = [item.to_json() for item in self.items]
        return values


class ProcessReceiptRequest(CamelModel):
    """Body of ``POST /api/process-receipt``; presence is checked by the route."""

    file_path: Optional[str] = None
    user_id: Optional[str] = None


class VerifyReceiptRequest(CamelModel):
    """Staged corrections submitted with the verify-and-save action."""

    merchant: Optional[Any] = None
    amount: Optional[Any] = None
    date: Optional[Any] = None
    category: Optional[Any] = None
    expected_updated_at: dt.datetime


class ChartEntry(CamelModel):
    name: str
    value: float
    color: str


class SignedUrlRead(CamelModel):
    url: str
    expires_in: int = Field(description="Seconds until the link expires")
