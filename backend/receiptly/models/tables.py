"""SQLAlchemy ORM models for the receipt capture API.

A single table holds every receipt.  ``updated_at`` doubles as the
optimistic-lock token: the repository only writes a row when the
caller's last-read ``updated_at`` still matches, and always moves it
forward on success.

If you modify these models during development call the ``init_db``
helper to recreate the tables.
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Column,
    String,
    Date,
    DateTime,
    Boolean,
    Enum,
    Index,
    Numeric,
    JSON,
)

from receiptly.core.database import Base
from receiptly.utils.helpers import utcnow
from .enums import ReceiptCategory


def _new_receipt_id() -> str:
    return str(uuid.uuid4())


class Receipt(Base):
    """Extracted receipt and its verification state."""

    __tablename__ = "receipts"
    __table_args__ = (
        Index("ix_receipts_user_id_date", "user_id", "date"),
    )

    id = Column(String(36), primary_key=True, default=_new_receipt_id)
    # Identity-provider subject of the uploader
    user_id = Column(String, nullable=False, index=True)
    original_file = Column(String, nullable=False)
    merchant = Column(String(100), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    date = Column(Date, nullable=False)
    category = Column(
        Enum(ReceiptCategory, values_callable=lambda e: [m.value for m in e], name="receipt_category"),
        nullable=False,
    )
    items = Column(JSON, nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"<Receipt id={self.id} user_id={self.user_id} verified={self.is_verified}>"
