"""Persistence for receipts with ownership checks and optimistic locking.

Every read and write outside of ``create`` filters on ``(id, user_id)``
together, so another user's receipt is indistinguishable from a missing
one.  Updates are conditional on the caller's last-read ``updated_at``:

    UPDATE receipts SET ..., updated_at = :new
     WHERE id = :id AND user_id = :user AND updated_at = :expected

When that touches no row the receipt either does not exist for this user
(``ReceiptNotFoundError``) or was changed by someone else
(``ConcurrencyConflictError``).  The caller has to re-fetch; there is no
automatic retry.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from receiptly.core.errors import ConcurrencyConflictError, ReceiptNotFoundError
from receiptly.models.schemas import ExtractedReceipt, ReceiptUpdate
from receiptly.models.tables import Receipt
from receiptly.services.cache import ChartCache
from receiptly.utils.helpers import utcnow

logger = logging.getLogger(__name__)

_TOKEN_STEP = dt.timedelta(microseconds=1)


def next_lock_token(expected: dt.datetime) -> dt.datetime:
    """New ``updated_at``: now, but always strictly after ``expected``."""
    return max(utcnow(), expected + _TOKEN_STEP)


class ReceiptRepository:
    """CRUD over :class:`Receipt` rows scoped to the authenticated user."""

    def __init__(self, cache: Optional[ChartCache] = None) -> None:
        self.cache = cache

    async def _invalidate(self, user_id: str) -> None:
        if self.cache is not None:
            await self.cache.invalidate(user_id)

    async def create(
        self,
        db: AsyncSession,
        user_id: str,
        receipt: ExtractedReceipt,
        original_file: str,
    ) -> Receipt:
        """Insert a validated receipt as unverified and return the stored row."""
        now = utcnow()
        row = Receipt(
            user_id=user_id,
            original_file=original_file,
            merchant=receipt.merchant,
            amount=receipt.amount,
            date=receipt.date,
            category=receipt.category,
            items=[item.to_json() for item in receipt.items] if receipt.items is not None else None,
            is_verified=False,
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        await db.commit()
        await db.refresh(row)
        logger.info("[receipts] created id=%s user=%s", row.id, user_id)
        await self._invalidate(user_id)
        return row

    async def list_by_user(self, db: AsyncSession, user_id: str) -> List[Receipt]:
        """All of ``user_id``'s receipts, newest receipt date first."""
        result = await db.execute(
            select(Receipt)
            .where(Receipt.user_id == user_id)
            .order_by(Receipt.date.desc(), Receipt.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_by_id(self, db: AsyncSession, user_id: str, receipt_id: str) -> Receipt:
        result = await db.execute(
            select(Receipt)
            .where(Receipt.id == receipt_id, Receipt.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        receipt = result.scalar_one_or_none()
        if receipt is None:
            raise ReceiptNotFoundError()
        return receipt

    async def update(
        self,
        db: AsyncSession,
        user_id: str,
        receipt_id: str,
        changes: ReceiptUpdate,
    ) -> Receipt:
        """Apply ``changes`` if the row still carries ``changes.expected_updated_at``."""
        expected = changes.expected_updated_at
        values = changes.changed_values()
        values["updated_at"] = next_lock_token(expected)
        result = await db.execute(
            update(Receipt)
            .where(
                Receipt.id == receipt_id,
                Receipt.user_id == user_id,
                Receipt.updated_at == expected,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            owned = await db.scalar(
                select(Receipt.id).where(Receipt.id == receipt_id, Receipt.user_id == user_id)
            )
            if owned is None:
                raise ReceiptNotFoundError()
            logger.info("[receipts] stale update rejected id=%s user=%s", receipt_id, user_id)
            raise ConcurrencyConflictError()
        await db.commit()
        logger.info("[receipts] updated id=%s fields=%s", receipt_id, sorted(k for k in values if k != "updated_at"))
        await self._invalidate(user_id)
        return await self.get_by_id(db, user_id, receipt_id)

    async def delete(self, db: AsyncSession, user_id: str, receipt_id: str) -> bool:
        """Delete the receipt if ``user_id`` owns it; otherwise do nothing."""
        result = await db.execute(
            delete(Receipt)
            .where(Receipt.id == receipt_id, Receipt.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info("[receipts] deleted id=%s user=%s", receipt_id, user_id)
            await self._invalidate(user_id)
        return deleted
