"""Receipt processing pipeline.

One uploaded image, one run, awaited within the request:

1. check the path belongs to the caller
2. stat the stored object and re-check its size and type
3. download the image
4. ask the model for the receipt fields
5. validate the fields
6. move the object from ``pending/`` to ``processed/``
7. store the receipt, unverified

Each stage fails with a ``ReceiptError`` subclass; :meth:`ReceiptPipeline.process`
turns those into a failure envelope.  Anything else is logged, reported to
Sentry and returned as a generic failure.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from receiptly.core.config import Settings
from receiptly.core.errors import (
    ForbiddenError,
    InputError,
    ReceiptError,
    ReceiptValidationError,
    StorageError,
)
from receiptly.core.observability import capture_exception, sentry_breadcrumb, sentry_set_tags
from receiptly.models.schemas import ActionResult, ReceiptRead
from receiptly.services.extraction_service import ExtractionClient
from receiptly.services.file_validation import validate_stored_object
from receiptly.services.receipt_repository import ReceiptRepository
from receiptly.services.receipt_validation import describe_errors, validate_receipt_payload
from receiptly.services.storage_service import StorageService, owned_by, processed_path_for

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Receipt processed and stored successfully"
DOWNLOAD_FAILED_MESSAGE = "Failed to download receipt image"
UNEXPECTED_FAILURE_MESSAGE = "Failed to process receipt"


class ReceiptPipeline:
    """Runs the extraction pipeline with injected collaborators."""

    def __init__(
        self,
        storage: StorageService,
        extractor: ExtractionClient,
        repository: ReceiptRepository,
        settings: Settings,
    ) -> None:
        self.storage = storage
        self.extractor = extractor
        self.repository = repository
        self.bucket = settings.RECEIPTS_BUCKET

    async def process(self, db: AsyncSession, file_path: Optional[str], user_id: Optional[str]) -> ActionResult[ReceiptRead]:
        """Run the pipeline; never raises, always returns an envelope."""
        try:
            receipt = await self.run(db, file_path, user_id)
        except ReceiptError as exc:
            sentry_set_tags({"receipt.failure": type(exc).__name__})
            logger.warning("[pipeline] failed path=%s user=%s reason=%s", file_path, user_id, exc.message)
            return ActionResult.failure(exc)
        except Exception as exc:  # unexpected
            logger.exception("[pipeline] unexpected error path=%s user=%s", file_path, user_id)
            capture_exception(exc)
            return ActionResult(is_success=False, message=UNEXPECTED_FAILURE_MESSAGE)
        return ActionResult.ok(SUCCESS_MESSAGE, ReceiptRead.model_validate(receipt))

    async def run(self, db: AsyncSession, file_path: Optional[str], user_id: Optional[str]):
        """Run every stage and return the stored receipt; raises ``ReceiptError``."""
        if not file_path or not user_id:
            raise InputError("Missing required parameters")
        if not owned_by(file_path, user_id):
            raise ForbiddenError("File does not belong to this user")

        logger.info("[pipeline] start path=%s user=%s", file_path, user_id)
        sentry_breadcrumb("pipeline", "start", data={"path": file_path})
        sentry_set_tags({"extraction.model": self.extractor.model})

        try:
            stored = await self.storage.stat(file_path, bucket=self.bucket)
        except StorageError as exc:
            raise StorageError(DOWNLOAD_FAILED_MESSAGE) from exc
        check = validate_stored_object(stored.size, stored.content_type)
        if not check.valid:
            raise InputError(check.reason)

        try:
            image = await self.storage.download(file_path, bucket=self.bucket)
        except StorageError as exc:
            raise StorageError(DOWNLOAD_FAILED_MESSAGE) from exc

        raw = await self.extractor.extract(image, stored.content_type)
        sentry_breadcrumb("pipeline", "extracted")

        try:
            validated = validate_receipt_payload(raw)
        except ReceiptValidationError as exc:
            logger.warning("[pipeline] extraction rejected path=%s errors=%s", file_path, describe_errors(exc.errors))
            raise
        logger.info("[pipeline] extraction accepted path=%s merchant_len=%d", file_path, len(validated.merchant))

        original_file = await self._mark_processed(file_path)
        try:
            receipt = await self.repository.create(db, user_id, validated, original_file)
        except Exception:
            await self._restore_pending(original_file, file_path)
            raise
        logger.info("[pipeline] stored receipt id=%s path=%s", receipt.id, original_file)
        sentry_breadcrumb("pipeline", "stored", data={"receipt_id": receipt.id})
        return receipt

    async def _mark_processed(self, file_path: str) -> str:
        """Move a pending object to ``processed/``; on failure keep the pending path."""
        target = processed_path_for(file_path)
        if target is None:
            return file_path
        try:
            return await self.storage.move(self.bucket, file_path, target)
        except StorageError as exc:
            logger.warning("[pipeline] move to processed failed path=%s err=%s", file_path, exc.message)
            return file_path

    async def _restore_pending(self, current: str, file_path: str) -> None:
        """Put the object back under ``pending/`` so the upload can be retried."""
        if current == file_path:
            return
        try:
            await self.storage.move(self.bucket, current, file_path)
        except StorageError as exc:
            logger.error("[pipeline] could not restore pending object path=%s err=%s", current, exc.message)
