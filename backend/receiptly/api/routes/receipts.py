"""Receipt endpoints: upload, list, chart, read, correct, verify, delete.

All routes act on the authenticated user's receipts only; another user's
receipt id behaves exactly like an unknown one.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, File, UploadFile
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from receiptly.api.dependencies import (
    get_cache,
    get_current_user_id,
    get_db,
    get_pipeline,
    get_repository,
    get_settings,
    get_storage,
)
from receiptly.core.config import Settings
from receiptly.core.errors import InputError, ReceiptValidationError
from receiptly.models.enums import StorageStatus
from receiptly.models.schemas import (
    ActionResult,
    ReceiptRead,
    ReceiptUpdate,
    SignedUrlRead,
    VerifyReceiptRequest,
)
from receiptly.services.cache import ChartCache
from receiptly.services.chart_aggregator import aggregate_by_category
from receiptly.services.file_validation import validate_upload
from receiptly.services.receipt_pipeline import SUCCESS_MESSAGE, ReceiptPipeline
from receiptly.services.receipt_repository import ReceiptRepository
from receiptly.services.receipt_validation import field_errors_from
from receiptly.services.storage_service import StorageService, build_object_path
from receiptly.services.verification import VerificationDraft

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/receipts", tags=["receipts"])

_EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


def _parse(model, payload: Dict[str, Any]):
    """Validate a JSON body, reporting failures as receipt validation errors (422)."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ReceiptValidationError(field_errors_from(exc)) from exc


@router.post("/upload")
async def upload_receipt(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    storage: StorageService = Depends(get_storage),
    pipeline: ReceiptPipeline = Depends(get_pipeline),
    cfg: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Validate an image, store it under ``pending/`` and run the pipeline."""
    # One byte past the limit is enough to detect an oversized file
    contents = await file.read(cfg.MAX_UPLOAD_SIZE + 1)
    content_type = (file.content_type or "").split(";", 1)[0].strip().lower()
    check = validate_upload(len(contents), content_type, cfg.ALLOWED_MIME_TYPES, cfg.MAX_UPLOAD_SIZE)
    if not check.valid:
        raise InputError(check.reason)

    filename = f"{int(time.time() * 1000)}.{_EXTENSIONS.get(content_type, 'bin')}"
    path = build_object_path(StorageStatus.PENDING, user_id, filename)
    await storage.upload(cfg.RECEIPTS_BUCKET, path, contents, content_type)
    logger.info("[receipts] uploaded path=%s size=%d", path, len(contents))

    receipt = await pipeline.run(db, path, user_id)
    return ActionResult.ok(SUCCESS_MESSAGE, ReceiptRead.model_validate(receipt)).to_response_content()


@router.get("")
async def list_receipts(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    repository: ReceiptRepository = Depends(get_repository),
) -> Dict[str, Any]:
    receipts = await repository.list_by_user(db, user_id)
    data = [ReceiptRead.model_validate(r) for r in receipts]
    return ActionResult.ok("Receipts retrieved successfully", data).to_response_content()


@router.get("/chart")
async def receipts_chart(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    repository: ReceiptRepository = Depends(get_repository),
    cache: Optional[ChartCache] = Depends(get_cache),
) -> Dict[str, Any]:
    """Per-category totals of the user's verified receipts."""
    if cache is not None:
        cached = await cache.get_chart(user_id)
        if cached is not None:
            return ActionResult.ok("Chart data retrieved successfully", cached).to_response_content()
    entries = aggregate_by_category(await repository.list_by_user(db, user_id))
    data = [e.model_dump(mode="json", by_alias=True) for e in entries]
    if cache is not None:
        await cache.set_chart(user_id, data)
    return ActionResult.ok("Chart data retrieved successfully", data).to_response_content()


@router.get("/{receipt_id}")
async def get_receipt(
    receipt_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    repository: ReceiptRepository = Depends(get_repository),
) -> Dict[str, Any]:
    receipt = await repository.get_by_id(db, user_id, receipt_id)
    return ActionResult.ok("Receipt retrieved successfully", ReceiptRead.model_validate(receipt)).to_response_content()


@router.get("/{receipt_id}/image-url")
async def get_receipt_image_url(
    receipt_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    repository: ReceiptRepository = Depends(get_repository),
    storage: StorageService = Depends(get_storage),
    cfg: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Short-lived URL for the source image shown next to the extracted fields."""
    receipt = await repository.get_by_id(db, user_id, receipt_id)
    ttl = cfg.SIGNED_URL_TTL_SECONDS
    url = await storage.create_signed_url(receipt.original_file, ttl, bucket=cfg.RECEIPTS_BUCKET)
    return ActionResult.ok("Signed URL created", SignedUrlRead(url=url, expires_in=ttl)).to_response_content()


@router.patch("/{receipt_id}")
async def update_receipt(
    receipt_id: str,
    payload: Dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    repository: ReceiptRepository = Depends(get_repository),
) -> Dict[str, Any]:
    """Partial update guarded by ``expectedUpdatedAt``; 409 when it is stale."""
    changes: ReceiptUpdate = _parse(ReceiptUpdate, payload)
    receipt = await repository.update(db, user_id, receipt_id, changes)
    return ActionResult.ok("Receipt updated successfully", ReceiptRead.model_validate(receipt)).to_response_content()


@router.post("/{receipt_id}/verify")
async def verify_receipt(
    receipt_id: str,
    payload: Dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    repository: ReceiptRepository = Depends(get_repository),
) -> Dict[str, Any]:
    """Apply the user's corrections and mark the receipt verified in one update."""
    request: VerifyReceiptRequest = _parse(VerifyReceiptRequest, payload)
    receipt = await repository.get_by_id(db, user_id, receipt_id)
    draft = VerificationDraft.from_receipt(receipt)
    # Token of the copy the user reviewed
    draft.expected_updated_at = request.expected_updated_at
    for field in ("merchant", "amount", "date", "category"):
        value = getattr(request, field)
        if value is not None:
            draft.stage(field, value)
    updated = await draft.submit(repository, db, user_id)
    return ActionResult.ok("Receipt verified successfully", ReceiptRead.model_validate(updated)).to_response_content()


@router.delete("/{receipt_id}")
async def delete_receipt(
    receipt_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    repository: ReceiptRepository = Depends(get_repository),
) -> Dict[str, Any]:
    await repository.delete(db, user_id, receipt_id)
    return ActionResult.ok("Receipt deleted successfully").to_response_content()
