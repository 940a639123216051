"""Pipeline entry point for an image that is already in storage."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from receiptly.api.dependencies import get_current_user_id, get_db, get_pipeline
from receiptly.core.errors import ForbiddenError, InputError
from receiptly.models.schemas import ActionResult, ProcessReceiptRequest, ReceiptRead
from receiptly.services.receipt_pipeline import SUCCESS_MESSAGE, ReceiptPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["process"])


@router.post("/process-receipt")
async def process_receipt(
    body: ProcessReceiptRequest,
    db: AsyncSession = Depends(get_db),
    pipeline: ReceiptPipeline = Depends(get_pipeline),
    user_id: str = Depends(get_current_user_id),
) -> Dict[str, Any]:
    """Extract, validate and store the receipt at ``filePath``.

    ``userId`` must be the authenticated user; it is checked, never trusted.
    """
    if not body.file_path or not body.user_id:
        raise InputError("Missing required parameters")
    if body.user_id != user_id:
        raise ForbiddenError("Cannot process receipts for another user")
    receipt = await pipeline.run(db, body.file_path, user_id)
    return ActionResult.ok(SUCCESS_MESSAGE, ReceiptRead.model_validate(receipt)).to_response_content()
